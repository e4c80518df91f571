"""
Exceptions raised by the EmptyDrops engine.

Every failure carries the name of the offending parameter and the value that
was observed, so callers can report what went wrong without parsing messages.
"""

from typing import Any, Optional


class EmptyDropsError(Exception):
    """Base class for all EmptyDrops failures."""

    def __init__(self, message: str, parameter: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.parameter = parameter
        self.value = value


class InvalidInput(EmptyDropsError, ValueError):
    """Malformed counts or parameters."""


class InvalidIterationCount(InvalidInput):
    """The number of Monte Carlo iterations is not a positive integer."""


class InsufficientAmbientData(InvalidInput):
    """The ambient set is empty or holds no counts."""


class OptimizationFailure(EmptyDropsError, RuntimeError):
    """The overdispersion search did not converge inside its interval."""


class WorkerFailure(EmptyDropsError, RuntimeError):
    """A parallel simulation task raised; the whole computation is void."""

    def __init__(self, message: str, task_index: Optional[int] = None):
        super().__init__(message, parameter="task", value=task_index)
        self.task_index = task_index
