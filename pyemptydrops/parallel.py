"""
Executors for independent simulation tasks.

An executor is any callable taking a list of zero-argument tasks and returning
their results in the same order. Failure is atomic: if one task raises, the
pending ones are cancelled and a ``WorkerFailure`` is raised instead of a
partial result list.
"""

import logging
import multiprocessing as mp
from concurrent.futures import ThreadPoolExecutor, ProcessPoolExecutor, as_completed
from typing import Any, Callable, List, Sequence

from tqdm.auto import tqdm

from .errors import InvalidInput, WorkerFailure

logger = logging.getLogger(__name__)

Task = Callable[[], Any]
Executor = Callable[[Sequence[Task]], List[Any]]

BACKENDS = ("serial", "threads", "processes")


def run_serial(tasks: Sequence[Task], progress: bool = False) -> List[Any]:
    """Run every task in the calling thread."""
    results = []
    for i, task in enumerate(tqdm(tasks, desc="Monte Carlo tasks", disable=not progress)):
        try:
            results.append(task())
        except Exception as e:
            raise WorkerFailure(f"simulation task {i} failed: {e!r}", task_index=i) from e
    return results


class PoolRunner:
    """
    Run tasks on a thread or process pool.

    Parameters
    ----------
    n_workers : int
        Pool size.
    backend : str
        ``"threads"`` (the simulation kernels release the GIL) or ``"processes"``
        (tasks must then be picklable).
    progress : bool
        Show a tqdm bar over completed tasks.
    """

    def __init__(self, n_workers: int, backend: str = "threads", progress: bool = False):
        if backend not in ("threads", "processes"):
            raise InvalidInput(f"unknown pool backend {backend!r}", parameter="backend", value=backend)
        if n_workers < 1:
            raise InvalidInput(f"n_workers must be at least 1, got {n_workers}",
                               parameter="n_workers", value=n_workers)
        self.n_workers = n_workers
        self.backend = backend
        self.progress = progress

    def _pool(self):
        if self.backend == "threads":
            return ThreadPoolExecutor(max_workers=self.n_workers)
        return ProcessPoolExecutor(max_workers=self.n_workers, mp_context=mp.get_context("spawn"))

    def __call__(self, tasks: Sequence[Task]) -> List[Any]:
        results = [None] * len(tasks)
        with self._pool() as pool:
            futures = {pool.submit(task): i for i, task in enumerate(tasks)}
            pbar = tqdm(total=len(tasks), desc="Monte Carlo tasks", disable=not self.progress)
            try:
                for future in as_completed(futures):
                    i = futures[future]
                    try:
                        results[i] = future.result()
                    except Exception as e:
                        for other in futures:
                            other.cancel()
                        raise WorkerFailure(f"simulation task {i} failed: {e!r}", task_index=i) from e
                    pbar.update(1)
            finally:
                pbar.close()
        return results


def get_executor(n_workers: int = 1, backend: str = "threads", progress: bool = False) -> Executor:
    """Pick an executor for ``n_workers`` workers."""
    if backend not in BACKENDS:
        raise InvalidInput(f"unknown backend {backend!r}", parameter="backend", value=backend)
    if n_workers == 1 or backend == "serial":
        return lambda tasks: run_serial(tasks, progress=progress)
    logger.debug(f"Using a {backend} pool with {n_workers} workers")
    return PoolRunner(n_workers, backend=backend, progress=progress)
