import time

import pytest

from pyemptydrops.errors import InvalidInput, WorkerFailure
from pyemptydrops.parallel import PoolRunner, get_executor, run_serial


def _slow(value, delay):
    def task():
        time.sleep(delay)
        return value
    return task


def test_serial_runs_in_order():
    assert run_serial([lambda: 1, lambda: 2, lambda: 3]) == [1, 2, 3]


def test_pool_returns_results_in_task_order():
    runner = PoolRunner(3, backend="threads")
    tasks = [_slow(i, 0.03 * (3 - i)) for i in range(4)]
    assert runner(tasks) == [0, 1, 2, 3]


def test_serial_failure_is_wrapped():
    def bad():
        raise ValueError("nope")

    with pytest.raises(WorkerFailure) as exc:
        run_serial([lambda: 1, bad])
    assert exc.value.task_index == 1
    assert isinstance(exc.value.__cause__, ValueError)


def test_pool_failure_is_wrapped():
    def bad():
        raise KeyError("lost")

    with pytest.raises(WorkerFailure):
        PoolRunner(2, backend="threads")([_slow(1, 0.01), bad, _slow(3, 0.01)])


def test_get_executor_choices():
    assert not isinstance(get_executor(1, backend="threads"), PoolRunner)
    assert not isinstance(get_executor(4, backend="serial"), PoolRunner)
    assert isinstance(get_executor(4, backend="processes"), PoolRunner)
    with pytest.raises(InvalidInput):
        get_executor(2, backend="gpu")
    with pytest.raises(InvalidInput):
        PoolRunner(0)
