import numpy as np
import pytest

from pyemptydrops.ambient import compute_ambient_profile
from pyemptydrops.errors import InvalidInput, InvalidIterationCount, WorkerFailure
from pyemptydrops.logprob import compute_multinom_prob_data
from pyemptydrops.matrix import CountMatrix
from pyemptydrops.montecarlo import check_niters, make_null_model, permute_counter, split_iterations
from pyemptydrops.parallel import get_executor


@pytest.fixture
def observed(droplets):
    m = CountMatrix(droplets)
    profile = compute_ambient_profile(m, lower=100)
    tested = m.select_columns(m.column_totals() > 0)
    return tested.column_totals(), profile.proportions, tested


def _probs(observed, alpha):
    totals, prop, tested = observed
    return compute_multinom_prob_data(tested, prop, alpha)


def test_split_iterations():
    np.testing.assert_array_equal(split_iterations(10, 3), [4, 3, 3])
    np.testing.assert_array_equal(split_iterations(2, 5), [1, 1])
    assert split_iterations(10001, 8).sum() == 10001
    with pytest.raises(InvalidInput):
        split_iterations(10, 0)


@pytest.mark.parametrize("niters", [0, -5, 2.5, np.nan, np.inf, True, "100", None])
def test_check_niters_rejects(niters):
    with pytest.raises(InvalidIterationCount) as exc:
        check_niters(niters)
    assert exc.value.parameter == "niters"


def test_check_niters_accepts_integral_values():
    assert check_niters(10.0) == 10
    assert check_niters(np.int32(7)) == 7


def test_null_model_cumulative_ends_at_one():
    model = make_null_model(np.array([0.2, 0.3, 0.5]), alpha=np.inf)
    assert model.cum_prop[-1] == 1.0
    assert np.all(model.alpha_prop == 0)
    model = make_null_model(np.array([0.2, 0.3, 0.5]), alpha=4.0)
    np.testing.assert_allclose(model.alpha_prop, [0.8, 1.2, 2.0])


@pytest.mark.parametrize("alpha", [np.inf, 5.0])
def test_counts_do_not_depend_on_worker_count(observed, alpha):
    totals, prop, _ = observed
    probs = _probs(observed, alpha)
    serial = permute_counter(totals, probs, prop, niters=60, alpha=alpha, seed=42, n_workers=1)
    for n_workers in (3, 8):
        split = permute_counter(totals, probs, prop, niters=60, alpha=alpha, seed=42, n_workers=n_workers)
        np.testing.assert_array_equal(serial, split)


def test_thread_pool_matches_serial(observed):
    totals, prop, _ = observed
    probs = _probs(observed, np.inf)
    serial = permute_counter(totals, probs, prop, niters=40, seed=7)
    pooled = permute_counter(totals, probs, prop, niters=40, seed=7, n_workers=4,
                             executor=get_executor(4, backend="threads"))
    np.testing.assert_array_equal(serial, pooled)


def test_more_iterations_extend_the_same_streams(observed):
    totals, prop, _ = observed
    probs = _probs(observed, np.inf)
    short = permute_counter(totals, probs, prop, niters=20, seed=3)
    long = permute_counter(totals, probs, prop, niters=50, seed=3, n_workers=4)
    assert np.all(long >= short)


def test_counts_are_bounded(observed):
    totals, prop, _ = observed
    probs = _probs(observed, np.inf)
    n_above = permute_counter(totals, probs, prop, niters=30, seed=1)
    assert np.all(n_above >= 0)
    assert np.all(n_above <= 30)


def test_extreme_observations():
    totals = np.array([5, 5, 9])
    prop = np.array([0.25, 0.25, 0.5])
    # the data term of a multinomial count vector never exceeds zero
    probs = np.array([0.0, -1e9, 0.0])
    n_above = permute_counter(totals, probs, prop, niters=25, seed=0)
    np.testing.assert_array_equal(n_above, [25, 0, 25])


def test_failed_task_voids_the_run(observed):
    totals, prop, _ = observed
    probs = _probs(observed, np.inf)

    def sabotaging_executor(tasks):
        def boom():
            raise RuntimeError("worker died")
        return get_executor(2, backend="threads")([tasks[0], boom])

    with pytest.raises(WorkerFailure) as exc:
        permute_counter(totals, probs, prop, niters=10, seed=0, n_workers=2, executor=sabotaging_executor)
    assert exc.value.task_index == 1
    assert isinstance(exc.value.__cause__, RuntimeError)


def test_short_executor_result_rejected(observed):
    totals, prop, _ = observed
    probs = _probs(observed, np.inf)
    with pytest.raises(InvalidInput):
        permute_counter(totals, probs, prop, niters=10, seed=0, n_workers=2,
                        executor=lambda tasks: [tasks[0]()])
