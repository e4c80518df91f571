import numpy as np
import pytest
import scipy.sparse as sp

from pyemptydrops.errors import InvalidInput, OptimizationFailure
from pyemptydrops.matrix import CountMatrix
from pyemptydrops.overdispersion import dirichlet_multinomial_loglik, estimate_alpha


def _dm_counts(alpha, n_barcodes=800, n_genes=20, seed=0):
    rng = np.random.default_rng(seed)
    prop = rng.dirichlet(np.full(n_genes, 2.0))
    cols = [rng.multinomial(rng.integers(100, 300), rng.dirichlet(alpha * prop)) for _ in range(n_barcodes)]
    m = CountMatrix(sp.csc_matrix(np.column_stack(cols)))
    return m, prop


def test_recovers_alpha_of_simulated_data():
    m, prop = _dm_counts(alpha=50.0)
    alpha = estimate_alpha(m, prop, m.column_totals())
    assert 25 < alpha < 100


def test_likelihood_peaks_near_estimate():
    m, prop = _dm_counts(alpha=20.0, seed=1)
    totals = m.column_totals().astype(float)
    x = m.data.astype(float)
    per_prop = prop[m.indices]
    alpha = estimate_alpha(m, prop, totals)
    best = dirichlet_multinomial_loglik(alpha, x, per_prop, totals)
    assert best >= dirichlet_multinomial_loglik(alpha / 2, x, per_prop, totals)
    assert best >= dirichlet_multinomial_loglik(alpha * 2, x, per_prop, totals)


def test_boundary_optimum_raises():
    m, prop = _dm_counts(alpha=50.0)
    with pytest.raises(OptimizationFailure) as exc:
        estimate_alpha(m, prop, m.column_totals(), interval=(0.01, 1.0))
    assert exc.value.parameter == "alpha_interval"
    assert exc.value.value == (0.01, 1.0)
    assert isinstance(exc.value, RuntimeError)


def test_multinomial_data_runs_into_upper_bound():
    m, prop = _dm_counts(alpha=1e7, seed=2)
    with pytest.raises(OptimizationFailure):
        estimate_alpha(m, prop, m.column_totals(), interval=(0.01, 100.0))


def test_widened_interval_brackets_the_optimum():
    m, prop = _dm_counts(alpha=50.0)
    alpha = estimate_alpha(m, prop, m.column_totals(), interval=(0.01, 1000.0))
    assert 1.0 < alpha < 1000.0


@pytest.mark.parametrize("interval", [(0, 10), (5, 1), (-1, 1)])
def test_invalid_interval(interval):
    m, prop = _dm_counts(alpha=50.0, n_barcodes=10)
    with pytest.raises(InvalidInput):
        estimate_alpha(m, prop, m.column_totals(), interval=interval)
