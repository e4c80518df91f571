import numpy as np
import pytest
import scipy.sparse as sp
from scipy.special import gammaln
from scipy.stats import multinomial

from pyemptydrops.logprob import compute_log_prob, compute_multinom_prob_data, compute_multinom_prob_rest
from pyemptydrops.matrix import CountMatrix


def _dm_logpmf(x, prop, alpha):
    total = x.sum()
    ap = alpha * prop
    return (gammaln(alpha) + gammaln(total + 1) - gammaln(total + alpha)
            + np.sum(gammaln(x + ap) - gammaln(x + 1) - gammaln(ap)))


def test_single_gene_multinomial_is_certain():
    m = CountMatrix(np.array([[7, 1, 250]]))
    logp = compute_log_prob(m, np.array([1.0]), alpha=np.inf)
    np.testing.assert_allclose(logp, 0.0, atol=1e-9)


def test_multinomial_matches_scipy():
    rng = np.random.default_rng(1)
    prop = rng.dirichlet(np.ones(12))
    x = rng.multinomial(80, prop, size=5).T  # genes x barcodes
    logp = compute_log_prob(CountMatrix(x), prop, alpha=np.inf)
    expected = [multinomial.logpmf(x[:, j], n=x[:, j].sum(), p=prop) for j in range(5)]
    np.testing.assert_allclose(logp, expected, rtol=1e-9)


def test_dirichlet_multinomial_formula():
    rng = np.random.default_rng(2)
    prop = rng.dirichlet(np.ones(8))
    x = rng.multinomial(40, prop, size=4).T
    alpha = 7.5
    logp = compute_log_prob(CountMatrix(sp.csc_matrix(x)), prop, alpha=alpha)
    expected = [_dm_logpmf(x[:, j], prop, alpha) for j in range(4)]
    np.testing.assert_allclose(logp, expected, rtol=1e-9)


def test_large_alpha_approaches_multinomial():
    rng = np.random.default_rng(3)
    prop = rng.dirichlet(np.ones(6))
    x = rng.multinomial(50, prop, size=3).T
    m = CountMatrix(x)
    np.testing.assert_allclose(compute_log_prob(m, prop, alpha=1e8),
                               compute_log_prob(m, prop, alpha=np.inf), atol=1e-2)


def test_empty_column_has_zero_terms():
    m = CountMatrix(np.array([[0, 3], [0, 1]]))
    data = compute_multinom_prob_data(m, np.array([0.5, 0.5]))
    rest = compute_multinom_prob_rest(m.column_totals())
    assert data[0] == 0.0
    assert rest[0] == 0.0
