"""
Multinomial and Dirichlet-multinomial log-probabilities of barcode count vectors.

The log-probability is split into a data term that depends on the nonzero
entries of a column and a rest term that depends only on the column total, so
barcodes sharing a total can be compared on the data term alone.
"""

import math

import numpy as np
from numba import njit
from scipy.special import gammaln

from .matrix import CountMatrix


@njit(nogil=True)
def _multinom_prob_data(indptr, indices, data, prop, alpha):
    """Per-column data term, touching nonzero entries only."""
    ncols = len(indptr) - 1
    out = np.zeros(ncols)
    multinomial = np.isinf(alpha)
    for j in range(ncols):
        acc = 0.0
        for k in range(indptr[j], indptr[j + 1]):
            x = float(data[k])
            p = prop[indices[k]]
            if multinomial:
                acc += x * math.log(p) - math.lgamma(x + 1.0)
            else:
                alpha_p = alpha * p
                acc += math.lgamma(alpha_p + x) - math.lgamma(x + 1.0) - math.lgamma(alpha_p)
        out[j] = acc
    return out


def compute_multinom_prob_data(matrix: CountMatrix, prop: np.ndarray, alpha: float = np.inf) -> np.ndarray:
    """
    Data-dependent component of the log-probability for every column.

    Multinomial (``alpha=inf``): ``sum_i x_i log p_i - log x_i!``.
    Dirichlet-multinomial: ``sum_i lgamma(alpha p_i + x_i) - log x_i! - lgamma(alpha p_i)``.
    """
    return _multinom_prob_data(matrix.indptr, matrix.indices, matrix.data,
                               np.asarray(prop, dtype=np.float64), float(alpha))


def compute_multinom_prob_rest(totals: np.ndarray, alpha: float = np.inf) -> np.ndarray:
    """Total-dependent component of the log-probability."""
    totals = np.asarray(totals, dtype=np.float64)
    if np.isinf(alpha):
        return gammaln(totals + 1)
    return gammaln(totals + 1) + gammaln(alpha) - gammaln(totals + alpha)


def compute_log_prob(matrix: CountMatrix, prop: np.ndarray, alpha: float = np.inf) -> np.ndarray:
    """Full log-probability of every column of ``matrix`` under the ambient model."""
    return (compute_multinom_prob_data(matrix, prop, alpha)
            + compute_multinom_prob_rest(matrix.column_totals(), alpha))
