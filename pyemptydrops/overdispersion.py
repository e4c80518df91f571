"""Maximum-likelihood estimate of the Dirichlet-multinomial concentration."""

import logging
from typing import Tuple

import numpy as np
from scipy.optimize import minimize_scalar
from scipy.special import gammaln

from .config import DEFAULT_ALPHA_INTERVAL
from .errors import InvalidInput, OptimizationFailure
from .matrix import CountMatrix

logger = logging.getLogger(__name__)


def dirichlet_multinomial_loglik(alpha: float, x: np.ndarray, per_prop: np.ndarray,
                                 totals: np.ndarray) -> float:
    """
    Data-dependent Dirichlet-multinomial log-likelihood of the ambient counts.

    Parameters
    ----------
    alpha : float
        Concentration parameter.
    x : np.ndarray
        Every nonzero ambient count.
    per_prop : np.ndarray
        Ambient proportion of the gene each entry of ``x`` belongs to.
    totals : np.ndarray
        Total count of every ambient barcode.
    """
    prop_alpha = per_prop * alpha
    return (gammaln(alpha) * len(totals)
            - np.sum(gammaln(totals + alpha))
            + np.sum(gammaln(x + prop_alpha))
            - np.sum(gammaln(prop_alpha)))


def estimate_alpha(
    ambient_matrix: CountMatrix,
    prop: np.ndarray,
    totals: np.ndarray,
    interval: Tuple[float, float] = DEFAULT_ALPHA_INTERVAL,
) -> float:
    """
    Estimate the Dirichlet-multinomial alpha parameter.

    Brent's bounded search maximises the likelihood over ``interval``. A
    maximum that sits on either bound was not bracketed by the interval, so
    the search is treated as failed; callers facing extreme ambient profiles
    should widen the interval and retry.

    Parameters
    ----------
    ambient_matrix : CountMatrix
        Counts of the ambient barcodes only.
    prop : np.ndarray
        Ambient proportions.
    totals : np.ndarray
        Total counts of the ambient barcodes.
    interval : tuple, optional (default: (0.01, 10000))
        Search bounds for alpha.

    Returns
    -------
    float
        The estimated alpha parameter.

    Raises
    ------
    OptimizationFailure
        If the search does not converge or the optimum lies on a bound of
        ``interval``.
    """
    lo, hi = interval
    if not 0 < lo < hi:
        raise InvalidInput(f"alpha interval must satisfy 0 < low < high, got {interval!r}",
                           parameter="alpha_interval", value=interval)

    x = ambient_matrix.data.astype(np.float64)
    per_prop = np.asarray(prop, dtype=np.float64)[ambient_matrix.indices]
    totals = np.asarray(totals, dtype=np.float64)

    result = minimize_scalar(
        lambda a: -dirichlet_multinomial_loglik(a, x, per_prop, totals),
        bounds=(lo, hi),
        method='bounded',
    )

    if not result.success or not np.isfinite(result.x) or not np.isfinite(result.fun):
        raise OptimizationFailure(
            f"alpha search did not converge in [{lo}, {hi}]: {result.message}",
            parameter="alpha_interval", value=interval)

    alpha = float(result.x)
    if (np.isclose(alpha, lo, rtol=1e-3, atol=1e-4)
            or np.isclose(alpha, hi, rtol=1e-3, atol=1e-4)):
        raise OptimizationFailure(
            f"alpha search did not bracket a maximum in [{lo}, {hi}] "
            f"(optimum at {alpha:.6g}); widen alpha_interval",
            parameter="alpha_interval", value=interval)
    logger.info(f"Estimated alpha parameter: {alpha:.4f}")
    return alpha
