"""
Ambient profile estimation.

Selects the barcodes assumed to be empty droplets, pools their counts and turns
the pooled gene counts into a proportion vector with Simple Good-Turing
smoothing, so that genes never seen in the ambient pool still get a small
positive probability.

Based on:
Gale WA, Sampson G (1995). Good-Turing frequency estimation without tears.
J. Quant. Linguist. 2, 217-237.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import scipy.stats as ss

from .errors import InvalidInput, InsufficientAmbientData
from .matrix import CountMatrix

logger = logging.getLogger(__name__)

# Critical value used to decide when to stop trusting the raw Turing estimates.
GOOD_TURING_CONF = 1.96


@dataclass(frozen=True)
class AmbientProfile:
    """Result of ambient estimation for one run."""

    ambient: np.ndarray  # boolean mask over barcodes
    lower: float
    proportions: np.ndarray  # sums to 1, strictly positive
    counts: np.ndarray  # pooled ambient counts per gene

    @property
    def n_ambient(self) -> int:
        return int(self.ambient.sum())


def get_putative_empty(
    totals: np.ndarray,
    lower: float = 100,
    by_rank: Optional[int] = None,
    known_empty: Optional[Union[Sequence[int], np.ndarray]] = None,
) -> Tuple[np.ndarray, float]:
    """
    Decide which barcodes are assumed to be empty droplets.

    Exactly one selection mode applies, in priority order: explicit
    ``known_empty`` indices (or mask), a rank cutoff ``by_rank``, or the plain
    ``lower`` threshold.

    Parameters
    ----------
    totals : np.ndarray
        Total count per barcode.
    lower : float
        Barcodes with totals at or below this value are assumed empty.
    by_rank : int, optional
        Treat everything beyond the ``by_rank`` largest barcodes as empty.
        ``lower`` is recomputed as the total at rank ``by_rank + 1``, so ties at
        the boundary also count as empty.
    known_empty : array-like, optional
        Integer indices or boolean mask of barcodes known to be empty.

    Returns
    -------
    tuple
        (boolean ambient mask, the ``lower`` value actually in effect)
    """
    totals = np.asarray(totals)
    n = len(totals)

    if known_empty is not None and by_rank is not None:
        raise InvalidInput("known_empty and by_rank are mutually exclusive",
                           parameter="by_rank", value=by_rank)

    if known_empty is not None:
        known_empty = np.asarray(known_empty)
        ambient = np.zeros(n, dtype=bool)
        if known_empty.dtype == bool:
            if len(known_empty) != n:
                raise InvalidInput(f"known_empty mask has length {len(known_empty)}, expected {n}",
                                   parameter="known_empty", value=len(known_empty))
            ambient[:] = known_empty
        elif known_empty.size:
            if not np.issubdtype(known_empty.dtype, np.integer):
                raise InvalidInput("known_empty must hold integer indices or a boolean mask",
                                   parameter="known_empty", value=str(known_empty.dtype))
            if known_empty.min() < 0 or known_empty.max() >= n:
                raise InvalidInput(f"known_empty indices must lie in [0, {n})",
                                   parameter="known_empty",
                                   value=(int(known_empty.min()), int(known_empty.max())))
            ambient[known_empty] = True
        return ambient, lower

    if by_rank is not None:
        by_rank = int(by_rank)
        if by_rank < 0:
            raise InvalidInput(f"by_rank must be non-negative, got {by_rank}",
                               parameter="by_rank", value=by_rank)
        if by_rank >= n:
            raise InvalidInput(f"not enough barcodes ({n}) for by_rank={by_rank}",
                               parameter="by_rank", value=by_rank)
        ordered = np.sort(totals)[::-1]
        lower = ordered[by_rank]
        logger.info(f"by_rank={by_rank} sets the lower bound to {lower}")

    if lower is None or np.isnan(lower):
        raise InvalidInput("lower must be a number", parameter="lower", value=lower)
    return totals <= lower, lower


def _smoothed_frequencies(r: np.ndarray, n: np.ndarray) -> np.ndarray:
    """Gale & Sampson Z transform of the frequencies of frequencies."""
    q = np.concatenate(([0.0], r[:-1]))
    t = np.concatenate((r[1:], [2.0 * r[-1] - q[-1]]))
    return n / (0.5 * (t - q))


def simple_good_turing(r: np.ndarray, n: np.ndarray, conf: float = GOOD_TURING_CONF) -> Tuple[np.ndarray, float]:
    """
    Simple Good-Turing estimate of the proportion for each observed frequency.

    Parameters
    ----------
    r : np.ndarray
        Distinct nonzero frequencies, ascending.
    n : np.ndarray
        Number of items observed with each frequency.
    conf : float
        Critical value for switching from Turing to log-linear estimates.

    Returns
    -------
    tuple
        (proportion per item for each frequency in ``r``, total probability of unseen items)
    """
    r = r.astype(float)
    n = n.astype(float)
    N = np.sum(r * n)
    p0 = n[0] / N if r[0] == 1 else 0.0

    if len(r) < 2:
        # No regression possible; fall back to raw proportions.
        return r / N, 0.0

    Z = _smoothed_frequencies(r, n)
    slope, _, _, _, _ = ss.linregress(np.log(r), np.log(Z))
    lgt = r * np.power(1.0 + 1.0 / r, 1.0 + slope)

    rstar = np.empty_like(r)
    use_turing = True
    for i in range(len(r)):
        if use_turing and i + 1 < len(r) and r[i + 1] == r[i] + 1:
            turing = (r[i] + 1) * n[i + 1] / n[i]
            sd = (r[i] + 1) / n[i] * np.sqrt(n[i + 1] * (1.0 + n[i + 1] / n[i]))
            if abs(lgt[i] - turing) > conf * sd:
                rstar[i] = turing
                continue
        use_turing = False
        rstar[i] = lgt[i]

    props = (1.0 - p0) * rstar / np.sum(n * rstar)
    return props, p0


def good_turing_proportions(counts: np.ndarray) -> np.ndarray:
    """
    Smoothed proportions for a vector of pooled counts.

    Observed genes get their Good-Turing proportion; the unseen mass is split
    evenly across genes with zero counts. When no gene is unseen the vector is
    renormalised instead.
    """
    counts = np.asarray(counts, dtype=np.int64)
    observed = counts > 0
    freqfreqs = np.bincount(counts[observed])
    r = np.flatnonzero(freqfreqs)
    props_r, p0 = simple_good_turing(r, freqfreqs[r])

    lookup = np.zeros(freqfreqs.shape[0])
    lookup[r] = props_r
    out = np.zeros(len(counts))
    out[observed] = lookup[counts[observed]]

    n0 = np.sum(~observed)
    if n0 > 0:
        out[~observed] = p0 / n0
    else:
        out /= out.sum()
    return out


def safe_good_turing(counts: np.ndarray) -> np.ndarray:
    """
    Good-Turing proportions with no zero entries.

    Any gene still at zero (no singletons were observed, so no unseen mass was
    estimated) gets a share of a ``1/N`` pseudo-probability and the remaining
    genes are scaled down to compensate. The pseudo-probability is capped at
    one half so a single pooled molecule cannot zero out the observed gene.
    """
    counts = np.asarray(counts)
    props = good_turing_proportions(counts)
    still_zero = props <= 0
    if np.any(still_zero):
        pseudo_prob = min(1.0 / np.sum(counts), 0.5)
        props[still_zero] = pseudo_prob / np.sum(still_zero)
        props[~still_zero] *= (1.0 - pseudo_prob)
    return props


def compute_ambient_profile(
    matrix: CountMatrix,
    lower: float = 100,
    by_rank: Optional[int] = None,
    known_empty=None,
) -> AmbientProfile:
    """
    Estimate the ambient RNA profile from the assumed-empty barcodes.

    Raises
    ------
    InsufficientAmbientData
        If no barcode is assumed empty or the ambient barcodes hold no counts.
    """
    totals = matrix.column_totals()
    ambient, lower = get_putative_empty(totals, lower=lower, by_rank=by_rank, known_empty=known_empty)

    n_ambient = int(ambient.sum())
    if n_ambient == 0:
        raise InsufficientAmbientData(f"no barcodes are assumed empty (lower={lower})",
                                      parameter="lower", value=lower)

    pooled = np.asarray(matrix.to_scipy()[:, np.flatnonzero(ambient)].sum(axis=1)).ravel()
    pooled = np.rint(pooled).astype(np.int64)
    if pooled.sum() == 0:
        raise InsufficientAmbientData(
            f"no counts available to estimate the ambient profile from {n_ambient} barcodes",
            parameter="lower", value=lower)

    proportions = safe_good_turing(pooled)
    logger.info(f"Ambient profile from {n_ambient} barcodes "
                f"({pooled.sum()} counts over {np.count_nonzero(pooled)} genes)")
    return AmbientProfile(ambient=ambient, lower=lower, proportions=proportions, counts=pooled)
