"""
EmptyDrops - distinguish cell-containing droplets from empty droplets in
droplet-based single-cell RNA sequencing data.

Each barcode's count vector is tested against the null hypothesis that its
molecules were sampled from the ambient RNA pool, estimated from barcodes that
are assumed to be empty. Monte Carlo p-values are then corrected with
Benjamini-Hochberg, forcing barcodes with large totals to be retained.

Based on:
Lun A, Riesenfeld S, Andrews T, et al. (2019).
Distinguishing cells from empty droplets in droplet-based single-cell RNA sequencing data.
Genome Biol. 20, 63.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from .ambient import compute_ambient_profile
from .config import DEFAULT_ALPHA_INTERVAL, DEFAULT_BACKEND, DEFAULT_LOWER, DEFAULT_NITERS
from .correction import TestAmbientMode, correct_pvalues
from .errors import InvalidInput
from .knee import knee_point
from .logprob import compute_multinom_prob_data, compute_multinom_prob_rest
from .matrix import CountMatrix
from .montecarlo import check_niters, new_seed, permute_counter
from .overdispersion import estimate_alpha
from .parallel import Executor, get_executor
from .results import PerBarcodeStats

logger = logging.getLogger(__name__)


def _check_alpha(alpha) -> Optional[float]:
    if alpha is None:
        return None
    try:
        alpha = float(alpha)
    except (TypeError, ValueError):
        raise InvalidInput(f"alpha must be a positive number, inf or None, got {alpha!r}",
                           parameter="alpha", value=alpha) from None
    if np.isnan(alpha) or alpha <= 0:
        raise InvalidInput(f"alpha must be a positive number, inf or None, got {alpha!r}",
                           parameter="alpha", value=alpha)
    return alpha


def _check_seed(seed) -> int:
    if seed is None:
        return new_seed()
    if isinstance(seed, (bool, np.bool_)) or not isinstance(seed, (int, np.integer)) or seed < 0:
        raise InvalidInput(f"seed must be a non-negative integer, got {seed!r}",
                           parameter="seed", value=seed)
    return int(seed)


def test_ambient_significance(
    matrix,
    lower: float = DEFAULT_LOWER,
    niters: int = DEFAULT_NITERS,
    test_ambient_mode=TestAmbientMode.EXCLUDE,
    ignore: Optional[float] = None,
    alpha: Optional[float] = None,
    by_rank: Optional[int] = None,
    known_empty=None,
    round: bool = True,
    seed: Optional[int] = None,
    n_workers: int = 1,
    executor: Optional[Executor] = None,
    backend: str = DEFAULT_BACKEND,
    alpha_interval: Tuple[float, float] = DEFAULT_ALPHA_INTERVAL,
    progress: bool = False,
) -> PerBarcodeStats:
    """
    Test every candidate barcode for deviation from the ambient profile.

    Parameters
    ----------
    matrix : CountMatrix, array-like, scipy.sparse matrix or AnnData
        Raw counts before any filtering. Arrays and sparse matrices are genes x
        barcodes; AnnData objects are barcodes x genes.
    lower : float, optional (default: 100)
        Barcodes with totals at or below this are assumed empty.
    niters : int, optional (default: 10000)
        Number of Monte Carlo iterations.
    test_ambient_mode : TestAmbientMode or str, optional (default: EXCLUDE)
        With ``EXCLUDE`` the ambient barcodes are not tested; otherwise every
        barcode with a positive total is.
    ignore : float, optional
        Barcodes with totals at or below this are never tested.
    alpha : float, optional
        Dirichlet-multinomial concentration. ``None`` estimates it from the
        ambient barcodes, ``np.inf`` gives the plain multinomial.
    by_rank : int, optional
        Define the ambient set as everything beyond the ``by_rank`` largest
        barcodes; overrides ``lower``.
    known_empty : array-like, optional
        Indices or mask of barcodes known to be empty; overrides ``lower``.
        Cannot be combined with ``by_rank``.
    round : bool, optional (default: True)
        Round non-integer counts instead of rejecting them.
    seed : int, optional
        Logical run seed. Results are identical for a given seed whatever the
        number of workers. A fresh seed is drawn and recorded when omitted.
    n_workers : int, optional (default: 1)
        Number of independent simulation tasks.
    executor : callable, optional
        Runs a list of zero-argument tasks and returns their results in order.
        Built from ``n_workers`` and ``backend`` when omitted.
    backend : str, optional (default: "threads")
        ``"serial"``, ``"threads"`` or ``"processes"``.
    alpha_interval : tuple, optional (default: (0.01, 10000))
        Search interval for the alpha estimate.
    progress : bool, optional (default: False)
        Show progress bars.

    Returns
    -------
    PerBarcodeStats
        Total, LogProb, PValue and Limited for every tested barcode. Untested
        barcodes have no statistics.
    """
    niters = check_niters(niters)
    mode = TestAmbientMode.parse(test_ambient_mode)
    alpha = _check_alpha(alpha)
    seed = _check_seed(seed)

    counts = CountMatrix.from_any(matrix).validated(round=round)
    totals = counts.column_totals()
    logger.info(f"Input: {counts!r}")

    profile = compute_ambient_profile(counts, lower=lower, by_rank=by_rank, known_empty=known_empty)
    ambient_prop = profile.proportions

    if alpha is None:
        ambient_m = counts.select_columns(profile.ambient)
        alpha = estimate_alpha(ambient_m, ambient_prop, totals[profile.ambient], interval=alpha_interval)

    keep = totals > 0
    if not mode.tests_ambient:
        keep &= ~profile.ambient
    if ignore is not None:
        keep &= totals > ignore

    obs_m = counts.select_columns(keep)
    obs_totals = totals[keep]
    logger.info(f"Testing {int(keep.sum())} of {counts.n_barcodes} barcodes")

    obs_p = compute_multinom_prob_data(obs_m, ambient_prop, alpha)
    rest_p = compute_multinom_prob_rest(obs_totals, alpha)

    if executor is None:
        executor = get_executor(n_workers, backend=backend, progress=progress)
    n_above = permute_counter(obs_totals, obs_p, ambient_prop, niters, alpha=alpha,
                              seed=seed, n_workers=n_workers, executor=executor)
    limited = n_above == 0
    pval = (n_above + 1) / (niters + 1)

    metadata: Dict[str, Any] = {
        'lower': profile.lower,
        'niters': niters,
        'ambient': ambient_prop,
        'ambient_barcodes': profile.ambient,
        'alpha': alpha,
        'seed': seed,
        'n_workers': n_workers,
        'test_ambient_mode': mode.value,
    }
    return PerBarcodeStats(totals, keep, obs_totals, obs_p + rest_p, pval, limited,
                           barcodes=counts.barcodes, metadata=metadata)


def call_non_empty(
    matrix,
    lower: float = DEFAULT_LOWER,
    retain: Optional[float] = None,
    round: bool = True,
    test_ambient_mode=TestAmbientMode.EXCLUDE,
    knee_point_fn: Optional[Callable[..., float]] = None,
    barcode_args: Optional[Dict[str, Any]] = None,
    **kwargs,
) -> PerBarcodeStats:
    """
    Call non-empty droplets with FDR control.

    Runs ``test_ambient_significance`` and applies Benjamini-Hochberg. Tested
    barcodes with totals >= ``retain`` always get an FDR of zero; their Monte
    Carlo p-values are still reported.

    Parameters
    ----------
    matrix
        As for ``test_ambient_significance``.
    lower : float, optional (default: 100)
        Ambient threshold; may be redefined by ``by_rank``.
    retain : float, optional
        Retention threshold. When omitted, ``knee_point_fn(matrix, lower)`` is
        used. ``np.inf`` disables retention.
    round : bool, optional (default: True)
        Round non-integer counts once, before any testing.
    test_ambient_mode : TestAmbientMode or str, optional (default: EXCLUDE)
        ``TEST`` reports p-values for ambient barcodes but keeps them out of
        the correction; ``TEST_AND_CORRECT`` includes them (back-compatible).
    knee_point_fn : callable, optional
        ``(matrix, lower, **barcode_args) -> float``. Defaults to
        :func:`pyemptydrops.knee.knee_point`.
    barcode_args : dict, optional
        Extra keyword arguments for ``knee_point_fn``.
    **kwargs
        Passed on to ``test_ambient_significance``.

    Returns
    -------
    PerBarcodeStats
        As ``test_ambient_significance``, with FDR values.
    """
    check_niters(kwargs.get('niters', DEFAULT_NITERS))
    mode = TestAmbientMode.parse(test_ambient_mode)
    counts = CountMatrix.from_any(matrix).validated(round=round)
    stats = test_ambient_significance(counts, lower=lower, round=False, test_ambient_mode=mode, **kwargs)

    # by_rank may have redefined lower
    lower = stats.metadata['lower']
    if retain is None:
        fn = knee_point if knee_point_fn is None else knee_point_fn
        retain = fn(counts, lower, **(barcode_args or {}))
        logger.info(f"Automatically determined retain threshold: {retain}")

    out = correct_pvalues(stats, retain, test_ambient_mode=mode,
                          ambient=stats.metadata['ambient_barcodes'])
    summary = out.summary()
    logger.info(f"FDR <= 0.001: {summary['fdr_0.001']}, FDR <= 0.01: {summary['fdr_0.01']}, "
                f"FDR <= 0.05: {summary['fdr_0.05']}")
    return out


# Names used by the original EmptyDrops implementation.
test_empty_drops = test_ambient_significance
empty_drops = call_non_empty
