"""
Knee and inflection points of the barcode rank curve.

Used to pick a default retention threshold when the caller gives none.
"""

import logging
from typing import NamedTuple

import numpy as np

from .config import DEFAULT_EXCLUDE_FROM
from .errors import InvalidInput
from .matrix import CountMatrix

logger = logging.getLogger(__name__)


class BarcodeRanks(NamedTuple):
    rank: np.ndarray  # average rank of every barcode, 1 = largest total
    total: np.ndarray
    knee: float
    inflection: float


def _find_curve_bounds(x: np.ndarray, y: np.ndarray, exclude_from: int = DEFAULT_EXCLUDE_FROM):
    """
    Left and right edges of the knee region on the log-log rank curve.

    The right edge is the steepest drop after skipping the first
    ``exclude_from`` ranks; the left edge is the flattest point before it.
    """
    d1n = np.diff(y) / np.diff(x)
    skip = int(min(len(d1n) - 1, np.sum(x <= np.log10(exclude_from))))
    d1n = d1n[skip:]

    right_edge = int(np.argmin(d1n))
    left_edge = int(np.argmax(d1n[:right_edge + 1]))
    return left_edge + skip, right_edge + skip


def barcode_ranks(totals: np.ndarray, lower: float = 100,
                  exclude_from: int = DEFAULT_EXCLUDE_FROM) -> BarcodeRanks:
    """
    Rank barcodes by total count and locate the knee and inflection points.

    Parameters
    ----------
    totals : np.ndarray
        Total count per barcode.
    lower : float
        Only totals above this are used to fit the curve.
    exclude_from : int
        Number of highest-ranked barcodes ignored when looking for the edges.

    Raises
    ------
    InvalidInput
        If fewer than three distinct totals lie above ``lower``.
    """
    totals = np.asarray(totals)
    o = np.argsort(-totals, kind='stable')
    ordered = totals[o]

    # Run-length encoding of the descending totals.
    starts = np.concatenate(([True], ordered[1:] != ordered[:-1])) if len(ordered) else np.zeros(0, bool)
    run_values = ordered[starts]
    run_lengths = np.diff(np.concatenate((np.flatnonzero(starts), [len(ordered)])))
    run_rank = np.cumsum(run_lengths) - (run_lengths - 1) / 2

    keep = run_values > lower
    if np.sum(keep) < 3:
        raise InvalidInput("insufficient unique points for computing knee/inflection points",
                           parameter="lower", value=lower)

    kept_totals = run_values[keep]
    y = np.log10(kept_totals)
    x = np.log10(run_rank[keep])

    left_edge, right_edge = _find_curve_bounds(x, y, exclude_from)
    inflection = float(kept_totals[right_edge])

    new_keep = np.arange(left_edge, right_edge + 1)
    if len(new_keep) >= 4:
        curx = x[new_keep]
        cury = y[new_keep]
        gradient = (cury[-1] - cury[0]) / (curx[-1] - curx[0])
        intercept = cury[0] - curx[0] * gradient

        # Knee is the point above the chord that lies furthest from it.
        above = np.flatnonzero(cury >= curx * gradient + intercept)
        dist = np.abs(gradient * curx[above] - cury[above] + intercept) / np.sqrt(gradient ** 2 + 1)
        knee = float(kept_totals[new_keep[above[np.argmax(dist)]]])
    else:
        knee = float(kept_totals[new_keep[0]])

    rank = np.empty(len(totals), dtype=np.float64)
    rank[o] = np.repeat(run_rank, run_lengths)
    return BarcodeRanks(rank=rank, total=totals, knee=knee, inflection=inflection)


def knee_point(matrix, lower: float = 100, exclude_from: int = DEFAULT_EXCLUDE_FROM) -> float:
    """Total count at the knee of the barcode rank curve of ``matrix``."""
    totals = CountMatrix.from_any(matrix).column_totals()
    ranks = barcode_ranks(totals, lower=lower, exclude_from=exclude_from)
    logger.info(f"Knee point at total {ranks.knee:g} (inflection at {ranks.inflection:g})")
    return ranks.knee
