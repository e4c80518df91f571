"""
Multiple-testing correction with forced retention of large barcodes.

Barcodes with totals at or above ``retain`` are assumed to contain cells: their
p-values are set to zero for the Benjamini-Hochberg step only, so they get an
FDR of zero while their Monte Carlo p-values stay available for diagnostics.
Users therefore cannot recover the reported FDR by running BH on PValue.
"""

import logging
from enum import Enum
from typing import Optional, Union

import numpy as np
from statsmodels.stats.multitest import multipletests

from .errors import InvalidInput
from .results import PerBarcodeStats

logger = logging.getLogger(__name__)


class TestAmbientMode(Enum):
    """Which barcodes are tested, and which of them enter the correction."""

    EXCLUDE = "exclude"  # ambient barcodes are neither tested nor corrected
    TEST = "test"  # every barcode with a positive total is tested; ambient ones stay out of BH
    TEST_AND_CORRECT = "correct"  # back-compatible: ambient barcodes are tested and corrected

    @classmethod
    def parse(cls, value: Union["TestAmbientMode", str, bool, None]) -> "TestAmbientMode":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.TEST_AND_CORRECT
        if isinstance(value, (bool, np.bool_)):
            return cls.TEST if value else cls.EXCLUDE
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidInput(f"unknown test_ambient_mode {value!r}; expected one of "
                               f"{[m.value for m in cls]}",
                               parameter="test_ambient_mode", value=value) from None

    @property
    def tests_ambient(self) -> bool:
        return self is not TestAmbientMode.EXCLUDE


def check_retain(retain) -> float:
    try:
        retain = float(retain)
    except (TypeError, ValueError):
        raise InvalidInput(f"retain must be a single number, got {retain!r}",
                           parameter="retain", value=retain) from None
    if np.isnan(retain) or retain < 0:
        raise InvalidInput(f"retain must be a non-negative number or inf, got {retain!r}",
                           parameter="retain", value=retain)
    return retain


def correct_pvalues(
    stats: PerBarcodeStats,
    retain: float,
    test_ambient_mode: TestAmbientMode = TestAmbientMode.EXCLUDE,
    ambient: Optional[np.ndarray] = None,
) -> PerBarcodeStats:
    """
    Benjamini-Hochberg correction with the retention override.

    Parameters
    ----------
    stats : PerBarcodeStats
        Uncorrected statistics.
    retain : float
        Tested barcodes with totals >= retain get an FDR of zero. ``inf`` disables this.
    test_ambient_mode : TestAmbientMode
        With ``TEST``, tested ambient barcodes are left out of the correction and
        carry no FDR. With ``TEST_AND_CORRECT`` they are corrected like the rest.
    ambient : np.ndarray, optional
        Boolean mask over all barcodes marking the ambient set; required for ``TEST``.

    Returns
    -------
    PerBarcodeStats
        A copy with FDR values attached.
    """
    retain = check_retain(retain)
    test_ambient_mode = TestAmbientMode.parse(test_ambient_mode)

    pvals = stats.p_value.copy()
    always = stats.total >= retain
    pvals[always] = 0
    logger.info(f"Automatically retained {int(always.sum())} tested barcodes with totals >= {retain:g}")

    include = np.ones(stats.n_tested, dtype=bool)
    if test_ambient_mode is TestAmbientMode.TEST:
        if ambient is None:
            raise InvalidInput("ambient mask is required to exclude ambient barcodes from correction",
                               parameter="ambient", value=None)
        include &= ~np.asarray(ambient, dtype=bool)[stats.indices]

    fdr = np.full(stats.n_tested, np.nan)
    if include.any():
        fdr[include] = multipletests(pvals[include], method='fdr_bh')[1]
    return stats.with_fdr(fdr, include, retain=retain)
