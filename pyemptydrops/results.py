"""
Per-barcode EmptyDrops statistics.

Only tested barcodes have statistics. They are stored compactly together with
their column indices, so an untested barcode has no numeric value at all:
indexing it returns ``None`` and the pandas export shows ``<NA>`` for its
statistics while still reporting its total.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class BarcodeStat:
    total: int
    log_prob: float
    p_value: float
    limited: bool
    fdr: Optional[float] = None


class PerBarcodeStats:
    """
    Statistics for every barcode of a count matrix.

    Parameters
    ----------
    column_totals : np.ndarray
        Total count of every barcode, tested or not.
    tested : np.ndarray
        Boolean mask of the tested barcodes.
    total, log_prob, p_value, limited : np.ndarray
        Values for the tested barcodes only, in column order.
    barcodes : sequence of str, optional
        Barcode labels.
    metadata : dict, optional
        Run parameters (lower, niters, ambient, alpha, seed, ...).
    """

    def __init__(self, column_totals: np.ndarray, tested: np.ndarray, total: np.ndarray,
                 log_prob: np.ndarray, p_value: np.ndarray, limited: np.ndarray,
                 barcodes: Optional[Sequence[str]] = None,
                 metadata: Optional[Dict[str, Any]] = None,
                 fdr: Optional[np.ndarray] = None, fdr_tested: Optional[np.ndarray] = None):
        self.column_totals = np.asarray(column_totals)
        self.tested = np.asarray(tested, dtype=bool)
        self.indices = np.flatnonzero(self.tested)
        n_tested = len(self.indices)
        for name, arr in (("total", total), ("log_prob", log_prob),
                          ("p_value", p_value), ("limited", limited)):
            if len(arr) != n_tested:
                raise ValueError(f"{name} has {len(arr)} entries for {n_tested} tested barcodes")
        self.total = np.asarray(total, dtype=np.int64)
        self.log_prob = np.asarray(log_prob, dtype=np.float64)
        self.p_value = np.asarray(p_value, dtype=np.float64)
        self.limited = np.asarray(limited, dtype=bool)
        self.barcodes = None if barcodes is None else np.asarray(barcodes, dtype=object)
        self.metadata = dict(metadata or {})
        # fdr is aligned with `indices`; fdr_tested marks entries that took part in correction
        self.fdr = None if fdr is None else np.asarray(fdr, dtype=np.float64)
        self.fdr_tested = None if fdr_tested is None else np.asarray(fdr_tested, dtype=bool)

    def __len__(self) -> int:
        return len(self.tested)

    @property
    def n_tested(self) -> int:
        return len(self.indices)

    @property
    def corrected(self) -> bool:
        return self.fdr is not None

    def with_fdr(self, fdr: np.ndarray, fdr_tested: np.ndarray, **metadata) -> "PerBarcodeStats":
        """Copy of these statistics with corrected values attached."""
        meta = dict(self.metadata)
        meta.update(metadata)
        return PerBarcodeStats(self.column_totals, self.tested, self.total, self.log_prob,
                               self.p_value, self.limited, barcodes=self.barcodes,
                               metadata=meta, fdr=fdr, fdr_tested=fdr_tested)

    def _position(self, i: int) -> Optional[int]:
        if i < 0:
            i += len(self)
        if not 0 <= i < len(self):
            raise IndexError(f"barcode index {i} out of range for {len(self)} barcodes")
        pos = np.searchsorted(self.indices, i)
        if pos < len(self.indices) and self.indices[pos] == i:
            return int(pos)
        return None

    def __getitem__(self, i: int) -> Optional[BarcodeStat]:
        pos = self._position(i)
        if pos is None:
            return None
        fdr = None
        if self.fdr is not None and self.fdr_tested[pos]:
            fdr = float(self.fdr[pos])
        return BarcodeStat(total=int(self.total[pos]), log_prob=float(self.log_prob[pos]),
                           p_value=float(self.p_value[pos]), limited=bool(self.limited[pos]),
                           fdr=fdr)

    def is_cell(self, fdr_threshold: float = 0.001) -> np.ndarray:
        """Boolean call per barcode; untested or uncorrected barcodes are False."""
        if self.fdr is None:
            raise ValueError("statistics have not been corrected for multiple testing")
        out = np.zeros(len(self), dtype=bool)
        hit = self.fdr_tested & (self.fdr <= fdr_threshold)
        out[self.indices[hit]] = True
        return out

    def _expand(self, values, dtype, present=None):
        n = len(self)
        full = np.zeros(n, dtype=values.dtype)
        mask = np.ones(n, dtype=bool)
        idx = self.indices if present is None else self.indices[present]
        vals = values if present is None else values[present]
        full[idx] = vals
        mask[idx] = False
        if dtype == "boolean":
            return pd.arrays.BooleanArray(full.astype(bool), mask)
        return pd.arrays.FloatingArray(full.astype(np.float64), mask)

    def to_frame(self) -> pd.DataFrame:
        """
        One row per barcode, laid out like the R DropletUtils output.

        Total is given for every barcode, tested or not, as R reports it.
        LogProb, PValue, Limited and, when corrected, FDR are nullable and
        missing for barcodes that were not tested. Use ``tested`` or indexing
        (which returns ``None``) to tell untested barcodes apart.
        """
        index = pd.Index(self.barcodes) if self.barcodes is not None else pd.RangeIndex(len(self))
        frame = pd.DataFrame({
            'Total': pd.array(self.column_totals.astype(np.int64), dtype="Int64"),
            'LogProb': self._expand(self.log_prob, "Float64"),
            'PValue': self._expand(self.p_value, "Float64"),
            'Limited': self._expand(self.limited, "boolean"),
        }, index=index)
        if self.fdr is not None:
            frame['FDR'] = self._expand(self.fdr, "Float64", present=self.fdr_tested)
        frame.attrs.update({k: v for k, v in self.metadata.items() if not isinstance(v, np.ndarray)})
        return frame

    def summary(self, thresholds=(0.001, 0.01, 0.05)) -> Dict[str, int]:
        out = {'total_barcodes': len(self), 'tested_barcodes': self.n_tested,
               'limited': int(self.limited.sum())}
        if self.fdr is not None:
            for t in thresholds:
                out[f'fdr_{t}'] = int(np.sum(self.fdr_tested & (self.fdr <= t)))
        return out

    def __repr__(self):
        state = "corrected" if self.corrected else "uncorrected"
        return f"PerBarcodeStats({len(self)} barcodes, {self.n_tested} tested, {state})"
