"""
Count matrix access for EmptyDrops.

All storage formats (dense arrays, any scipy.sparse layout, AnnData) are
converted once into a CSC matrix laid out genes x barcodes, so the rest of the
engine only ever walks the nonzero entries of a column.
"""

import logging
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np
from scipy import sparse

from .errors import InvalidInput

logger = logging.getLogger(__name__)


class CountMatrix:
    """
    Immutable genes x barcodes count matrix with cheap column access.

    Parameters
    ----------
    counts : scipy.sparse matrix
        Non-negative integer counts, rows are genes and columns are barcodes.
    barcodes : sequence of str, optional
        Column labels.
    genes : sequence of str, optional
        Row labels.
    """

    def __init__(self, counts, barcodes: Optional[Sequence[str]] = None,
                 genes: Optional[Sequence[str]] = None):
        csc = sparse.csc_matrix(counts, copy=True)
        csc.sum_duplicates()
        csc.eliminate_zeros()
        csc.sort_indices()
        self._m = csc
        self._m.data.flags.writeable = False
        self.barcodes = None if barcodes is None else np.asarray(barcodes, dtype=object)
        self.genes = None if genes is None else np.asarray(genes, dtype=object)
        if self.barcodes is not None and len(self.barcodes) != csc.shape[1]:
            raise InvalidInput(f"{len(self.barcodes)} barcode labels for {csc.shape[1]} columns",
                               parameter="barcodes", value=len(self.barcodes))
        if self.genes is not None and len(self.genes) != csc.shape[0]:
            raise InvalidInput(f"{len(self.genes)} gene labels for {csc.shape[0]} rows",
                               parameter="genes", value=len(self.genes))
        self._totals = None

    @classmethod
    def from_any(cls, data, barcodes: Optional[Sequence[str]] = None,
                 genes: Optional[Sequence[str]] = None) -> "CountMatrix":
        """
        Build a ``CountMatrix`` from whatever the caller holds.

        AnnData objects are stored cells x genes, so they are transposed here and
        their ``obs_names``/``var_names`` become the labels. NumPy arrays and
        scipy.sparse matrices are taken to be genes x barcodes already.
        """
        if isinstance(data, CountMatrix):
            return data
        if hasattr(data, "obs_names") and hasattr(data, "X"):
            X = data.X
            X = X.T if sparse.issparse(X) else np.asarray(X).T
            return cls(X,
                       barcodes=barcodes if barcodes is not None else np.asarray(data.obs_names),
                       genes=genes if genes is not None else np.asarray(data.var_names))
        if sparse.issparse(data):
            return cls(data, barcodes=barcodes, genes=genes)
        arr = np.asarray(data)
        if arr.ndim != 2:
            raise InvalidInput(f"count matrix must be two-dimensional, got shape {arr.shape}",
                               parameter="matrix", value=arr.shape)
        return cls(arr, barcodes=barcodes, genes=genes)

    @property
    def shape(self) -> Tuple[int, int]:
        return self._m.shape

    @property
    def n_genes(self) -> int:
        return self._m.shape[0]

    @property
    def n_barcodes(self) -> int:
        return self._m.shape[1]

    @property
    def indptr(self) -> np.ndarray:
        return self._m.indptr

    @property
    def indices(self) -> np.ndarray:
        return self._m.indices

    @property
    def data(self) -> np.ndarray:
        return self._m.data

    @property
    def nnz(self) -> int:
        return self._m.nnz

    def column(self, j: int) -> Tuple[np.ndarray, np.ndarray]:
        """Row indices and values of the nonzero entries of column ``j``."""
        start, end = self._m.indptr[j], self._m.indptr[j + 1]
        return self._m.indices[start:end], self._m.data[start:end]

    def iter_columns(self) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        for j in range(self.n_barcodes):
            yield self.column(j)

    def column_totals(self) -> np.ndarray:
        """Per-barcode total counts, computed once and cached."""
        if self._totals is None:
            totals = np.asarray(self._m.sum(axis=0)).ravel()
            self._totals = np.rint(totals).astype(np.int64)
            self._totals.flags.writeable = False
        return self._totals

    def select_columns(self, keep) -> "CountMatrix":
        """Subset of the barcodes given by a boolean mask or integer indices."""
        keep = np.asarray(keep)
        if keep.dtype == bool:
            keep = np.flatnonzero(keep)
        barcodes = None if self.barcodes is None else self.barcodes[keep]
        return CountMatrix(self._m[:, keep], barcodes=barcodes, genes=self.genes)

    def to_scipy(self) -> sparse.csc_matrix:
        return self._m.copy()

    def validated(self, round: bool = True) -> "CountMatrix":
        """
        Check that counts are usable integers.

        Negative values are always rejected. Non-integer values are rounded to
        the nearest integer when ``round`` is true and rejected otherwise.
        """
        data = self._m.data
        if data.size and not np.all(np.isfinite(data)):
            raise InvalidInput("count matrix contains non-finite values",
                               parameter="matrix", value="non-finite")
        if data.size and data.min() < 0:
            raise InvalidInput(f"count matrix contains negative values (minimum {data.min()})",
                               parameter="matrix", value=float(data.min()))

        if np.issubdtype(data.dtype, np.integer):
            return self
        if data.dtype == bool:
            return CountMatrix(self._m.astype(np.int64), barcodes=self.barcodes, genes=self.genes)
        if np.all(data == np.floor(data)):
            return CountMatrix(self._m.astype(np.int64), barcodes=self.barcodes, genes=self.genes)
        if not round:
            raise InvalidInput("count matrix contains non-integer values and round=False",
                               parameter="round", value=round)

        logger.info("Rounding non-integer counts to the nearest integer")
        rounded = self._m.copy()
        rounded.data = np.rint(rounded.data)
        return CountMatrix(rounded.astype(np.int64), barcodes=self.barcodes, genes=self.genes)

    def __repr__(self):
        return f"CountMatrix({self.n_genes} genes x {self.n_barcodes} barcodes, nnz={self.nnz})"
