import anndata as ad
import numpy as np
import pytest
import scipy.sparse as sp

from pyemptydrops.errors import InvalidInput
from pyemptydrops.matrix import CountMatrix


def test_dense_and_sparse_inputs_agree():
    dense = np.array([[1, 0, 3], [0, 0, 2]])
    a = CountMatrix.from_any(dense)
    b = CountMatrix.from_any(sp.csr_matrix(dense))
    assert a.shape == (2, 3)
    np.testing.assert_array_equal(a.column_totals(), [1, 0, 5])
    np.testing.assert_array_equal(a.to_scipy().toarray(), b.to_scipy().toarray())


def test_anndata_is_transposed_with_labels():
    X = sp.csr_matrix(np.array([[1, 2], [0, 0], [4, 0]]))  # 3 barcodes x 2 genes
    adata = ad.AnnData(X=X)
    adata.obs_names = ["AAA", "CCC", "GGG"]
    adata.var_names = ["g1", "g2"]

    m = CountMatrix.from_any(adata)
    assert m.n_genes == 2
    assert m.n_barcodes == 3
    assert list(m.barcodes) == ["AAA", "CCC", "GGG"]
    np.testing.assert_array_equal(m.column_totals(), [3, 0, 4])


def test_column_returns_nonzero_entries_only():
    m = CountMatrix(np.array([[0, 5], [3, 0], [1, 0]]))
    rows, vals = m.column(0)
    np.testing.assert_array_equal(rows, [1, 2])
    np.testing.assert_array_equal(vals, [3, 1])
    assert len(list(m.iter_columns())) == 2


def test_column_totals_are_read_only():
    m = CountMatrix(np.eye(3, dtype=int))
    totals = m.column_totals()
    with pytest.raises(ValueError):
        totals[0] = 10


def test_negative_counts_rejected():
    m = CountMatrix(np.array([[1, -1], [0, 2]]))
    with pytest.raises(InvalidInput) as exc:
        m.validated()
    assert exc.value.parameter == "matrix"


def test_non_integer_counts_need_rounding():
    m = CountMatrix(np.array([[1.4, 2.6], [0.0, 3.0]]))
    with pytest.raises(InvalidInput):
        m.validated(round=False)

    rounded = m.validated(round=True)
    assert np.issubdtype(rounded.data.dtype, np.integer)
    np.testing.assert_array_equal(rounded.to_scipy().toarray(), [[1, 3], [0, 3]])


def test_integral_floats_are_accepted_without_rounding():
    m = CountMatrix(np.array([[1.0, 2.0], [0.0, 3.0]])).validated(round=False)
    assert np.issubdtype(m.data.dtype, np.integer)


def test_select_columns_keeps_labels():
    m = CountMatrix(np.arange(6).reshape(2, 3), barcodes=["a", "b", "c"])
    sub = m.select_columns(np.array([True, False, True]))
    assert list(sub.barcodes) == ["a", "c"]
    assert sub.shape == (2, 2)


def test_label_length_mismatch():
    with pytest.raises(InvalidInput):
        CountMatrix(np.ones((2, 3)), barcodes=["a", "b"])


def test_one_dimensional_input_rejected():
    with pytest.raises(InvalidInput):
        CountMatrix.from_any(np.ones(4))
