import numpy as np
import pandas as pd
import pytest

from pyemptydrops.results import BarcodeStat, PerBarcodeStats


@pytest.fixture
def stats():
    column_totals = np.array([0, 150, 3, 900])
    tested = np.array([False, True, False, True])
    return PerBarcodeStats(column_totals, tested,
                           total=np.array([150, 900]),
                           log_prob=np.array([-40.0, -700.0]),
                           p_value=np.array([0.3, 0.001]),
                           limited=np.array([False, True]),
                           barcodes=["A", "B", "C", "D"],
                           metadata={"niters": 999, "ambient": np.array([0.5, 0.5])})


def test_untested_barcodes_have_no_statistics(stats):
    assert stats[0] is None
    assert stats[2] is None
    assert stats[1] == BarcodeStat(total=150, log_prob=-40.0, p_value=0.3, limited=False)
    assert stats[-1].limited is True


def test_index_out_of_range(stats):
    with pytest.raises(IndexError):
        stats[4]


def test_to_frame_uses_nullable_columns(stats):
    df = stats.to_frame()
    assert list(df.index) == ["A", "B", "C", "D"]
    assert str(df["Total"].dtype) == "Int64"
    assert str(df["PValue"].dtype) == "Float64"
    assert str(df["Limited"].dtype) == "boolean"
    assert df["PValue"].isna().tolist() == [True, False, True, False]
    assert df.loc["D", "Total"] == 900
    assert "FDR" not in df.columns
    assert df.attrs["niters"] == 999
    assert "ambient" not in df.attrs


def test_frame_reports_totals_of_untested_barcodes(stats):
    df = stats.to_frame()
    assert stats[2] is None
    assert df.loc["C", "Total"] == 3
    assert df.loc["A", "Total"] == 0
    assert pd.isna(df.loc["C", "LogProb"])
    assert pd.isna(df.loc["C", "Limited"])
    # the tested mask, not Total, separates tested from untested rows
    np.testing.assert_array_equal(df["PValue"].notna().to_numpy(), stats.tested)


def test_fdr_only_for_corrected_barcodes(stats):
    out = stats.with_fdr(np.array([np.nan, 0.002]), np.array([False, True]), retain=np.inf)
    assert out[1].fdr is None
    assert out[3].fdr == 0.002
    df = out.to_frame()
    assert df["FDR"].isna().tolist() == [True, True, True, False]
    np.testing.assert_array_equal(out.is_cell(0.01), [False, False, False, True])
    assert out.summary()["fdr_0.01"] == 1


def test_is_cell_needs_correction(stats):
    with pytest.raises(ValueError):
        stats.is_cell()


def test_length_mismatch_rejected():
    with pytest.raises(ValueError):
        PerBarcodeStats(np.array([1, 2]), np.array([True, True]), np.array([1]),
                        np.array([0.0]), np.array([0.5]), np.array([False]))


def test_frame_round_trips_through_pandas(stats):
    df = stats.to_frame()
    assert isinstance(df, pd.DataFrame)
    assert df["Limited"].sum() == 1
