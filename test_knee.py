import numpy as np
import pytest

from pyemptydrops.errors import InvalidInput
from pyemptydrops.knee import barcode_ranks, knee_point


def _two_populations(seed=0):
    rng = np.random.default_rng(seed)
    cells = rng.integers(2000, 4000, size=100)
    empties = rng.integers(1, 150, size=2000)
    return np.concatenate([empties, cells])


def test_ties_get_average_rank():
    ranks = barcode_ranks(np.array([5, 9, 3, 5, 1]), lower=0)
    np.testing.assert_allclose(ranks.rank, [2.5, 1.0, 4.0, 2.5, 5.0])


def test_knee_sits_on_the_cell_plateau():
    totals = _two_populations()
    ranks = barcode_ranks(totals, lower=100)
    assert ranks.inflection >= 2000
    assert ranks.knee >= ranks.inflection
    assert ranks.knee in set(totals.tolist())


def test_knee_point_reads_matrix_totals():
    totals = _two_populations(seed=1)
    # one gene holding every count
    matrix = totals[np.newaxis, :]
    assert knee_point(matrix, lower=100) == barcode_ranks(totals, lower=100).knee


def test_too_few_unique_totals():
    with pytest.raises(InvalidInput) as exc:
        barcode_ranks(np.array([500, 500, 300, 10, 5]), lower=100)
    assert exc.value.parameter == "lower"
