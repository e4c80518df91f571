import numpy as np
import pytest
import scipy.sparse as sp

N_GENES = 30
N_EMPTY = 300
N_MID = 50
N_CELLS = 20
N_ZERO = 5
AMBIENT_ALPHA = 50.0


def simulate_droplets(seed=0, n_genes=N_GENES, n_empty=N_EMPTY, n_mid=N_MID, n_cells=N_CELLS, n_zero=N_ZERO,
                      alpha=AMBIENT_ALPHA):
    """
    Genes x barcodes counts: empty droplets (totals 1-100) and larger empty
    droplets (101-300) drawn as Dirichlet-multinomial around one ambient
    profile with concentration ``alpha``, cells (500-2000) drawn from a
    different profile, and all-zero barcodes at the end.
    """
    rng = np.random.default_rng(seed)
    ambient = rng.dirichlet(np.ones(n_genes))
    cell_profile = rng.dirichlet(np.full(n_genes, 0.3))

    cols = [rng.multinomial(rng.integers(1, 101), rng.dirichlet(alpha * ambient)) for _ in range(n_empty)]
    cols += [rng.multinomial(rng.integers(101, 301), rng.dirichlet(alpha * ambient)) for _ in range(n_mid)]
    cols += [rng.multinomial(rng.integers(500, 2001), cell_profile) for _ in range(n_cells)]
    cols += [np.zeros(n_genes, dtype=np.int64) for _ in range(n_zero)]
    return sp.csc_matrix(np.column_stack(cols)), ambient


@pytest.fixture
def droplets():
    counts, _ = simulate_droplets()
    return counts


@pytest.fixture
def cell_columns():
    return np.arange(N_EMPTY + N_MID, N_EMPTY + N_MID + N_CELLS)


@pytest.fixture
def zero_columns():
    return np.arange(N_EMPTY + N_MID + N_CELLS, N_EMPTY + N_MID + N_CELLS + N_ZERO)
