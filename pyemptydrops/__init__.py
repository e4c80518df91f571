"""
pyemptydrops - EmptyDrops cell calling for droplet-based single-cell RNA-seq.

Lun A, Riesenfeld S, Andrews T, et al. (2019). Distinguishing cells from empty
droplets in droplet-based single-cell RNA sequencing data. Genome Biol. 20, 63.
"""

from .ambient import AmbientProfile, compute_ambient_profile, get_putative_empty, good_turing_proportions
from .config import EmptyDropsConfig, load_config
from .correction import TestAmbientMode, correct_pvalues
from .empty_drops import call_non_empty, empty_drops, test_ambient_significance, test_empty_drops
from .errors import (
    EmptyDropsError,
    InsufficientAmbientData,
    InvalidInput,
    InvalidIterationCount,
    OptimizationFailure,
    WorkerFailure,
)
from .knee import barcode_ranks, knee_point
from .matrix import CountMatrix
from .overdispersion import estimate_alpha
from .parallel import PoolRunner, get_executor, run_serial
from .results import BarcodeStat, PerBarcodeStats

__version__ = "0.3.0"
