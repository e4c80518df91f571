#!/usr/bin/env python3
"""
Command-line EmptyDrops runner.

Reads an AnnData ``.h5ad`` or a 10x Genomics ``.h5`` file, calls non-empty
droplets and writes the per-barcode results as CSV, the run metadata as JSON
and, optionally, diagnostic plots.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import scanpy as sc

from .config import EmptyDropsConfig, config_from_dict, load_config
from .empty_drops import call_non_empty
from .errors import EmptyDropsError, InvalidInput
from .knee import barcode_ranks
from .logging_utils import setup_logging
from .plotting import plot_barcode_ranks, plot_pvalue_distribution

logger = logging.getLogger(__name__)


def read_counts(input_file: str, gex_only: bool = True) -> sc.AnnData:
    """Load a barcodes x genes AnnData object from ``.h5ad`` or 10x ``.h5``."""
    path = Path(input_file)
    if not path.exists():
        raise InvalidInput(f"Input file not found: {input_file}", parameter="input", value=input_file)
    if path.suffix == '.h5ad':
        adata = sc.read_h5ad(path)
    elif path.suffix == '.h5':
        adata = sc.read_10x_h5(path, gex_only=gex_only)
    else:
        raise InvalidInput(f"Unsupported input format '{path.suffix}', expected .h5ad or .h5",
                           parameter="input", value=input_file)
    adata.var_names_make_unique()
    logger.info(f"Loaded data: {adata.n_obs} barcodes x {adata.n_vars} genes")
    return adata


def _jsonable(value):
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return _jsonable(value.tolist())
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not np.isfinite(value):
        return str(value)
    return value


def save_results(stats, config: EmptyDropsConfig, output_prefix: str) -> dict:
    """
    Write ``<prefix>_results.csv`` and ``<prefix>_metadata.json``.

    Returns
    -------
    dict
        The metadata written to JSON.
    """
    results_df = stats.to_frame()
    results_df['IsCell'] = stats.is_cell(config.fdr_threshold)
    csv_path = f"{output_prefix}_results.csv"
    results_df.to_csv(csv_path, index=True, index_label='Barcode')
    logger.info(f"Results saved to CSV: {csv_path}")

    metadata = {k: v for k, v in stats.metadata.items() if k != 'ambient_barcodes'}
    metadata['config'] = config.to_dict()
    metadata['summary'] = stats.summary()
    metadata['n_cells'] = int(results_df['IsCell'].sum())
    metadata = _jsonable(metadata)

    json_path = f"{output_prefix}_metadata.json"
    with open(json_path, 'w') as f:
        json.dump(metadata, f, indent=2)
    logger.info(f"Metadata saved to: {json_path}")
    return metadata


def run_empty_drops(
    input_file: str,
    config: EmptyDropsConfig,
    output_dir: str = ".",
    output_prefix: Optional[str] = None,
    plot: bool = True,
    gex_only: bool = True,
):
    """
    Run EmptyDrops on a file and write all outputs.

    Returns
    -------
    tuple
        (PerBarcodeStats, metadata dict)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    if output_prefix is None:
        output_prefix = Path(input_file).stem
    prefix = str(output_dir / output_prefix)

    adata = read_counts(input_file, gex_only=gex_only)
    stats = call_non_empty(
        adata,
        lower=config.lower,
        retain=config.retain,
        round=config.round,
        test_ambient_mode=config.test_ambient,
        niters=config.niters,
        ignore=config.ignore,
        alpha=config.alpha,
        by_rank=config.by_rank,
        seed=config.seed,
        n_workers=config.n_workers,
        backend=config.backend,
        alpha_interval=config.alpha_interval,
        progress=True,
    )
    metadata = save_results(stats, config, prefix)

    if plot:
        lower = stats.metadata['lower']
        inflection = None
        try:
            inflection = barcode_ranks(stats.column_totals, lower=lower).inflection
        except InvalidInput as e:
            logger.warning(f"Skipping inflection point: {e}")

        name = Path(input_file).stem
        plot_barcode_ranks(stats.column_totals, lower=lower, retain=stats.metadata['retain'],
                           inflection=inflection, output_path=f"{prefix}_barcode_ranks.png",
                           title=f"Barcode Rank Plot - {name}")
        plot_pvalue_distribution(stats.to_frame(), output_path=f"{prefix}_pvalue_distribution.png",
                                 niters=stats.metadata['niters'], retain=stats.metadata['retain'],
                                 title=f"P-Value Distribution - {name}")
    return stats, metadata


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pyemptydrops',
        description="Distinguish cell-containing from empty droplets in droplet-based scRNA-seq data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  pyemptydrops raw_feature_bc_matrix.h5

  # With custom output directory and parameters
  pyemptydrops raw.h5ad -o results/ --lower 200 --niters 5000 --seed 1

  # Parallel simulation, reproducible for any worker count
  pyemptydrops raw.h5 --workers 8 --seed 42
        """
    )
    parser.add_argument('input_file', type=str, help='Path to input .h5ad or 10x .h5 file')
    parser.add_argument('-o', '--output-dir', type=str, default='.',
                        help='Output directory for results (default: current directory)')
    parser.add_argument('--output-prefix', type=str, default=None,
                        help='Prefix for output files (default: input filename without extension)')
    parser.add_argument('--config', type=str, default=None,
                        help='JSON config file; command-line flags take precedence')
    parser.add_argument('--lower', type=float, default=None,
                        help='Totals at or below this are assumed empty (default: 100)')
    parser.add_argument('--niters', type=int, default=None,
                        help='Number of Monte Carlo iterations (default: 10000)')
    parser.add_argument('--retain', type=float, default=None,
                        help='Retain threshold; "inf" disables it (default: knee point)')
    parser.add_argument('--by-rank', type=int, default=None,
                        help='Treat all but the N largest barcodes as ambient')
    parser.add_argument('--ignore', type=float, default=None,
                        help='Never test barcodes with totals at or below this')
    parser.add_argument('--alpha', type=float, default=None,
                        help='Dirichlet-multinomial alpha; "inf" for multinomial (default: estimated)')
    parser.add_argument('--test-ambient', choices=['exclude', 'test', 'correct'], default=None,
                        help='How ambient barcodes are treated (default: exclude)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Run seed (default: drawn at random and recorded)')
    parser.add_argument('--workers', type=int, default=None,
                        help='Number of simulation workers (default: 1)')
    parser.add_argument('--backend', choices=['threads', 'processes'], default=None,
                        help='Worker pool type (default: threads)')
    parser.add_argument('--fdr', type=float, default=None,
                        help='FDR threshold for the IsCell column (default: 0.001)')
    parser.add_argument('--all-features', action='store_true',
                        help='Use all 10x features instead of Gene Expression only')
    parser.add_argument('--no-plot', action='store_true', help='Disable plot generation')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--log-file', type=str, default=None, help='Also write the log here')
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line interface."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    overrides = {
        'lower': args.lower,
        'niters': args.niters,
        'retain': args.retain,
        'by_rank': args.by_rank,
        'ignore': args.ignore,
        'alpha': args.alpha,
        'test_ambient': args.test_ambient,
        'seed': args.seed,
        'n_workers': args.workers,
        'backend': args.backend,
        'fdr_threshold': args.fdr,
    }
    try:
        if args.config is not None:
            config = load_config(args.config, **overrides)
        else:
            config = config_from_dict({k: v for k, v in overrides.items() if v is not None})

        stats, metadata = run_empty_drops(
            args.input_file,
            config,
            output_dir=args.output_dir,
            output_prefix=args.output_prefix,
            plot=not args.no_plot,
            gex_only=not args.all_features,
        )
    except (EmptyDropsError, FileNotFoundError) as e:
        logger.error(f"EmptyDrops analysis failed: {e}")
        return 1

    logger.info(f"EmptyDrops analysis completed: {metadata['n_cells']} cells at FDR <= {config.fdr_threshold}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
