"""Diagnostic plots for EmptyDrops runs."""

import logging
from typing import Dict, Optional

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def fdr_threshold_pvalues(
    results_df: pd.DataFrame,
    retain: Optional[float] = None,
    thresholds=(0.001, 0.01, 0.05),
) -> Dict[float, float]:
    """
    Largest p-value reaching each FDR threshold.

    Barcodes with ``Total >= retain`` have their FDR forced to zero whatever
    their p-value, so only barcodes below ``retain`` are considered.
    Thresholds that no barcode reaches are left out.
    """
    if 'FDR' not in results_df.columns:
        return {}
    rows = results_df['PValue'].notna() & results_df['FDR'].notna()
    if retain is not None:
        rows &= results_df['Total'] < retain
    pvalues = results_df.loc[rows, 'PValue'].to_numpy(dtype=float)
    fdr = results_df.loc[rows, 'FDR'].to_numpy(dtype=float)
    out = {}
    for threshold in thresholds:
        hits = pvalues[fdr <= threshold]
        if len(hits) > 0:
            out[threshold] = float(hits.max())
    return out


def plot_barcode_ranks(
    totals: np.ndarray,
    lower: Optional[float],
    retain: Optional[float],
    inflection: Optional[float],
    output_path: str,
    title: str = "Barcode Rank Plot"
):
    """
    Create a log-log barcode rank plot with threshold lines.

    Parameters
    ----------
    totals : np.ndarray
        Total count per barcode
    lower : float, optional
        Ambient threshold
    retain : float, optional
        Retain threshold (knee point)
    inflection : float, optional
        Inflection point
    output_path : str
        Path to save the PNG plot
    title : str
        Plot title
    """
    ordered_totals = np.sort(np.asarray(totals))[::-1]
    # zeros cannot be drawn on a log axis
    ordered_totals = ordered_totals[ordered_totals > 0]
    ranks = np.arange(1, len(ordered_totals) + 1)

    plt.figure(figsize=(10, 8))
    plt.loglog(ranks, ordered_totals, 'b.', alpha=0.6, markersize=1, label='Barcodes')

    if lower is not None and np.isfinite(lower):
        plt.axhline(y=lower, color='orange', linestyle=':', linewidth=2,
                    label=f'Lower threshold ({lower:g})')

    if inflection is not None and np.isfinite(inflection):
        plt.axhline(y=inflection, color='green', linestyle='-.', linewidth=2,
                    label=f'Inflection point ({inflection:g})')

    if retain is not None and np.isfinite(retain):
        plt.axhline(y=retain, color='red', linestyle='--', linewidth=2,
                    label=f'Retain threshold ({retain:g})')

    plt.xlabel('Rank (log10)', fontsize=12)
    plt.ylabel('Total UMI Counts (log10)', fontsize=12)
    plt.title(title, fontsize=14, fontweight='bold')
    plt.legend(loc='best', fontsize=10)
    plt.grid(True, alpha=0.3)
    plt.tight_layout()

    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close()
    logger.info(f"Barcode rank plot saved to: {output_path}")


def plot_pvalue_distribution(
    results_df: pd.DataFrame,
    output_path: str,
    niters: Optional[int] = None,
    retain: Optional[float] = None,
    title: str = "P-Value Distribution"
):
    """
    Create a histogram of p-values for diagnostic purposes.

    Parameters
    ----------
    results_df : pd.DataFrame
        Frame from ``PerBarcodeStats.to_frame()``
    output_path : str
        Path to save the PNG plot
    niters : int, optional
        Number of iterations; sets the left edge at the smallest attainable p-value
    retain : float, optional
        Retain threshold; retained barcodes are left out of the FDR lines
    title : str
        Plot title
    """
    tested = results_df['PValue'].notna()
    pvalues = results_df.loc[tested, 'PValue'].to_numpy(dtype=float)
    n_tested = len(pvalues)

    if n_tested == 0:
        logger.warning("No p-values to plot")
        return

    plt.figure(figsize=(10, 6))

    min_p = 1.0 / (niters + 1) if niters else pvalues.min()
    bins = np.logspace(np.log10(min_p) - 0.1, 0, 50)
    plt.hist(pvalues, bins=bins, edgecolor='black', alpha=0.7, color='steelblue')
    plt.xscale('log')

    colors = {0.001: 'darkgreen', 0.01: 'orange', 0.05: 'red'}
    for threshold, pvalue in fdr_threshold_pvalues(results_df, retain, tuple(colors)).items():
        plt.axvline(pvalue, color=colors[threshold], linestyle='--', linewidth=2,
                    label=f'FDR <= {threshold} threshold')

    plt.xlabel('P-Value (log10)', fontsize=12)
    plt.ylabel('Frequency', fontsize=12)
    plt.title(f"{title}\n(n={n_tested:,} tested barcodes)", fontsize=14, fontweight='bold')
    if plt.gca().get_legend_handles_labels()[0]:
        plt.legend(loc='best', fontsize=10)
    plt.grid(True, alpha=0.3, which='both')
    plt.tight_layout()

    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close()
    logger.info(f"P-value distribution plot saved to: {output_path}")
