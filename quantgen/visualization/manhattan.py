"""
Manhattan and Q-Q plots for association results
"""

import re
import warnings
from typing import Optional, Union, Dict, List, Tuple

import numpy as np
import matplotlib.pyplot as plt

from ..utils.data_types import AssociationResults, GenotypeMap
from ..utils.stats import genomic_inflation_factor, qq_plot_data


def QG_Report(results: Union[AssociationResults, Dict[str, AssociationResults]],
              map_data: Optional[GenotypeMap] = None,
              threshold: Optional[float] = None,
              suggestive_threshold: float = 1e-5,
              plot_types: List[str] = ["manhattan", "qq"],
              output_prefix: str = "quantgen",
              dpi: int = 300,
              figsize: Tuple[int, int] = (10, 4),
              true_qtns: Optional[List[str]] = None,
              save_plots: bool = True,
              verbose: bool = True) -> Dict:
    """Plots and summary statistics for one or several association scans

    Args:
        results: AssociationResults or dict method name -> AssociationResults
        map_data: Genetic map for chromosome positions (falls back to the
            map attached to the results)
        threshold: Genome-wide threshold (default Bonferroni 0.05 / n_markers)
        suggestive_threshold: Suggestive threshold used in the summary
        plot_types: Any of "manhattan", "qq"
        output_prefix: Prefix of the PNG files written when save_plots
        dpi: Resolution of saved figures
        figsize: Size of the Manhattan figure
        true_qtns: SNP names to highlight on the Manhattan plot
        save_plots: Write figures to disk
        verbose: Print summaries

    Returns:
        Dictionary with 'plots', 'summary' and 'files_created'
    """
    if isinstance(results, AssociationResults):
        results = {'GWAS': results}
    elif not isinstance(results, dict):
        raise ValueError("Results must be AssociationResults or a dictionary of them")

    report = {'plots': {}, 'summary': {}, 'files_created': []}

    for method, res in results.items():
        pvalues = res.pvalues
        method_map = map_data if map_data is not None else res.snp_map
        method_threshold = threshold if threshold is not None else 0.05 / max(len(pvalues), 1)

        plots = {}
        if "manhattan" in plot_types:
            plots['manhattan'] = create_manhattan_plot(
                pvalues, map_data=method_map, threshold=method_threshold,
                title=method, figsize=figsize, true_qtns=true_qtns)
        if "qq" in plot_types:
            plots['qq'] = create_qq_plot(pvalues, title=f"Q-Q Plot - {method}")

        if save_plots:
            for kind, fig in plots.items():
                filename = f"{output_prefix}_{method}_{kind}.png"
                fig.savefig(filename, dpi=dpi, bbox_inches='tight')
                report['files_created'].append(filename)

        summary = calculate_gwas_summary(pvalues, res.effects, method_threshold, suggestive_threshold)
        report['plots'][method] = plots
        report['summary'][method] = summary

        if verbose:
            print(f"{method}: {summary['n_markers']} markers, {summary['n_significant']} significant, "
                  f"min p = {summary['min_pvalue']:.2e}, lambda = {summary['lambda_gc']:.3f}")

    return report


def _natural_sort_key(value) -> List[Union[int, str]]:
    parts = re.split(r'(\d+)', str(value).strip())
    return [int(p) if p.isdigit() else p.lower() for p in parts]


def manhattan_positions(chromosomes: np.ndarray, positions: np.ndarray) -> Tuple[np.ndarray, List[float], List[str]]:
    """Cumulative x coordinates (Mb) with chromosomes in natural order

    Returns:
        Tuple (x, tick positions, tick labels)
    """
    chromosomes = np.asarray(chromosomes).astype(str)
    positions = np.asarray(positions, dtype=np.float64)
    x = np.zeros(len(positions))
    ticks, labels = [], []
    offset = 0.0
    for chrom in sorted(np.unique(chromosomes), key=_natural_sort_key):
        mask = chromosomes == chrom
        pos_mb = positions[mask] / 1e6
        start, stop = pos_mb.min(), pos_mb.max()
        x[mask] = offset + pos_mb - start
        length = max(stop - start, 1e-6)
        ticks.append(offset + length / 2.0)
        labels.append(chrom)
        offset += length
    return x, ticks, labels


def create_manhattan_plot(pvalues: np.ndarray,
                          map_data: Optional[GenotypeMap] = None,
                          threshold: float = 5e-8,
                          title: str = "",
                          figsize: Tuple[int, int] = (10, 4),
                          colors: Optional[List[str]] = None,
                          point_size: float = 8.0,
                          true_qtns: Optional[List[str]] = None) -> plt.Figure:
    """Manhattan plot of -log10 p-values

    Markers with invalid p-values (NaN, <= 0) are not drawn.
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid = np.isfinite(pvalues) & (pvalues > 0) & (pvalues <= 1)
    log_p = np.full(len(pvalues), np.nan)
    log_p[valid] = -np.log10(pvalues[valid])
    colors = colors or ['#1f77b4', '#ff7f0e']

    fig, ax = plt.subplots(figsize=figsize)

    if map_data is not None and map_data.n_markers == len(pvalues):
        chroms = map_data.chromosomes.to_numpy().astype(str)
        x, ticks, labels = manhattan_positions(chroms, map_data.positions.to_numpy())
        for i, chrom in enumerate(labels):
            mask = valid & (chroms == chrom)
            ax.scatter(x[mask], log_p[mask], c=colors[i % len(colors)], s=point_size,
                       alpha=0.8, edgecolors='none')
        ax.set_xticks(ticks)
        ax.set_xticklabels(labels)

        if true_qtns is not None:
            qtn_mask = valid & np.isin(map_data.snp_ids.to_numpy(), true_qtns)
            if np.any(qtn_mask):
                ax.scatter(x[qtn_mask], log_p[qtn_mask], marker='^', s=point_size * 3, c='red',
                           edgecolors='black', linewidth=0.5, zorder=10, label='True QTNs')
                ax.legend(loc='upper right', fontsize=8)
    else:
        if map_data is not None:
            warnings.warn("Map does not match the number of p-values; plotting markers in order")
        x = np.arange(len(pvalues))
        ax.scatter(x[valid], log_p[valid], c=colors[0], s=point_size, alpha=0.8, edgecolors='none')

    if threshold and threshold > 0:
        ax.axhline(y=-np.log10(threshold), color='red', linestyle='--', alpha=0.8, linewidth=1.2)

    ax.set_xlabel('Chromosome')
    ax.set_ylabel(r'$-\log_{10}(P)$')
    if title:
        ax.set_title(title)
    plt.tight_layout()
    return fig


def create_qq_plot(pvalues: np.ndarray,
                   title: str = "Q-Q Plot",
                   figsize: Tuple[int, int] = (5, 5)) -> plt.Figure:
    """Observed against expected -log10 p-values, with the inflation factor in the title"""
    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid = pvalues[np.isfinite(pvalues) & (pvalues > 0) & (pvalues <= 1)]

    fig, ax = plt.subplots(figsize=figsize)
    if len(valid) == 0:
        ax.text(0.5, 0.5, 'No valid p-values for Q-Q plot', ha='center', va='center',
                transform=ax.transAxes)
        ax.set_title(title)
        return fig

    expected, observed = qq_plot_data(valid)
    expected, observed = -np.log10(expected), -np.log10(observed)
    ax.scatter(expected, observed, s=4, alpha=0.6, edgecolors='none')
    upper = max(expected.max(), observed.max())
    ax.plot([0, upper], [0, upper], 'r--', alpha=0.8)
    ax.set_xlabel(r'Expected $-\log_{10}(P)$')
    ax.set_ylabel(r'Observed $-\log_{10}(P)$')
    ax.set_title(f'{title}\nλ = {genomic_inflation_factor(valid):.3f}')
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    return fig


def calculate_gwas_summary(pvalues: np.ndarray,
                           effects: np.ndarray,
                           threshold: float = 5e-8,
                           suggestive_threshold: float = 1e-5) -> Dict:
    """Counts of significant and suggestive hits, minimum p-value and lambda"""
    pvalues = np.asarray(pvalues, dtype=np.float64)
    effects = np.asarray(effects, dtype=np.float64)
    valid = np.isfinite(pvalues) & (pvalues > 0) & (pvalues <= 1)
    p, e = pvalues[valid], effects[valid]

    if len(p) == 0:
        return {'n_markers': 0, 'n_significant': 0, 'n_suggestive': 0,
                'min_pvalue': np.nan, 'median_pvalue': np.nan, 'lambda_gc': np.nan,
                'mean_effect': np.nan}

    n_significant = int(np.sum(p < threshold))
    return {
        'n_markers': int(len(p)),
        'n_significant': n_significant,
        'n_suggestive': int(np.sum(p < suggestive_threshold)) - n_significant,
        'min_pvalue': float(p.min()),
        'median_pvalue': float(np.median(p)),
        'lambda_gc': genomic_inflation_factor(p),
        'mean_effect': float(e.mean()),
    }
