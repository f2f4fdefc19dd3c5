"""
Statistical utilities shared by association, spatial and Bayesian modules
"""

import numpy as np
from typing import Tuple
from scipy import stats

from .data_types import missing_mask


def bonferroni_correction(pvalues: np.ndarray, alpha: float = 0.05) -> Tuple[np.ndarray, float]:
    """Apply Bonferroni correction for multiple testing

    Args:
        pvalues: Array of p-values
        alpha: Family-wise error rate

    Returns:
        Tuple of (adjusted_pvalues, per-test threshold)
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    n_tests = np.sum(np.isfinite(pvalues))
    if n_tests == 0:
        return pvalues.copy(), alpha
    adjusted = np.minimum(pvalues * n_tests, 1.0)
    return adjusted, alpha / n_tests


def fdr_correction(pvalues: np.ndarray, alpha: float = 0.05) -> Tuple[np.ndarray, np.ndarray]:
    """Benjamini-Hochberg false discovery rate control

    Returns:
        Tuple of (rejected, adjusted_pvalues)
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    n = len(pvalues)
    if n == 0:
        return np.zeros(0, dtype=bool), pvalues.copy()

    order = np.argsort(pvalues)
    ranked = pvalues[order] * n / np.arange(1, n + 1)
    # step-up: enforce monotonicity from the largest p-value down
    ranked = np.minimum.accumulate(ranked[::-1])[::-1]
    adjusted = np.empty(n)
    adjusted[order] = np.minimum(ranked, 1.0)
    return adjusted <= alpha, adjusted


def calculate_maf_from_genotypes(genotypes: np.ndarray, max_dosage: float = 2.0) -> np.ndarray:
    """Minor allele frequency per marker from a dosage matrix with missing values"""
    genotypes = np.asarray(genotypes, dtype=np.float64)
    mask = missing_mask(genotypes)
    counts = (~mask).sum(axis=0)
    totals = np.where(mask, 0.0, genotypes).sum(axis=0)
    with np.errstate(invalid='ignore', divide='ignore'):
        freqs = np.where(counts > 0, totals / (np.maximum(counts, 1) * max_dosage), 0.0)
    return np.minimum(freqs, 1.0 - freqs)


def genomic_inflation_factor(pvalues: np.ndarray) -> float:
    """Genomic inflation factor lambda = median(chi2_obs) / median(chi2_1)"""
    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid = pvalues[np.isfinite(pvalues) & (pvalues > 0) & (pvalues <= 1)]
    if len(valid) == 0:
        return 1.0
    chi2_values = stats.chi2.isf(valid, df=1)
    return float(np.median(chi2_values) / stats.chi2.ppf(0.5, df=1))


def qq_plot_data(pvalues: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Expected and observed (sorted) p-values for a Q-Q plot"""
    pvalues = np.asarray(pvalues, dtype=np.float64)
    observed = np.sort(pvalues[np.isfinite(pvalues) & (pvalues > 0) & (pvalues <= 1)])
    n = len(observed)
    if n == 0:
        return np.array([]), np.array([])
    expected = np.arange(1, n + 1) / (n + 1)
    return expected, observed


def safe_correlation(x: np.ndarray, y: np.ndarray) -> float:
    """Pearson correlation, NaN when either vector is constant or too short"""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    keep = np.isfinite(x) & np.isfinite(y)
    x, y = x[keep], y[keep]
    if x.size < 2 or np.std(x) == 0 or np.std(y) == 0:
        return np.nan
    return float(np.corrcoef(x, y)[0, 1])


def t_test_pvalues(t_stats: np.ndarray, dfs: np.ndarray) -> np.ndarray:
    """Two-sided p-values for t statistics; invalid entries get p = 1"""
    t_stats = np.asarray(t_stats, dtype=np.float64)
    dfs = np.broadcast_to(np.asarray(dfs, dtype=np.float64), t_stats.shape)
    pvalues = np.ones_like(t_stats)
    valid = np.isfinite(t_stats) & np.isfinite(dfs) & (dfs > 0)
    if np.any(valid):
        # sf keeps precision for very large |t|
        pvalues[valid] = 2.0 * stats.t.sf(np.abs(t_stats[valid]), dfs[valid])
    return pvalues
