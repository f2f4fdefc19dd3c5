import numpy as np
import pytest
from scipy import stats

from quantgen.utils import stats as stats_utils


def test_bonferroni_correction_counts_finite_pvalues_only() -> None:
    pvalues = np.array([0.01, np.nan, 0.02])

    corrected, threshold = stats_utils.bonferroni_correction(pvalues, alpha=0.05)

    assert threshold == pytest.approx(0.025)
    np.testing.assert_allclose(corrected, [0.02, np.nan, 0.04])


def test_fdr_correction_bh_procedure() -> None:
    pvalues = np.array([0.001, 0.01, 0.2, 0.5])

    rejected, corrected = stats_utils.fdr_correction(pvalues, alpha=0.05)

    np.testing.assert_array_equal(rejected, [True, True, False, False])
    np.testing.assert_allclose(corrected, [0.004, 0.02, 0.26666667, 0.5])


def test_calculate_maf_from_genotypes_handles_missing() -> None:
    genotypes = np.array([[0, 1, -9], [2, -9, -9], [0, 1, 2]], dtype=float)

    maf = stats_utils.calculate_maf_from_genotypes(genotypes)

    np.testing.assert_allclose(maf, [1 / 3, 0.5, 0.0])


def test_genomic_inflation_factor_is_one_under_null_quantiles() -> None:
    n = 10001
    pvalues = (np.arange(1, n + 1) - 0.5) / n

    assert stats_utils.genomic_inflation_factor(pvalues) == pytest.approx(1.0, abs=1e-3)
    assert stats_utils.genomic_inflation_factor(np.array([np.nan])) == 1.0


def test_qq_plot_data_sorts_and_filters() -> None:
    expected, observed = stats_utils.qq_plot_data(np.array([0.5, np.nan, 0.1, 0.0]))

    np.testing.assert_allclose(observed, [0.1, 0.5])
    np.testing.assert_allclose(expected, [1 / 3, 2 / 3])


def test_safe_correlation_handles_constant_vectors() -> None:
    assert np.isnan(stats_utils.safe_correlation(np.ones(5), np.arange(5)))
    assert np.isnan(stats_utils.safe_correlation(np.array([1.0]), np.array([2.0])))
    assert stats_utils.safe_correlation(np.arange(5), 2 * np.arange(5) + 1) == pytest.approx(1.0)


def test_t_test_pvalues_matches_scipy() -> None:
    t_stats = np.array([2.0, -3.5, np.nan, 1.0])
    dfs = np.array([10.0, 20.0, 5.0, -1.0])

    pvals = stats_utils.t_test_pvalues(t_stats, dfs)

    assert pvals[0] == pytest.approx(2 * stats.t.sf(2.0, 10))
    assert pvals[1] == pytest.approx(2 * stats.t.sf(3.5, 20))
    assert pvals[2] == 1.0
    assert pvals[3] == 1.0
