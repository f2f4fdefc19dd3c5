import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from quantgen.spatial.variogram import VariogramModel
from quantgen.utils.data_types import AssociationResults, GenotypeMap
from quantgen.visualization import manhattan
from quantgen.visualization.mcmc import plot_traces
from quantgen.visualization.spatial import plot_cv_residuals, plot_field_heatmap, plot_variogram_fit


def _make_genotype_map(n: int = 3) -> GenotypeMap:
    chroms = [str((i % 2) + 1) for i in range(n)]
    return GenotypeMap(
        pd.DataFrame(
            {
                "SNP": [f"s{i}" for i in range(n)],
                "CHROM": chroms,
                "POS": np.arange(1, n + 1) * 10,
            }
        )
    )


def test_manhattan_positions_use_natural_chromosome_order() -> None:
    chroms = np.array(["10", "2", "2", "10", "1"])
    positions = np.array([1e6, 2e6, 4e6, 3e6, 5e6])

    x, ticks, labels = manhattan.manhattan_positions(chroms, positions)

    assert labels == ["1", "2", "10"]
    assert len(ticks) == 3
    # chromosome 2 starts where chromosome 1 (a single marker) ends
    assert x[4] == 0.0
    assert x[1] < x[2] <= x[0] < x[3]


def test_create_manhattan_plot_with_map_and_qtns() -> None:
    pvalues = np.array([0.05, 0.5, 1e-8, np.nan])
    geno_map = _make_genotype_map(4)

    fig = manhattan.create_manhattan_plot(pvalues, map_data=geno_map, threshold=1e-6,
                                          title="demo", true_qtns=["s2"])

    ax = fig.axes[0]
    assert ax.get_title() == "demo"
    assert [t.get_text() for t in ax.get_xticklabels()] == ["1", "2"]
    assert ax.get_legend() is not None
    plt.close(fig)


def test_create_manhattan_plot_warns_on_mismatched_map() -> None:
    with pytest.warns(UserWarning, match="Map does not match"):
        fig = manhattan.create_manhattan_plot(np.array([0.1, 0.2]), map_data=_make_genotype_map(3))
    plt.close(fig)


def test_create_qq_plot_handles_empty_input() -> None:
    fig = manhattan.create_qq_plot(np.array([np.nan, 0.0]))
    assert "No valid p-values" in fig.axes[0].texts[0].get_text()
    plt.close(fig)

    fig = manhattan.create_qq_plot(np.linspace(0.01, 1, 50), title="QQ")
    assert fig.axes[0].get_title().startswith("QQ")
    plt.close(fig)


def test_calculate_gwas_summary_counts() -> None:
    pvalues = np.array([1e-9, 1e-6, 0.2, np.nan])
    effects = np.array([1.0, -1.0, 0.5, 0.0])

    summary = manhattan.calculate_gwas_summary(pvalues, effects, threshold=1e-8, suggestive_threshold=1e-5)

    assert summary['n_markers'] == 3
    assert summary['n_significant'] == 1
    assert summary['n_suggestive'] == 1
    assert summary['min_pvalue'] == pytest.approx(1e-9)
    assert summary['mean_effect'] == pytest.approx(0.5 / 3)
    assert manhattan.calculate_gwas_summary(np.array([np.nan]), np.array([0.0]))['n_markers'] == 0


def test_report_saves_plots(tmp_path) -> None:
    geno_map = _make_genotype_map(6)
    res = AssociationResults(np.zeros(6), np.ones(6), np.array([0.5, 0.1, 1e-7, 0.9, 0.3, 0.04]),
                             snp_map=geno_map)

    report = manhattan.QG_Report({'GLM': res}, output_prefix=str(tmp_path / "scan"), dpi=50,
                                 verbose=False)

    assert sorted(report['plots']['GLM']) == ['manhattan', 'qq']
    assert report['summary']['GLM']['n_significant'] == 1
    assert len(report['files_created']) == 2
    for filename in report['files_created']:
        assert (tmp_path / filename.split('/')[-1]).exists()
    plt.close('all')

    with pytest.raises(ValueError):
        manhattan.QG_Report([res])


def test_plot_variogram_fit_writes_file(tmp_path) -> None:
    vg = pd.DataFrame({'np': [10, 20, 30], 'dist': [1.0, 2.0, 3.0], 'gamma': [0.5, 0.8, 0.9]})
    model = VariogramModel('Exp', nugget=0.3, psill=0.7, range=1.0)
    output = tmp_path / "vg.pdf"

    fig = plot_variogram_fit(vg, model, title="fit", output_file=str(output))

    assert output.exists()
    ax = fig.axes[0]
    assert len(ax.lines) == 1
    assert ax.get_legend() is not None
    plt.close(fig)


def test_plot_field_heatmap_and_cv_residuals(tmp_path) -> None:
    field = pd.DataFrame({'rank': np.repeat([1, 2, 3], 4), 'location': np.tile([1, 2, 3, 4], 3),
                          'response': np.arange(12.0)})

    fig = plot_field_heatmap(field, 'response', title="field", output_file=str(tmp_path / "field.png"))
    assert (tmp_path / "field.png").exists()
    plt.close(fig)
    with pytest.raises(ValueError):
        plot_field_heatmap(field, 'yield')

    coords = field[['rank', 'location']].to_numpy()
    fig = plot_cv_residuals(coords, np.linspace(-1, 1, 12), title="cv")
    assert fig.axes[0].get_title() == "cv"
    plt.close(fig)


def test_plot_traces_layout() -> None:
    chain = pd.DataFrame({'mu': np.random.default_rng(0).normal(size=100),
                          'sigma2': np.random.default_rng(1).gamma(2.0, size=100)},
                         index=pd.Index(np.arange(1, 101), name='iteration'))

    fig = plot_traces(chain, title="chain")

    assert len(fig.axes) == 4
    assert fig.axes[0].get_ylabel() == 'mu'
    plt.close(fig)
    with pytest.raises(ValueError, match="not in chain"):
        plot_traces(chain, params=['tau'])
