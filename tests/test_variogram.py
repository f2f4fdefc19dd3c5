import numpy as np
import pandas as pd
import pytest

from quantgen.spatial.variogram import (QG_FitVariogram, QG_Variogram, VariogramModel,
                                        default_cutoff, trend_residuals)


def _field(n: int = 60, seed: int = 0):
    rng = np.random.default_rng(seed)
    coords = rng.uniform(0, 10, size=(n, 2))
    values = np.sin(coords[:, 0] / 2) + rng.normal(0, 0.2, size=n)
    return coords, values


def test_model_values_at_key_distances() -> None:
    exp = VariogramModel('Exp', nugget=0.5, psill=2.0, range=3.0)
    assert exp.variogram(0.0) == 0.0
    assert exp.variogram(3.0) == pytest.approx(0.5 + 2.0 * (1 - np.exp(-1)))
    assert exp.covariance(0.0) == pytest.approx(2.5)
    assert exp.sill == pytest.approx(2.5)

    sph = VariogramModel('Sph', nugget=0.1, psill=1.0, range=4.0)
    np.testing.assert_allclose(sph.variogram([4.0, 10.0]), [1.1, 1.1])
    assert sph.variogram(2.0) == pytest.approx(0.1 + 1.0 * (1.5 * 0.5 - 0.5 * 0.125))

    gau = VariogramModel('Gau', psill=1.0, range=2.0)
    assert gau.variogram(2.0) == pytest.approx(1 - np.exp(-1))

    nug = VariogramModel('Nug', nugget=0.7)
    np.testing.assert_allclose(nug.variogram([0.0, 0.1, 5.0]), [0.0, 0.7, 0.7])


def test_stein_with_half_smoothness_is_exponential() -> None:
    h = np.linspace(0.1, 10, 25)
    ste = VariogramModel('Ste', nugget=0.2, psill=1.0, range=2.0, kappa=0.5)
    exp = VariogramModel('Exp', nugget=0.2, psill=1.0, range=2.0 / np.sqrt(2.0))

    np.testing.assert_allclose(ste.variogram(h), exp.variogram(h), rtol=1e-8)


def test_model_validation_and_table() -> None:
    with pytest.raises(ValueError):
        VariogramModel('Lin', psill=1.0, range=1.0)
    with pytest.raises(ValueError):
        VariogramModel('Exp', psill=1.0, range=0.0)
    with pytest.raises(ValueError):
        VariogramModel('Exp', nugget=-1.0, psill=1.0, range=1.0)

    table = VariogramModel('Ste', nugget=0.1, psill=1.0, range=2.0, kappa=1.5).to_dataframe()
    assert list(table['model']) == ['Nug', 'Ste']
    assert list(table['kappa']) == [0.0, 1.5]
    assert "kappa=1.5" in repr(VariogramModel('Ste', psill=1.0, range=2.0, kappa=1.5))


def test_default_cutoff_is_third_of_diagonal() -> None:
    coords = np.array([[0.0, 0.0], [3.0, 0.0], [0.0, 4.0]])
    assert default_cutoff(coords) == pytest.approx(5.0 / 3.0)


def test_variogram_cloud_lists_every_pair() -> None:
    coords, values = _field(n=12)
    resid = values - values.mean()

    cloud = QG_Variogram(coords, values, cloud=True, cutoff=100.0)

    assert len(cloud) == 12 * 11 // 2
    for _, row in cloud.head(5).iterrows():
        i, j = int(row['left']), int(row['right'])
        assert row['gamma'] == pytest.approx(0.5 * (resid[i] - resid[j]) ** 2)
        assert row['dist'] == pytest.approx(np.linalg.norm(coords[i] - coords[j]))


def test_binned_estimators_with_a_single_lag_class() -> None:
    coords, values = _field(n=15, seed=1)
    cloud = QG_Variogram(coords, values, cloud=True, cutoff=100.0)
    diff = np.sqrt(2 * cloud['gamma'].to_numpy())
    n_pairs = len(cloud)

    classical = QG_Variogram(coords, values, cutoff=100.0, width=100.0)
    robust = QG_Variogram(coords, values, cutoff=100.0, width=100.0, cressie=True)

    assert list(classical.columns) == ['np', 'dist', 'gamma']
    assert classical['np'].iloc[0] == n_pairs
    assert classical['gamma'].iloc[0] == pytest.approx(cloud['gamma'].mean())
    expected = 0.5 * np.mean(np.sqrt(diff)) ** 4 / (0.457 + 0.494 / n_pairs)
    assert robust['gamma'].iloc[0] == pytest.approx(expected)


def test_default_binning_respects_cutoff() -> None:
    coords, values = _field()

    vg = QG_Variogram(coords, values)

    cutoff = default_cutoff(coords)
    assert len(vg) <= 15
    assert vg['dist'].max() <= cutoff
    assert vg['dist'].is_monotonic_increasing


def test_trend_is_removed_before_computing_semivariances() -> None:
    coords, _ = _field(n=20, seed=2)
    x = coords[:, 0]
    values = 3.0 + 2.0 * x

    vg = QG_Variogram(coords, values, X=x, cutoff=100.0, width=100.0)

    assert vg['gamma'].iloc[0] == pytest.approx(0.0, abs=1e-20)
    np.testing.assert_allclose(trend_residuals(values, x), 0.0, atol=1e-10)


def test_variogram_input_checks() -> None:
    with pytest.raises(ValueError):
        QG_Variogram(np.zeros((1, 2)), np.zeros(1))
    with pytest.raises(ValueError):
        QG_Variogram(np.zeros((3, 2)), np.zeros(4))
    with pytest.raises(ValueError):
        QG_Variogram(np.zeros((3, 2)), np.zeros(3))


def _exact_variogram(model: VariogramModel) -> pd.DataFrame:
    dist = np.linspace(0.5, 10.0, 15)
    return pd.DataFrame({'np': 100, 'dist': dist, 'gamma': model.variogram(dist)})


def test_fit_recovers_exponential_parameters() -> None:
    truth = VariogramModel('Exp', nugget=0.3, psill=1.2, range=2.5)

    fitted = QG_FitVariogram(_exact_variogram(truth), models='Exp')

    assert fitted.model == 'Exp'
    assert fitted.nugget == pytest.approx(0.3, abs=1e-2)
    assert fitted.psill == pytest.approx(1.2, rel=1e-2)
    assert fitted.range == pytest.approx(2.5, rel=1e-2)
    assert fitted.sserr == pytest.approx(0.0, abs=1e-6)


def test_fit_selects_model_with_smallest_error() -> None:
    truth = VariogramModel('Sph', nugget=0.1, psill=1.0, range=6.0)

    fitted = QG_FitVariogram(_exact_variogram(truth), models=['Exp', 'Sph', 'Gau'])

    assert fitted.model == 'Sph'
    assert fitted.range == pytest.approx(6.0, rel=1e-2)


def test_fit_searches_stein_smoothness() -> None:
    truth = VariogramModel('Ste', nugget=0.2, psill=1.0, range=2.0, kappa=1.5)
    vg = _exact_variogram(truth)

    fitted = QG_FitVariogram(vg, models='Ste')
    fixed = QG_FitVariogram(vg, models='Ste', fit_kappa=False, kappa=0.5)

    assert fitted.kappa == pytest.approx(1.5, abs=0.1)
    assert fixed.kappa == 0.5
    assert fitted.sserr <= fixed.sserr


def test_fit_pure_nugget_and_input_checks() -> None:
    vg = pd.DataFrame({'np': [10, 30], 'dist': [1.0, 2.0], 'gamma': [1.0, 2.0]})

    nug = QG_FitVariogram(vg, models='Nug')
    # weights np / h^2 are 10 and 7.5
    assert nug.nugget == pytest.approx((10 * 1.0 + 7.5 * 2.0) / 17.5)

    with pytest.raises(ValueError):
        QG_FitVariogram(vg, models='Bessel')
    with pytest.raises(ValueError):
        QG_FitVariogram(vg.iloc[:1], models='Exp')
    with pytest.raises(ValueError):
        QG_FitVariogram(vg.drop(columns='np'), models='Exp')
