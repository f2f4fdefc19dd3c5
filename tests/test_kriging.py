import numpy as np
import pandas as pd
import pytest

from quantgen.spatial.kriging import QG_Krige, QG_KrigeCV, cross_validation_statistics
from quantgen.spatial.variogram import VariogramModel, covariance_model_value
from scipy.spatial.distance import cdist

MODEL = VariogramModel('Exp', nugget=0.1, psill=1.0, range=2.0)


def _data(n: int = 25, seed: int = 0):
    rng = np.random.default_rng(seed)
    coords = rng.uniform(0, 10, size=(n, 2))
    values = np.cos(coords[:, 1] / 3) + rng.normal(0, 0.3, size=n)
    return coords, values


def test_kriging_is_an_exact_interpolator() -> None:
    coords, values = _data()

    kriged = QG_Krige(coords, values, coords, MODEL)

    assert list(kriged.columns) == ['var1.pred', 'var1.var']
    np.testing.assert_allclose(kriged['var1.pred'], values, atol=1e-8)
    np.testing.assert_allclose(kriged['var1.var'], 0.0, atol=1e-8)


def test_far_prediction_is_generalized_least_squares_mean() -> None:
    coords, values = _data(seed=1)
    C = covariance_model_value(MODEL, cdist(coords, coords))
    Ci = np.linalg.inv(C)
    ones = np.ones(len(values))
    gls_var = 1.0 / (ones @ Ci @ ones)
    gls_mean = gls_var * (ones @ Ci @ values)

    kriged = QG_Krige(coords, values, np.array([[1000.0, 1000.0]]), MODEL)

    assert kriged['var1.pred'].iloc[0] == pytest.approx(gls_mean, rel=1e-8)
    assert kriged['var1.var'].iloc[0] == pytest.approx(MODEL.sill + gls_var, rel=1e-8)


def test_universal_kriging_reproduces_linear_trend() -> None:
    coords, _ = _data(seed=2)
    x = coords[:, 0]
    values = 1.0 + 2.0 * x
    new_coords = np.array([[2.5, 2.5], [7.0, 1.0]])

    kriged = QG_Krige(coords, values, new_coords, MODEL, X=x, new_X=new_coords[:, 0])

    np.testing.assert_allclose(kriged['var1.pred'], 1.0 + 2.0 * new_coords[:, 0], rtol=1e-8)


def test_kriging_input_checks() -> None:
    coords, values = _data()
    dup = coords.copy()
    dup[1] = dup[0]
    with pytest.raises(ValueError, match="duplicated"):
        QG_Krige(dup, values, coords[:2], MODEL)
    with pytest.raises(ValueError):
        QG_Krige(coords, values, coords[:2], MODEL, X=coords[:, 0])
    with pytest.raises(ValueError):
        QG_Krige(coords, values, coords[:2, :1], MODEL)


def test_leave_one_out_cross_validation_matches_kriging() -> None:
    coords, values = _data(n=12, seed=3)

    cv = QG_KrigeCV(coords, values, MODEL, nfold=100, seed=0)

    assert list(cv.columns) == ['var1.pred', 'var1.var', 'observed', 'residual', 'zscore', 'fold']
    assert sorted(cv['fold']) == list(range(1, 13))
    for i in (0, 5, 11):
        rest = np.arange(12) != i
        single = QG_Krige(coords[rest], values[rest], coords[[i]], MODEL)
        assert cv['var1.pred'].iloc[i] == pytest.approx(single['var1.pred'].iloc[0])
        assert cv['var1.var'].iloc[i] == pytest.approx(single['var1.var'].iloc[0])
    np.testing.assert_allclose(cv['residual'], cv['observed'] - cv['var1.pred'])
    np.testing.assert_allclose(cv['zscore'], cv['residual'] / np.sqrt(cv['var1.var']))


def test_kfold_cross_validation_with_trend() -> None:
    coords, values = _data(n=30, seed=4)

    cv = QG_KrigeCV(coords, values, MODEL, X=coords[:, 0], nfold=5, seed=1)

    assert set(cv['fold']) == {1, 2, 3, 4, 5}
    assert cv['fold'].value_counts().tolist() == [6] * 5
    np.testing.assert_allclose(cv['observed'], values)
    with pytest.raises(ValueError):
        QG_KrigeCV(coords, values, MODEL, nfold=1)
    with pytest.raises(ValueError):
        QG_KrigeCV(coords[:2], values[:2], MODEL)


def test_cross_validation_statistics() -> None:
    observed = np.array([1.0, 2.0, 3.0, 4.0])
    residual = np.array([0.5, -0.5, 0.5, -0.5])
    cv = pd.DataFrame({'var1.pred': observed - residual, 'var1.var': 0.25,
                       'observed': observed, 'residual': residual})

    stats = cross_validation_statistics(cv)

    assert stats['RMSE'] == pytest.approx(0.5)
    assert stats['bias'] == pytest.approx(0.0)
    assert stats['MSDR'] == pytest.approx(1.0)
    assert stats['corObsPred'] == pytest.approx(np.corrcoef(observed, observed - residual)[0, 1])
    assert stats['corObsRes'] == pytest.approx(np.corrcoef(observed - residual, residual)[0, 1])

    cv['var1.var'] = [0.25, 0.0, 0.25, 0.25]
    assert np.isnan(cross_validation_statistics(cv)['MSDR'])
