"""
Kriging with a fitted variogram model

Universal kriging written in covariance form; with an intercept-only trend
it reduces to ordinary kriging. Predictions at data locations reproduce the
observations (exact interpolation, nugget included).
"""

import warnings
from typing import Optional, Dict

import numpy as np
import pandas as pd
from scipy import linalg
from scipy.spatial.distance import cdist
from sklearn.model_selection import KFold

from ..utils.stats import safe_correlation
from .variogram import VariogramModel, trend_design, _check_coords


def _has_duplicates(coords: np.ndarray) -> bool:
    return len(np.unique(coords, axis=0)) < len(coords)


def QG_Krige(coords: np.ndarray,
             values: np.ndarray,
             new_coords: np.ndarray,
             model: VariogramModel,
             X: Optional[np.ndarray] = None,
             new_X: Optional[np.ndarray] = None) -> pd.DataFrame:
    """Predict at new locations by universal kriging

    Solves

        [C   F] [lambda]   [c0]
        [F'  0] [  m   ] = [f0]

    for every prediction location, C being the covariance between data
    locations, F the trend design (intercept plus X) and c0, f0 their
    counterparts at the new location. The kriging variance is
    C(0) - lambda'c0 - m'f0.

    Args:
        coords: Data coordinates (n x d)
        values: Observations
        new_coords: Prediction coordinates (m x d)
        model: Fitted variogram model
        X: Trend covariates at the data locations
        new_X: Trend covariates at the prediction locations

    Returns:
        DataFrame with columns var1.pred and var1.var
    """
    values = np.asarray(values, dtype=np.float64)
    coords = _check_coords(coords, values)
    new_coords = np.asarray(new_coords, dtype=np.float64)
    if new_coords.ndim == 1:
        new_coords = new_coords[:, np.newaxis]
    if new_coords.shape[1] != coords.shape[1]:
        raise ValueError("new_coords must have the same number of dimensions as coords")
    if (X is None) != (new_X is None):
        raise ValueError("Trend covariates must be given for both data and prediction locations")
    if _has_duplicates(coords):
        raise ValueError("Kriging does not work with duplicated data locations")

    n, m = len(values), len(new_coords)
    F = trend_design(n, X)
    F0 = trend_design(m, new_X)
    if F0.shape[1] != F.shape[1]:
        raise ValueError("Trend covariates differ in number of columns")
    p = F.shape[1]

    lhs = np.zeros((n + p, n + p))
    lhs[:n, :n] = model.covariance(cdist(coords, coords))
    lhs[:n, n:] = F
    lhs[n:, :n] = F.T

    rhs = np.vstack([model.covariance(cdist(coords, new_coords)), F0.T])

    try:
        weights = linalg.solve(lhs, rhs, assume_a='sym')
    except linalg.LinAlgError:
        warnings.warn("Kriging system is singular; using the pseudo-inverse")
        weights = np.linalg.pinv(lhs) @ rhs

    lam = weights[:n]
    pred = lam.T @ values
    var = model.sill - np.sum(weights * rhs, axis=0)
    return pd.DataFrame({'var1.pred': pred, 'var1.var': np.maximum(var, 0.0)})


def QG_KrigeCV(coords: np.ndarray,
               values: np.ndarray,
               model: VariogramModel,
               X: Optional[np.ndarray] = None,
               nfold: int = 5,
               seed: Optional[int] = None) -> pd.DataFrame:
    """n-fold kriging cross-validation

    Locations are shuffled into nfold balanced folds; each fold is predicted
    from the others. nfold >= n gives leave-one-out.

    Returns:
        DataFrame with columns var1.pred, var1.var, observed, residual
        (observed - predicted), zscore and fold (1-based), in the input order
    """
    values = np.asarray(values, dtype=np.float64)
    coords = _check_coords(coords, values)
    n = len(values)
    if nfold < 2:
        raise ValueError("nfold must be at least 2")
    if n < 3:
        raise ValueError("Cross-validation needs at least three locations")
    Xm = None if X is None else trend_design(n, X)[:, 1:]

    pred = np.empty(n)
    var = np.empty(n)
    fold = np.empty(n, dtype=int)

    splitter = KFold(n_splits=min(nfold, n), shuffle=True, random_state=seed)
    for k, (train, test) in enumerate(splitter.split(coords), start=1):
        kriged = QG_Krige(coords[train], values[train], coords[test], model,
                          X=None if Xm is None else Xm[train],
                          new_X=None if Xm is None else Xm[test])
        pred[test] = kriged['var1.pred'].to_numpy()
        var[test] = kriged['var1.var'].to_numpy()
        fold[test] = k

    residual = values - pred
    with np.errstate(divide='ignore', invalid='ignore'):
        zscore = np.where(var > 0, residual / np.sqrt(var), np.nan)

    return pd.DataFrame({
        'var1.pred': pred,
        'var1.var': var,
        'observed': values,
        'residual': residual,
        'zscore': zscore,
        'fold': fold,
    })


def cross_validation_statistics(cv: pd.DataFrame) -> Dict[str, float]:
    """Summaries of a kriging cross-validation

    RMSE and bias (mean residual) should be small, MSDR (mean squared
    residual over kriging variance) close to 1, corObsPred high and
    corObsRes close to 0.
    """
    residual = cv['residual'].to_numpy(dtype=np.float64)
    observed = cv['observed'].to_numpy(dtype=np.float64)
    var = cv['var1.var'].to_numpy(dtype=np.float64)
    predicted = observed - residual

    with np.errstate(divide='ignore', invalid='ignore'):
        msdr = float(np.mean(residual ** 2 / var)) if np.all(var > 0) else float('nan')

    return {
        'RMSE': float(np.sqrt(np.mean(residual ** 2))),
        'bias': float(np.mean(residual)),
        'MSDR': msdr,
        'corObsPred': safe_correlation(observed, predicted),
        'corObsRes': safe_correlation(predicted, residual),
    }
