"""
Experimental variograms and variogram model fitting

Conventions follow gstat so that results can be compared with R analyses:
default cutoff of one third of the bounding-box diagonal split into 15 lag
classes, Cressie-Hawkins robust estimator, weighted least-squares fit with
weights N_h / h^2 and initial values taken from the experimental variogram.
"""

import warnings
from typing import Optional, Sequence, Union, Dict, List

import numpy as np
import pandas as pd
from scipy import optimize, special
from scipy.spatial.distance import pdist

VARIOGRAM_MODELS = ('Nug', 'Exp', 'Sph', 'Gau', 'Ste')
DEFAULT_KAPPA_GRID = np.round(np.arange(0.3, 5.0 + 1e-9, 0.05), 2)


class VariogramModel:
    """Nugget plus one structured component

    gamma(h) = nugget * 1(h > 0) + psill * (1 - rho(h / range))

    Attributes:
        model: One of Nug, Exp, Sph, Gau, Ste
        nugget: Nugget variance
        psill: Partial sill of the structured component
        range: Range parameter (0 for a pure nugget)
        kappa: Smoothness of the Stein/Matern model
        sserr: Weighted sum of squared errors of the fit, if fitted
    """

    def __init__(self, model: str, nugget: float = 0.0, psill: float = 0.0,
                 range: float = 0.0, kappa: float = 0.5, sserr: Optional[float] = None):
        if model not in VARIOGRAM_MODELS:
            raise ValueError(f"Unknown variogram model '{model}'; choose among {VARIOGRAM_MODELS}")
        if nugget < 0 or psill < 0:
            raise ValueError("Nugget and partial sill must be non-negative")
        if model != 'Nug' and range <= 0:
            raise ValueError("Range must be positive")
        if kappa <= 0:
            raise ValueError("kappa must be positive")
        self.model = model
        self.nugget = float(nugget)
        self.psill = float(psill) if model != 'Nug' else 0.0
        self.range = float(range) if model != 'Nug' else 0.0
        self.kappa = float(kappa)
        self.sserr = sserr

    @property
    def sill(self) -> float:
        return self.nugget + self.psill

    def variogram(self, h) -> np.ndarray:
        return variogram_model_value(self, h)

    def covariance(self, h) -> np.ndarray:
        return covariance_model_value(self, h)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per component, as printed by gstat"""
        return pd.DataFrame({
            'model': ['Nug', self.model],
            'psill': [self.nugget, self.psill],
            'range': [0.0, self.range],
            'kappa': [0.0, self.kappa if self.model == 'Ste' else 0.5],
        })

    def __repr__(self) -> str:
        text = (f"VariogramModel(model='{self.model}', nugget={self.nugget:.4g}, "
                f"psill={self.psill:.4g}, range={self.range:.4g}")
        if self.model == 'Ste':
            text += f", kappa={self.kappa:g}"
        if self.sserr is not None:
            text += f", sserr={self.sserr:.4g}"
        return text + ")"


def _correlation(model: str, h: np.ndarray, range_: float, kappa: float) -> np.ndarray:
    """Unit-sill correlation rho(h) of the structured component"""
    if model == 'Nug':
        return np.where(h == 0, 1.0, 0.0)
    r = h / range_
    if model == 'Exp':
        return np.exp(-r)
    if model == 'Sph':
        return np.where(r < 1.0, 1.0 - 1.5 * r + 0.5 * r ** 3, 0.0)
    if model == 'Gau':
        return np.exp(-r ** 2)
    # Stein's parameterisation of the Matern model
    x = 2.0 * np.sqrt(kappa) * r
    out = np.ones_like(x)
    positive = x > 0
    with np.errstate(over='ignore', invalid='ignore'):
        xp = x[positive]
        out[positive] = (2.0 ** (1.0 - kappa) / special.gamma(kappa)) * xp ** kappa * special.kv(kappa, xp)
    return np.nan_to_num(out, nan=0.0)


def variogram_model_value(model: VariogramModel, h) -> np.ndarray:
    """Semivariance of a model at lag distances h"""
    h = np.abs(np.asarray(h, dtype=np.float64))
    structured = model.psill * (1.0 - _correlation(model.model, h, model.range, model.kappa))
    return np.where(h > 0, model.nugget + structured, 0.0)


def covariance_model_value(model: VariogramModel, h) -> np.ndarray:
    """Covariance C(h) = sill - gamma(h), equal to the total sill at h = 0"""
    return model.sill - variogram_model_value(model, h)


def trend_residuals(values: np.ndarray, X: Optional[np.ndarray] = None) -> np.ndarray:
    """OLS residuals of values on an intercept plus X"""
    values = np.asarray(values, dtype=np.float64)
    design = trend_design(len(values), X)
    beta, _, _, _ = np.linalg.lstsq(design, values, rcond=None)
    return values - design @ beta


def trend_design(n: int, X: Optional[np.ndarray] = None) -> np.ndarray:
    if X is None:
        return np.ones((n, 1))
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X[:, np.newaxis]
    if X.shape[0] != n:
        raise ValueError("Trend covariates must have one row per location")
    return np.column_stack([np.ones(n), X])


def _check_coords(coords, values) -> np.ndarray:
    coords = np.asarray(coords, dtype=np.float64)
    if coords.ndim == 1:
        coords = coords[:, np.newaxis]
    if coords.shape[0] != len(values):
        raise ValueError("coords and values must have the same number of rows")
    if np.any(~np.isfinite(coords)) or np.any(~np.isfinite(values)):
        raise ValueError("coords and values must be finite")
    return coords


def default_cutoff(coords: np.ndarray) -> float:
    """One third of the diagonal of the bounding box"""
    extent = np.ptp(np.asarray(coords, dtype=np.float64), axis=0)
    return float(np.sqrt(np.sum(extent ** 2)) / 3.0)


def QG_Variogram(coords: np.ndarray,
                 values: np.ndarray,
                 X: Optional[np.ndarray] = None,
                 cloud: bool = False,
                 cressie: bool = False,
                 cutoff: Optional[float] = None,
                 width: Optional[float] = None) -> pd.DataFrame:
    """Experimental variogram of the residuals of values on a linear trend

    Args:
        coords: Location coordinates (n x d)
        values: Observations at the locations
        X: Trend covariates (intercept only when None)
        cloud: Return every pair instead of lag-class averages
        cressie: Use the Cressie-Hawkins robust estimator
        cutoff: Largest lag considered (default: one third of the diagonal)
        width: Lag class width (default: cutoff / 15)

    Returns:
        DataFrame with columns np, dist, gamma; the cloud also holds the
        row indices left and right of each pair
    """
    values = np.asarray(values, dtype=np.float64)
    coords = _check_coords(coords, values)
    n = len(values)
    if n < 2:
        raise ValueError("At least two locations are needed for a variogram")

    resid = trend_residuals(values, X)
    cutoff = default_cutoff(coords) if cutoff is None else float(cutoff)
    if cutoff <= 0:
        raise ValueError("cutoff must be positive; are all locations identical?")
    width = cutoff / 15.0 if width is None else float(width)
    if width <= 0:
        raise ValueError("width must be positive")

    dist = pdist(coords)
    left, right = np.triu_indices(n, k=1)
    diff = resid[left] - resid[right]

    keep = dist <= cutoff
    dist, diff, left, right = dist[keep], diff[keep], left[keep], right[keep]

    if cloud:
        return pd.DataFrame({
            'np': np.ones(len(dist), dtype=int),
            'dist': dist,
            'gamma': 0.5 * diff ** 2,
            'left': left,
            'right': right,
        })

    n_bins = int(np.ceil(cutoff / width))
    bins = np.clip(np.ceil(dist / width).astype(int) - 1, 0, n_bins - 1)

    rows = []
    for k in range(n_bins):
        in_bin = bins == k
        n_pairs = int(in_bin.sum())
        if n_pairs == 0:
            continue
        d = diff[in_bin]
        if cressie:
            gamma = 0.5 * np.mean(np.sqrt(np.abs(d))) ** 4 / (0.457 + 0.494 / n_pairs)
        else:
            gamma = 0.5 * np.mean(d ** 2)
        rows.append((n_pairs, float(dist[in_bin].mean()), float(gamma)))

    return pd.DataFrame(rows, columns=['np', 'dist', 'gamma'])


def _initial_values(vg: pd.DataFrame) -> Dict[str, float]:
    gamma = vg['gamma'].to_numpy()
    nugget = float(np.mean(gamma[:3]))
    psill = float(np.mean(gamma[-5:])) - nugget
    if psill <= 0:
        psill = max(float(np.max(gamma)) - nugget, 0.5 * float(np.mean(gamma)), 1e-8)
    return {'nugget': nugget, 'psill': psill, 'range': float(vg['dist'].max()) / 3.0}


def _fit_one(model: str, vg: pd.DataFrame, weights: np.ndarray, kappa: float) -> VariogramModel:
    h = vg['dist'].to_numpy()
    gamma = vg['gamma'].to_numpy()
    sqrt_w = np.sqrt(weights)

    if model == 'Nug':
        nugget = max(float(np.sum(weights * gamma) / np.sum(weights)), 0.0)
        fitted = VariogramModel('Nug', nugget=nugget)
        fitted.sserr = float(np.sum(weights * (fitted.variogram(h) - gamma) ** 2))
        return fitted

    init = _initial_values(vg)
    h_max = float(h.max())

    def residuals(theta):
        candidate = VariogramModel(model, theta[0], theta[1], theta[2], kappa)
        return sqrt_w * (candidate.variogram(h) - gamma)

    x0 = np.array([max(init['nugget'], 0.0), init['psill'], max(init['range'], 1e-6)])
    lower = np.array([0.0, 0.0, 1e-8 * max(h_max, 1.0)])
    upper = np.array([np.inf, np.inf, np.inf])
    x0 = np.clip(x0, lower + 1e-12, None)

    result = optimize.least_squares(residuals, x0, bounds=(lower, upper), x_scale='jac')
    nugget, psill, range_ = result.x
    fitted = VariogramModel(model, nugget, psill, range_, kappa)
    fitted.sserr = float(np.sum(result.fun ** 2))
    return fitted


def QG_FitVariogram(vg: pd.DataFrame,
                    models: Union[str, Sequence[str]] = ('Exp', 'Sph', 'Gau', 'Ste'),
                    fit_kappa: Union[bool, Sequence[float]] = True,
                    kappa: float = 0.5,
                    verbose: bool = False) -> VariogramModel:
    """Fit variogram models to an experimental variogram

    Nugget, partial sill and range are fitted by weighted least squares
    with weights N_h / h^2. With several models (or several kappa values
    for 'Ste'), the fit with the smallest weighted SSErr is returned.

    Args:
        vg: Output of QG_Variogram (columns np, dist, gamma)
        models: Candidate model name(s)
        fit_kappa: True to search kappa over 0.3, 0.35, ..., 5 for 'Ste';
            a sequence gives the grid explicitly; False keeps kappa fixed
        kappa: Smoothness used when kappa is not searched
        verbose: Print every candidate fit

    Returns:
        Best VariogramModel; its ``sserr`` attribute holds the criterion
    """
    if isinstance(models, str):
        models = [models]
    models = list(models)
    if not models:
        raise ValueError("At least one variogram model is needed")
    for name in models:
        if name not in VARIOGRAM_MODELS:
            raise ValueError(f"Unknown variogram model '{name}'; choose among {VARIOGRAM_MODELS}")
    for col in ('np', 'dist', 'gamma'):
        if col not in vg.columns:
            raise ValueError(f"Experimental variogram lacks column '{col}'")

    vg = vg[vg['dist'] > 0].reset_index(drop=True)
    if len(vg) < 2:
        raise ValueError("At least two lag classes with positive distance are needed to fit a model")
    weights = vg['np'].to_numpy(dtype=np.float64) / vg['dist'].to_numpy() ** 2

    if fit_kappa is True:
        kappa_grid = DEFAULT_KAPPA_GRID
    elif fit_kappa is False or fit_kappa is None:
        kappa_grid = np.array([kappa])
    else:
        kappa_grid = np.asarray(fit_kappa, dtype=np.float64)

    candidates: List[VariogramModel] = []
    for name in models:
        grid = kappa_grid if name == 'Ste' else [kappa]
        for k in grid:
            fitted = _fit_one(name, vg, weights, float(k))
            candidates.append(fitted)
        if verbose:
            best_of_model = min((c for c in candidates if c.model == name), key=lambda c: c.sserr)
            print(f"  {best_of_model}")

    best = min(candidates, key=lambda c: c.sserr)
    if best.model != 'Nug' and best.psill <= 1e-12:
        warnings.warn(f"Fitted {best.model} variogram has a zero partial sill; no spatial structure detected")
    return best
