"""
Best linear unbiased prediction of genetic effects

* Henderson's mixed model equations for known variance ratios
* GBLUP with REML variance components estimated in the eigenspace of K
* Random-genotype-intercept models of trial data fitted with statsmodels
"""

import warnings
from typing import Optional, Union, Dict, Any, List, Sequence

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats

from ..utils.data_types import KinshipMatrix, as_kinship_array
from ..association.mlm import estimate_variance_components_brent, eigen_kinship


def _solve_safe(mat: np.ndarray, vec: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.solve(mat, vec)
    except np.linalg.LinAlgError:
        return np.linalg.pinv(mat) @ vec


def solve_mixed_model_equations(y: np.ndarray,
                                X: np.ndarray,
                                Z: np.ndarray,
                                Ginv: np.ndarray,
                                lambda_: float):
    """Solve Henderson's mixed model equations

        [X'X   X'Z            ] [b]   [X'y]
        [Z'X   Z'Z + lambda G^-1] [u] = [Z'y]

    with lambda = ve / vg.

    Returns:
        Tuple (beta, u)
    """
    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(X, dtype=np.float64)
    Z = np.asarray(Z, dtype=np.float64)
    Ginv = np.asarray(Ginv, dtype=np.float64)
    if X.ndim == 1:
        X = X[:, np.newaxis]
    if not (X.shape[0] == Z.shape[0] == len(y)):
        raise ValueError("y, X and Z must have the same number of rows")
    if Ginv.shape != (Z.shape[1], Z.shape[1]):
        raise ValueError("G^-1 must be square with one row per random effect")
    if lambda_ < 0:
        raise ValueError("Variance ratio must be non-negative")

    p = X.shape[1]
    lhs = np.block([
        [X.T @ X, X.T @ Z],
        [Z.T @ X, Z.T @ Z + lambda_ * Ginv],
    ])
    rhs = np.concatenate([X.T @ y, Z.T @ y])
    sol = _solve_safe(lhs, rhs)
    return sol[:p], sol[p:]


def QG_GBLUP(y: np.ndarray,
             K: Union[KinshipMatrix, np.ndarray],
             idx_pheno: Optional[Sequence[int]] = None,
             X: Optional[np.ndarray] = None,
             verbose: bool = True) -> Dict[str, Any]:
    """Genomic BLUP for every individual of K

    Variance components come from REML on the phenotyped individuals; BLUPs
    of unphenotyped individuals follow from their relationships with the
    phenotyped ones: u = K[:, pheno] (K11 + delta I)^-1 (y - X beta).

    Args:
        y: Phenotypes of the phenotyped individuals
        K: Kinship over all individuals (phenotyped or not)
        idx_pheno: Rows of K matching y (default: the first len(y) rows)
        X: Fixed-effect design for the phenotyped individuals (default: intercept)
        verbose: Print variance components

    Returns:
        Dictionary with 'blups', 'beta', 'vg', 've', 'h2', 'delta'
    """
    y = np.asarray(y, dtype=np.float64)
    K_all = as_kinship_array(K)
    if idx_pheno is None:
        idx_pheno = np.arange(len(y))
    idx_pheno = np.asarray(idx_pheno, dtype=int)
    if len(idx_pheno) != len(y):
        raise ValueError("idx_pheno must have one entry per phenotype")
    if np.any(~np.isfinite(y)):
        raise ValueError("Phenotypes must be finite; drop missing records before fitting")

    n = len(y)
    if X is None:
        X = np.ones((n, 1))
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X[:, np.newaxis]

    K11 = K_all[np.ix_(idx_pheno, idx_pheno)]
    K11 = (K11 + K11.T) / 2.0

    eig = eigen_kinship(K11)
    U = eig['eigenvecs']
    delta, vg, ve = estimate_variance_components_brent(U.T @ y, U.T @ X, eig['eigenvals'])
    delta = max(delta, 1e-6)

    w = 1.0 / (np.maximum(eig['eigenvals'], 1e-6) + delta)
    X_t, y_t = U.T @ X, U.T @ y
    beta = _solve_safe(X_t.T @ (w[:, np.newaxis] * X_t), X_t.T @ (w * y_t))

    alpha = _solve_safe(K11 + delta * np.eye(n), y - X @ beta)
    blups = K_all[:, idx_pheno] @ alpha
    h2 = vg / (vg + ve) if (vg + ve) > 0 else 0.0

    if verbose:
        print(f"GBLUP: vg = {vg:.4f}, ve = {ve:.4f}, h2 = {h2:.3f} on {n} phenotyped individuals")

    return {'blups': blups, 'beta': beta, 'vg': vg, 've': ve, 'h2': h2, 'delta': delta}


def _term(data: pd.DataFrame, column: str) -> str:
    quoted = f"Q('{column}')"
    if pd.api.types.is_numeric_dtype(data[column]) and not pd.api.types.is_bool_dtype(data[column]):
        return quoted
    return f"C({quoted})"


def QG_FitGenotypeModel(data: pd.DataFrame,
                        response: str,
                        genotype: str = 'geno',
                        fixed: Optional[List[str]] = None,
                        verbose: bool = True) -> Dict[str, Any]:
    """Random genotype intercept model fitted by REML

    response ~ 1 + fixed + (1 | genotype)

    Non-numeric fixed effects enter as factors. Broad-sense heritability is
    reported on an entry-mean basis, vg / (vg + ve / r) with r the harmonic
    mean of the number of records per genotype.

    Returns:
        Dictionary with 'blups' (DataFrame genotype, BLUP, predicted),
        'fixed_effects', 'vg', 've', 'h2', 'n_obs', 'converged', 'result'
    """
    fixed = list(fixed or [])
    for col in [response, genotype] + fixed:
        if col not in data.columns:
            raise ValueError(f"Column '{col}' not found in data")

    dat = data[[genotype, response] + fixed].dropna().copy()
    if dat[genotype].nunique() < 2:
        raise ValueError("At least two genotypes are needed to estimate the genetic variance")

    formula = f"Q('{response}') ~ 1"
    for col in fixed:
        formula += f" + {_term(dat, col)}"
    if verbose:
        print(f"Fitting mixed model: {formula} + (1|{genotype}) on {len(dat)} records")

    model = smf.mixedlm(formula, dat, groups=dat[genotype].astype(str))
    result = model.fit(reml=True)

    vg = float(result.cov_re.iloc[0, 0])
    ve = float(result.scale)
    reps = dat.groupby(genotype).size().to_numpy()
    r_bar = float(stats.hmean(reps))
    h2 = vg / (vg + ve / r_bar) if (vg + ve) > 0 else 0.0

    intercept = float(result.fe_params.iloc[0])
    names = list(result.random_effects.keys())
    values = [float(result.random_effects[g].iloc[0]) for g in names]
    blups = pd.DataFrame({genotype: names, 'BLUP': values})
    blups['predicted'] = intercept + blups['BLUP']

    if not result.converged:
        warnings.warn(f"Mixed model for '{response}' did not converge")
    if verbose:
        print(f"  vg = {vg:.4f}, ve = {ve:.4f}, entry-mean h2 = {h2:.3f}")

    return {
        'blups': blups,
        'fixed_effects': result.fe_params.copy(),
        'vg': vg,
        've': ve,
        'h2': h2,
        'n_obs': int(result.nobs),
        'converged': bool(result.converged),
        'result': result,
    }
