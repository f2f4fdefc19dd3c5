"""
General Linear Model (GLM) for GWAS analysis.

Single-marker ordinary least squares tests. Phenotype and marker dosages are
residualised on the covariate design (intercept + CV) through a QR
factorisation (Frisch-Waugh-Lovell), so every marker of a batch is tested
with a handful of vectorised operations.
"""

from typing import Optional, Union
import numpy as np

from ..utils.data_types import GenotypeMatrix, AssociationResults, GenotypeMap
from ..utils.stats import t_test_pvalues


def _trait_values(phe: np.ndarray) -> np.ndarray:
    phe = np.asarray(phe)
    if phe.ndim == 1:
        return phe.astype(np.float64)
    if phe.ndim == 2 and phe.shape[1] == 2:
        return phe[:, 1].astype(np.float64)
    raise ValueError("Phenotype must be a vector or a 2-column matrix [ID, trait_value]")


def build_design_matrix(n_individuals: int, CV: Optional[np.ndarray] = None) -> np.ndarray:
    """Intercept column followed by the covariates"""
    if CV is None:
        return np.ones((n_individuals, 1))
    CV = np.asarray(CV, dtype=np.float64)
    if CV.ndim == 1:
        CV = CV[:, np.newaxis]
    if CV.shape[0] != n_individuals:
        raise ValueError("Covariate matrix must have same number of rows as phenotypes")
    return np.column_stack([np.ones(n_individuals), CV])


def QG_GLM(phe: np.ndarray,
           geno: Union[GenotypeMatrix, np.ndarray],
           CV: Optional[np.ndarray] = None,
           maxLine: int = 5000,
           snp_map: Optional[GenotypeMap] = None,
           verbose: bool = True) -> AssociationResults:
    """General Linear Model for GWAS

    y = X*beta + g*alpha + e, tested marker by marker with a t-test on alpha
    (df = n - q - 1 where q is the number of columns of X).

    Args:
        phe: Phenotype vector or (n_individuals x 2) matrix [ID, trait_value]
        geno: Genotype matrix (n_individuals x n_markers)
        CV: Covariates (n_individuals x n_covariates), optional
        maxLine: Batch size for processing markers
        snp_map: Optional map attached to the results
        verbose: Print progress

    Returns:
        AssociationResults with effects, SEs and p-values
    """
    y = _trait_values(phe)
    if isinstance(geno, np.ndarray):
        geno = GenotypeMatrix(geno)
    elif not isinstance(geno, GenotypeMatrix):
        raise ValueError("Genotype must be GenotypeMatrix or numpy array")

    n, n_markers = geno.shape
    if len(y) != n:
        raise ValueError("Number of phenotype observations must match number of individuals")
    if np.any(~np.isfinite(y)):
        raise ValueError("Phenotype contains missing values; subset individuals first")

    X = build_design_matrix(n, CV)
    q = X.shape[1]
    df = n - q - 1
    if df <= 0:
        raise ValueError(f"Not enough individuals ({n}) for {q} covariates plus a marker")

    if verbose:
        print(f"Running GLM on {n} individuals, {n_markers} markers ({q} fixed-effect columns)")

    Q, _ = np.linalg.qr(X)
    y_res = y - Q @ (Q.T @ y)
    yy = float(y_res @ y_res)

    effects = np.zeros(n_markers)
    std_errors = np.full(n_markers, np.nan)
    t_stats = np.full(n_markers, np.nan)

    for start in range(0, n_markers, maxLine):
        end = min(start + maxLine, n_markers)
        G = geno.get_batch_imputed(start, end)
        G_res = G - Q @ (Q.T @ G)

        gg = np.sum(G_res * G_res, axis=0)
        gy = G_res.T @ y_res
        informative = gg > 1e-10 * n

        beta = np.zeros(end - start)
        beta[informative] = gy[informative] / gg[informative]
        rss = yy - beta * gy
        sigma2 = np.maximum(rss, 0.0) / df

        se = np.full(end - start, np.nan)
        se[informative] = np.sqrt(sigma2[informative] / gg[informative])
        with np.errstate(divide='ignore', invalid='ignore'):
            t = np.where(informative & (se > 0), beta / se, np.nan)

        effects[start:end] = beta
        std_errors[start:end] = se
        t_stats[start:end] = t

    pvalues = t_test_pvalues(t_stats, df)

    if verbose:
        print(f"GLM complete. Minimum p-value: {np.nanmin(pvalues):.2e}")

    return AssociationResults(effects, std_errors, pvalues, snp_map=snp_map,
                              info={'method': 'GLM', 'df': df})
