"""
Mixed Linear Model (MLM) for GWAS analysis

Population-parameters-previously-determined (P3D / EMMAX) approach:
variance components are estimated once under the null model by REML in the
eigenspace of the kinship matrix, then every marker is tested by generalized
least squares with the variance ratio held fixed.

    y = X*beta + g*alpha + u + e,  u ~ N(0, vg*K),  e ~ N(0, ve*I)
"""

import warnings
from typing import Optional, Union, Dict, Tuple

import numpy as np
from joblib import Parallel, delayed
from scipy import optimize

from ..utils.data_types import (GenotypeMatrix, KinshipMatrix, AssociationResults,
                                GenotypeMap, as_kinship_array)
from ..utils.stats import t_test_pvalues
from .glm import _trait_values, build_design_matrix

EIGENVALUE_FLOOR = 1e-6


def eigen_kinship(kinship: np.ndarray) -> Dict[str, np.ndarray]:
    """Eigendecomposition of K in descending eigenvalue order"""
    eigenvals, eigenvecs = np.linalg.eigh(kinship)
    order = np.argsort(eigenvals)[::-1]
    return {'eigenvals': eigenvals[order], 'eigenvecs': eigenvecs[:, order]}


def _calculate_neg_reml_likelihood(h2: float, y: np.ndarray, X: np.ndarray, eigenvals: np.ndarray) -> float:
    """Negative REML log-likelihood (profiled over beta and sigma^2) at heritability h2

    Args:
        h2: Share of the variance explained by the kinship
        y: Phenotype in eigenspace (U'y)
        X: Design matrix in eigenspace (U'X)
        eigenvals: Eigenvalues of the kinship matrix
    """
    n = len(y)
    p = X.shape[1]
    eig_safe = np.maximum(eigenvals, EIGENVALUE_FLOOR)

    V0b = h2 * eig_safe + (1.0 - h2)
    if np.any(V0b <= 0):
        return np.inf
    V0bi = 1.0 / V0b

    ViX = V0bi[:, np.newaxis] * X
    XViX = X.T @ ViX
    sign, logdet_XViX = np.linalg.slogdet(XViX)
    if sign <= 0:
        return np.inf

    try:
        beta = np.linalg.solve(XViX, ViX.T @ y)
    except np.linalg.LinAlgError:
        return np.inf
    P0y = V0bi * y - ViX @ beta
    yP0y = float(P0y @ y)
    if yP0y <= 0:
        return np.inf

    df = n - p
    return 0.5 * (np.sum(np.log(V0b)) + logdet_XViX
                  + df * np.log(yP0y) + df * (1.0 - np.log(df)))


def _calculate_neg_ml_likelihood(h2: float, y: np.ndarray, X: np.ndarray, eigenvals: np.ndarray) -> float:
    """Negative ML log-likelihood at heritability h2; constants cancel in LRT differences."""
    n = len(y)
    eig_safe = np.maximum(eigenvals, EIGENVALUE_FLOOR)

    V0b = h2 * eig_safe + (1.0 - h2)
    if np.any(V0b <= 0):
        return np.inf
    V0bi = 1.0 / V0b

    ViX = V0bi[:, np.newaxis] * X
    try:
        beta = np.linalg.solve(X.T @ ViX, ViX.T @ y)
    except np.linalg.LinAlgError:
        return np.inf
    P0y = V0bi * y - ViX @ beta
    yP0y = float(P0y @ y)
    if yP0y <= 0:
        return np.inf

    return 0.5 * (np.sum(np.log(V0b)) + n * np.log(yP0y / n))


def estimate_variance_components_brent(y: np.ndarray,
                                       X: np.ndarray,
                                       eigenvals: np.ndarray,
                                       verbose: bool = False,
                                       use_ml: bool = False) -> Tuple[float, float, float]:
    """REML (or ML) variance components by a bounded Brent search over h2

    Args:
        y: Phenotype in eigenspace (U'y)
        X: Design matrix in eigenspace (U'X)
        eigenvals: Eigenvalues of the kinship matrix
        verbose: Print optimisation result
        use_ml: Maximise the ML rather than the REML likelihood

    Returns:
        Tuple (delta_hat, vg_hat, ve_hat) with delta = ve/vg
    """
    objective = _calculate_neg_ml_likelihood if use_ml else _calculate_neg_reml_likelihood

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        result = optimize.minimize_scalar(
            lambda h2: objective(h2, y, X, eigenvals),
            bounds=(0.001, 0.999),
            method='bounded',
            options={'xatol': 1.22e-4, 'maxiter': 500},
        )

    if result.success and np.isfinite(result.fun):
        h2_hat = float(result.x)
    else:
        h2_hat = 0.5
        warnings.warn(f"Variance component search did not converge ({result.message}); using h2 = 0.5")

    n, p = X.shape
    eig_safe = np.maximum(eigenvals, EIGENVALUE_FLOOR)
    V0bi = 1.0 / (h2_hat * eig_safe + (1.0 - h2_hat))
    ViX = V0bi[:, np.newaxis] * X
    XViX = X.T @ ViX
    try:
        beta = np.linalg.solve(XViX, ViX.T @ y)
    except np.linalg.LinAlgError:
        beta = np.linalg.pinv(XViX) @ (ViX.T @ y)
    P0y = V0bi * y - ViX @ beta
    yP0y = float(P0y @ y)

    v_base = yP0y / max(1, (n if use_ml else n - p))
    vg_hat = h2_hat * v_base
    ve_hat = (1.0 - h2_hat) * v_base
    delta_hat = ve_hat / vg_hat if vg_hat > 0 else 1.0

    if verbose:
        print(f"Brent optimization: h2 = {h2_hat:.6f}, neg-log-likelihood = {result.fun:.6f}")
        print(f"Estimated vg = {vg_hat:.6f}, ve = {ve_hat:.6f}")

    return delta_hat, vg_hat, ve_hat


def _test_batch(G_t: np.ndarray, y_t: np.ndarray, X_t: np.ndarray, weights: np.ndarray,
                iXWX: np.ndarray, XWy: np.ndarray, vg: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """GLS effect, standard error and t statistic for a batch of eigen-rotated markers"""
    WG = weights[:, np.newaxis] * G_t
    XWG = X_t.T @ WG                      # q x m
    GWG = np.sum(G_t * WG, axis=0)        # m
    GWy = WG.T @ y_t                      # m

    B22 = GWG - np.sum(XWG * (iXWX @ XWG), axis=0)
    informative = B22 > 1e-12

    effects = np.zeros(G_t.shape[1])
    se = np.full(G_t.shape[1], np.nan)
    t = np.full(G_t.shape[1], np.nan)

    inv_B22 = 1.0 / B22[informative]
    effects[informative] = inv_B22 * (GWy[informative] - XWG[:, informative].T @ (iXWX @ XWy))
    se[informative] = np.sqrt(inv_B22 * vg)
    t[informative] = effects[informative] / se[informative]
    return effects, se, t


def QG_MLM(phe: np.ndarray,
           geno: Union[GenotypeMatrix, np.ndarray],
           K: Optional[Union[KinshipMatrix, np.ndarray]] = None,
           eigenK: Optional[Dict] = None,
           CV: Optional[np.ndarray] = None,
           maxLine: int = 1000,
           cpu: int = 1,
           snp_map: Optional[GenotypeMap] = None,
           verbose: bool = True) -> AssociationResults:
    """Mixed Linear Model GWAS

    Args:
        phe: Phenotype vector or (n_individuals x 2) matrix [ID, trait_value]
        geno: Genotype matrix (n_individuals x n_markers)
        K: Kinship matrix (n_individuals x n_individuals)
        eigenK: Pre-computed {'eigenvals', 'eigenvecs'} of K
        CV: Covariate matrix (n_individuals x n_covariates), optional
        maxLine: Batch size for processing markers
        cpu: Number of threads for batch processing (0 = all cores)
        snp_map: Optional map attached to the results
        verbose: Print progress information

    Returns:
        AssociationResults; variance components are stored in ``info``
    """
    y = _trait_values(phe)
    if isinstance(geno, np.ndarray):
        geno = GenotypeMatrix(geno)
    elif not isinstance(geno, GenotypeMatrix):
        raise ValueError("Genotype must be GenotypeMatrix or numpy array")

    n, n_markers = geno.shape
    if len(y) != n:
        raise ValueError("Number of phenotype observations must match number of individuals")

    if eigenK is None:
        if K is None:
            raise ValueError("Kinship matrix K (or its eigendecomposition) is required for MLM analysis")
        kinship = as_kinship_array(K)
        if kinship.shape != (n, n):
            raise ValueError("Kinship matrix dimensions must match number of individuals")
        if verbose:
            print("Computing eigendecomposition of kinship matrix...")
        eigenK = eigen_kinship(kinship)

    eigenvals = np.asarray(eigenK['eigenvals'], dtype=np.float64)
    eigenvecs = np.asarray(eigenK['eigenvecs'], dtype=np.float64)
    if eigenvecs.shape != (n, n):
        raise ValueError("Eigenvectors must be n_individuals x n_individuals")

    X = build_design_matrix(n, CV)
    q = X.shape[1]
    df = n - q - 1

    if cpu == 0:
        import multiprocessing
        cpu = multiprocessing.cpu_count()

    if verbose:
        print(f"Running MLM on {n} individuals, {n_markers} markers (batch size {maxLine}, {cpu} thread(s))")

    y_t = eigenvecs.T @ y
    X_t = eigenvecs.T @ X

    delta, vg, ve = estimate_variance_components_brent(y_t, X_t, eigenvals, verbose=verbose)
    h2 = vg / (vg + ve) if (vg + ve) > 0 else 0.0
    if verbose:
        print(f"Estimated delta (ve/vg): {delta:.6f}, pseudo-heritability: {h2:.4f}")

    weights = 1.0 / (np.maximum(eigenvals, EIGENVALUE_FLOOR) + delta)
    XWX = X_t.T @ (weights[:, np.newaxis] * X_t)
    try:
        iXWX = np.linalg.inv(XWX)
    except np.linalg.LinAlgError:
        iXWX = np.linalg.pinv(XWX)
    XWy = X_t.T @ (weights * y_t)

    def _run(start: int, end: int):
        G_t = eigenvecs.T @ geno.get_batch_imputed(start, end)
        return start, _test_batch(G_t, y_t, X_t, weights, iXWX, XWy, vg)

    bounds = [(s, min(s + maxLine, n_markers)) for s in range(0, n_markers, maxLine)]
    if cpu > 1 and len(bounds) > 1:
        batch_results = Parallel(n_jobs=cpu, backend='threading')(
            delayed(_run)(start, end) for start, end in bounds
        )
    else:
        batch_results = [_run(start, end) for start, end in bounds]

    effects = np.zeros(n_markers)
    std_errors = np.full(n_markers, np.nan)
    t_stats = np.full(n_markers, np.nan)
    for start, (b_eff, b_se, b_t) in batch_results:
        stop = start + len(b_eff)
        effects[start:stop] = b_eff
        std_errors[start:stop] = b_se
        t_stats[start:stop] = b_t

    pvalues = t_test_pvalues(t_stats, df)

    if verbose:
        print(f"MLM complete. Minimum p-value: {np.nanmin(pvalues):.2e}")

    return AssociationResults(
        effects, std_errors, pvalues, snp_map=snp_map,
        info={'method': 'MLM', 'df': df, 'delta': delta, 'vg': vg, 've': ve, 'h2': h2},
    )
