"""
Phenotype simulation

Two generative models:

* QTL model: a few causal markers with Normal effects plus Normal noise,
  the noise variance being set from the realised genetic variance so that
  the trait has the requested heritability.
* Animal (infinitesimal) model: y = X*beta + u + e with u ~ N(0, vu*K).
"""

from typing import Optional, Sequence, Union, Dict, Any, List

import numpy as np
import pandas as pd

from ..utils.data_types import GenotypeMatrix, KinshipMatrix, as_kinship_array


def _check_h2(h2: float) -> None:
    if not 0.0 <= h2 <= 1.0:
        raise ValueError(f"Heritability must lie in [0, 1], got {h2}")


def QG_SimulatePhenotypes(genotypes: Union[GenotypeMatrix, np.ndarray],
                          n_qtns: int = 10,
                          h2: float = 0.5,
                          mu: float = 0.0,
                          effect_sd: float = 1.0,
                          qtn_indices: Optional[Sequence[int]] = None,
                          ids: Optional[List[str]] = None,
                          trait_name: str = 'trait',
                          seed: Optional[int] = None) -> Dict[str, Any]:
    """Simulate a quantitative trait controlled by a few QTNs

    Args:
        genotypes: Genotype matrix (n_individuals x n_markers)
        n_qtns: Number of causal markers (ignored when qtn_indices is given)
        h2: Narrow-sense heritability var(g) / (var(g) + ve)
        mu: Trait mean offset
        effect_sd: Standard deviation of QTN effects
        qtn_indices: Explicit causal markers
        ids: Individual IDs (default ID0001...)
        trait_name: Name of the phenotype column
        seed: Random seed

    Returns:
        Dictionary with 'phenotypes' (DataFrame ID, trait), 'qtn_indices',
        'qtn_effects', 'genetic_values', 've'
    """
    _check_h2(h2)
    if isinstance(genotypes, np.ndarray):
        genotypes = GenotypeMatrix(genotypes)
    rng = np.random.default_rng(seed)
    n, m = genotypes.shape

    if qtn_indices is None:
        if not 0 < n_qtns <= m:
            raise ValueError(f"n_qtns must lie in [1, {m}]")
        qtn_indices = np.sort(rng.choice(m, size=n_qtns, replace=False))
    qtn_indices = np.asarray(qtn_indices, dtype=int)

    G = np.column_stack([genotypes.get_batch_imputed(j, j + 1)[:, 0] for j in qtn_indices])
    effects = rng.normal(0.0, effect_sd, size=len(qtn_indices))
    genetic_values = G @ effects
    vg = float(np.var(genetic_values))

    if h2 == 0.0:
        genetic_values = np.zeros(n)
        ve = 1.0
    elif vg == 0.0:
        raise ValueError("Causal markers are monomorphic; cannot reach the requested heritability")
    else:
        ve = vg * (1.0 - h2) / h2

    y = mu + genetic_values + rng.normal(0.0, np.sqrt(ve), size=n)

    ids = ids if ids is not None else [f'ID{i + 1:04d}' for i in range(n)]
    phenotypes = pd.DataFrame({'ID': ids, trait_name: y})

    return {
        'phenotypes': phenotypes,
        'qtn_indices': qtn_indices,
        'qtn_effects': effects,
        'genetic_values': genetic_values,
        've': ve,
    }


def _matrix_square_root(cov: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.cholesky(cov)
    except np.linalg.LinAlgError:
        # semi-definite (e.g. more individuals than markers behind K)
        eigenvals, eigenvecs = np.linalg.eigh(cov)
        return eigenvecs * np.sqrt(np.clip(eigenvals, 0.0, None))[np.newaxis, :]


def QG_SimulateAnimalModel(K: Union[KinshipMatrix, np.ndarray],
                           h2: float = 0.5,
                           sigma2_p: float = 1.0,
                           mu: float = 0.0,
                           X: Optional[np.ndarray] = None,
                           beta: Optional[np.ndarray] = None,
                           seed: Optional[int] = None) -> Dict[str, Any]:
    """Simulate y = mu + X*beta + u + e

    u ~ N(0, h2 * sigma2_p * K) and e ~ N(0, (1 - h2) * sigma2_p * I).

    Returns:
        Dictionary with 'y', 'u', 'e', 'vu', 've'
    """
    _check_h2(h2)
    if sigma2_p <= 0:
        raise ValueError("Phenotypic variance must be positive")
    kinship = as_kinship_array(K)
    n = kinship.shape[0]
    rng = np.random.default_rng(seed)

    vu = h2 * sigma2_p
    ve = (1.0 - h2) * sigma2_p

    u = _matrix_square_root(vu * kinship) @ rng.standard_normal(n) if vu > 0 else np.zeros(n)
    e = rng.normal(0.0, np.sqrt(ve), size=n) if ve > 0 else np.zeros(n)

    y = mu + u + e
    if X is not None or beta is not None:
        if X is None or beta is None:
            raise ValueError("X and beta must be given together")
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X[:, np.newaxis]
        if X.shape[0] != n:
            raise ValueError("X must have one row per individual of K")
        y = y + X @ np.asarray(beta, dtype=np.float64)

    return {'y': y, 'u': u, 'e': e, 'vu': vu, 've': ve}
