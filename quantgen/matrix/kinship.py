"""
Kinship matrix computation using VanRaden method
"""

import numpy as np
from typing import Union, Tuple
import warnings

from ..utils.data_types import GenotypeMatrix, KinshipMatrix, as_kinship_array


def QG_K_VanRaden(M: Union[GenotypeMatrix, np.ndarray],
                  maxLine: int = 5000,
                  verbose: bool = True,
                  return_eigen: bool = False) -> Union[KinshipMatrix, Tuple[KinshipMatrix, dict]]:
    """VanRaden genomic relationship matrix

    K = ZZ' / mean(diag(ZZ')) where Z is the genotype matrix centred by
    marker (missing dosages imputed with the marker mean, so they contribute
    zero after centring).

    Args:
        M: Genotype matrix (n_individuals x n_markers)
        maxLine: Number of markers per batch
        verbose: Print progress information
        return_eigen: Also return the eigendecomposition (descending order)

    Returns:
        KinshipMatrix, or (KinshipMatrix, {'eigenvals', 'eigenvecs'})
    """
    if isinstance(M, np.ndarray):
        M = GenotypeMatrix(M)
    elif not isinstance(M, GenotypeMatrix):
        raise ValueError("M must be GenotypeMatrix or numpy array")

    n_individuals, n_markers = M.shape
    if verbose:
        print(f"Calculating kinship matrix for {n_individuals} individuals, {n_markers} markers")

    kin = np.zeros((n_individuals, n_individuals), dtype=np.float64)
    n_batches = (n_markers + maxLine - 1) // maxLine

    for batch_idx in range(n_batches):
        start = batch_idx * maxLine
        end = min(start + maxLine, n_markers)
        if verbose and n_batches > 1:
            print(f"Processing batch {batch_idx + 1}/{n_batches} (markers {start}-{end - 1})")

        Z = M.get_batch_imputed(start, end)
        Z -= Z.mean(axis=0)[np.newaxis, :]
        kin += Z @ Z.T

    kin = (kin + kin.T) / 2.0

    mean_diag = float(np.mean(np.diag(kin)))
    if mean_diag > 0:
        kin /= mean_diag
    else:
        warnings.warn("Mean diagonal element is zero or negative, skipping normalization")

    if verbose:
        print(f"Kinship matrix complete. Mean diagonal before scaling: {mean_diag:.6f}")

    kinship = KinshipMatrix(kin)
    if not return_eigen:
        return kinship

    eigenvals, eigenvecs = kinship.eigendecomposition()
    if verbose:
        print(f"Eigendecomposition complete. Range of eigenvalues: [{eigenvals.min():.6f}, {eigenvals.max():.6f}]")
    return kinship, {'eigenvals': eigenvals, 'eigenvecs': eigenvecs}


def validate_kinship_matrix(K: Union[KinshipMatrix, np.ndarray],
                            tolerance: float = 1e-8) -> Tuple[bool, list]:
    """Check that a kinship matrix is square, symmetric and positive semi-definite

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []
    matrix = as_kinship_array(K)

    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        errors.append("Matrix is not square")
        return False, errors

    if not np.allclose(matrix, matrix.T, atol=tolerance):
        errors.append("Matrix is not symmetric")
    else:
        eigenvals = np.linalg.eigvalsh(matrix)
        if np.any(eigenvals < -tolerance * max(1.0, np.abs(eigenvals).max())):
            errors.append("Matrix is not positive semi-definite")

    if np.any(np.diag(matrix) < 0):
        errors.append("Some diagonal elements are negative")

    return len(errors) == 0, errors
