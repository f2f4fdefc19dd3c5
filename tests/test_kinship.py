import numpy as np
import pytest

from quantgen.matrix.kinship import QG_K_VanRaden, validate_kinship_matrix
from quantgen.utils.data_types import GenotypeMatrix, KinshipMatrix


def _genotypes(n: int = 12, m: int = 40, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 3, size=(n, m)).astype(np.int8)


def test_vanraden_matches_direct_formula() -> None:
    geno = _genotypes()
    Z = geno.astype(float) - geno.mean(axis=0)
    expected = Z @ Z.T
    expected /= np.mean(np.diag(expected))

    K = QG_K_VanRaden(geno, verbose=False)

    assert isinstance(K, KinshipMatrix)
    np.testing.assert_allclose(K.to_numpy(), expected, atol=1e-10)
    assert np.mean(np.diag(K.to_numpy())) == pytest.approx(1.0)


def test_vanraden_batching_does_not_change_result() -> None:
    geno = GenotypeMatrix(_genotypes(seed=1))

    full = QG_K_VanRaden(geno, maxLine=1000, verbose=False).to_numpy()
    batched = QG_K_VanRaden(geno, maxLine=7, verbose=False).to_numpy()

    np.testing.assert_allclose(full, batched, atol=1e-10)


def test_vanraden_imputes_missing_with_marker_mean() -> None:
    geno = _genotypes(seed=2)
    geno[0, 0] = -9
    imputed = geno.astype(float)
    imputed[0, 0] = np.mean(geno[1:, 0])

    K_missing = QG_K_VanRaden(geno, verbose=False).to_numpy()
    K_imputed = QG_K_VanRaden(imputed, verbose=False).to_numpy()

    np.testing.assert_allclose(K_missing, K_imputed, atol=1e-10)


def test_vanraden_returns_sorted_eigendecomposition() -> None:
    K, eig = QG_K_VanRaden(_genotypes(seed=3), verbose=False, return_eigen=True)

    assert np.all(np.diff(eig['eigenvals']) <= 1e-12)
    recon = eig['eigenvecs'] @ np.diag(eig['eigenvals']) @ eig['eigenvecs'].T
    np.testing.assert_allclose(recon, K.to_numpy(), atol=1e-8)


def test_vanraden_warns_on_monomorphic_panel() -> None:
    with pytest.warns(UserWarning):
        QG_K_VanRaden(np.ones((4, 5), dtype=np.int8), verbose=False)


def test_validate_kinship_matrix_reports_problems() -> None:
    ok, errors = validate_kinship_matrix(np.eye(3))
    assert ok and errors == []

    ok, errors = validate_kinship_matrix(np.array([[1.0, 2.0], [2.0, 1.0]]))
    assert not ok
    assert "Matrix is not positive semi-definite" in errors

    ok, errors = validate_kinship_matrix(np.ones((2, 3)))
    assert errors == ["Matrix is not square"]

    ok, errors = validate_kinship_matrix(np.array([[-1.0, 0.0], [0.0, 1.0]]))
    assert "Some diagonal elements are negative" in errors
