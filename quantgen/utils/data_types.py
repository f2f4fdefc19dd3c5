"""
Core data structures for quantgen package
"""

import numpy as np
import pandas as pd
from typing import Optional, Union, Tuple, Dict, Any
from pathlib import Path

MISSING_GENOTYPE = -9


def missing_mask(values: np.ndarray) -> np.ndarray:
    """Boolean mask of missing dosages (-9 sentinel or NaN)"""
    values = np.asarray(values)
    mask = values == MISSING_GENOTYPE
    if values.dtype.kind == 'f':
        mask |= np.isnan(values)
    return mask


class GenotypeMap:
    """Marker map information

    Expected columns: [SNP, CHROM, POS]
    """

    def __init__(self, data: Union[pd.DataFrame, str, Path], metadata: Optional[Dict[str, Any]] = None):
        if isinstance(data, (str, Path)):
            self.data = pd.read_csv(data)
        elif isinstance(data, pd.DataFrame):
            self.data = data.reset_index(drop=True).copy()
        else:
            raise ValueError("Data must be DataFrame or file path")

        self.metadata: Dict[str, Any] = dict(metadata) if metadata else {}

        for col in ('SNP', 'CHROM', 'POS'):
            if col not in self.data.columns:
                raise ValueError(f"Missing required column: {col}")

    @property
    def snp_ids(self) -> pd.Series:
        return self.data['SNP']

    @property
    def chromosomes(self) -> pd.Series:
        return self.data['CHROM']

    @property
    def positions(self) -> pd.Series:
        return self.data['POS']

    @property
    def n_markers(self) -> int:
        return len(self.data)

    def to_dataframe(self) -> pd.DataFrame:
        return self.data.copy()


class GenotypeMatrix:
    """Genotype dosage matrix (individuals x markers)

    Dosages are coded 0/1/2 (count of the second allele); missing values are
    -9 or NaN. Imputation fills missing dosages with the per-marker mean of
    the observed dosages.
    """

    def __init__(self, data: Union[np.ndarray, 'GenotypeMatrix']):
        if isinstance(data, GenotypeMatrix):
            data = data._data
        if not isinstance(data, np.ndarray):
            raise ValueError("Data must be a numpy array")
        if data.ndim != 2:
            raise ValueError(f"Genotype matrix must be 2D, got {data.ndim}D")

        self._data = data
        self._marker_means = None

    @property
    def shape(self) -> Tuple[int, int]:
        """Matrix shape (n_individuals, n_markers)"""
        return self._data.shape

    @property
    def n_individuals(self) -> int:
        return self.shape[0]

    @property
    def n_markers(self) -> int:
        return self.shape[1]

    @property
    def has_missing(self) -> bool:
        return bool(missing_mask(self._data).any())

    def __getitem__(self, key):
        return self._data[key]

    def to_numpy(self) -> np.ndarray:
        return self._data

    def get_batch(self, marker_start: int, marker_end: int) -> np.ndarray:
        """Raw batch of markers, missing values untouched"""
        return self._data[:, marker_start:marker_end]

    def subset_individuals(self, indices: Union[np.ndarray, list]) -> "GenotypeMatrix":
        """Return a GenotypeMatrix restricted to a subset of individuals."""
        indices = np.asarray(indices)
        if indices.dtype != bool:
            indices = indices.astype(int)
        return GenotypeMatrix(self._data[indices, :])

    @property
    def marker_means(self) -> np.ndarray:
        """Mean observed dosage of every marker (0 for fully missing markers)"""
        if self._marker_means is None:
            self._marker_means = self._compute_marker_means()
        return self._marker_means

    def _compute_marker_means(self, batch_size: int = 1000) -> np.ndarray:
        means = np.zeros(self.n_markers, dtype=np.float64)
        for start in range(0, self.n_markers, batch_size):
            end = min(start + batch_size, self.n_markers)
            batch = self._data[:, start:end].astype(np.float64)
            mask = missing_mask(batch)
            counts = (~mask).sum(axis=0)
            batch[mask] = 0.0
            with np.errstate(invalid='ignore', divide='ignore'):
                means[start:end] = np.where(counts > 0, batch.sum(axis=0) / np.maximum(counts, 1), 0.0)
        return means

    def get_batch_imputed(self, marker_start: int, marker_end: int,
                          dtype: np.dtype = np.float64) -> np.ndarray:
        """Batch of markers as floats with missing dosages replaced by marker means"""
        batch = self._data[:, marker_start:marker_end].astype(dtype, copy=True)
        if batch.size == 0:
            return batch
        mask = missing_mask(batch)
        if mask.any():
            fill = self.marker_means[marker_start:marker_end].astype(dtype)
            batch[mask] = np.broadcast_to(fill, batch.shape)[mask]
        return batch

    def to_imputed(self, dtype: np.dtype = np.float64) -> np.ndarray:
        return self.get_batch_imputed(0, self.n_markers, dtype=dtype)

    def calculate_allele_frequencies(self, max_dosage: float = 2.0) -> np.ndarray:
        """Frequency of the counted allele for every marker, ignoring missing calls"""
        return self.marker_means / max(max_dosage, 1e-12)

    def calculate_maf(self, max_dosage: float = 2.0) -> np.ndarray:
        freqs = self.calculate_allele_frequencies(max_dosage=max_dosage)
        return np.minimum(freqs, 1.0 - freqs)


class AssociationResults:
    """GWAS association results: [Effect, SE, P-value] for each marker"""

    def __init__(self, effects: np.ndarray, se: np.ndarray, pvalues: np.ndarray,
                 snp_map: Optional[GenotypeMap] = None,
                 info: Optional[Dict[str, Any]] = None):

        if not (len(effects) == len(se) == len(pvalues)):
            raise ValueError("All result arrays must have same length")
        if snp_map is not None and snp_map.n_markers != len(effects):
            raise ValueError("Map must describe exactly the tested markers")

        self.effects = np.asarray(effects, dtype=np.float64)
        self.se = np.asarray(se, dtype=np.float64)
        self.pvalues = np.asarray(pvalues, dtype=np.float64)
        self.snp_map = snp_map
        self.info: Dict[str, Any] = dict(info) if info else {}

    @property
    def n_markers(self) -> int:
        return len(self.effects)

    def to_dataframe(self) -> pd.DataFrame:
        df = pd.DataFrame({
            'Effect': self.effects,
            'SE': self.se,
            'P-value': self.pvalues
        })

        if self.snp_map is not None:
            df.insert(0, 'POS', self.snp_map.positions.values)
            df.insert(0, 'CHROM', self.snp_map.chromosomes.values)
            df.insert(0, 'SNP', self.snp_map.snp_ids.values)

        return df

    def to_numpy(self) -> np.ndarray:
        """Convert to numpy array [Effect, SE, P-value]"""
        return np.column_stack([self.effects, self.se, self.pvalues])


class KinshipMatrix:
    """Kinship (genomic relationship) matrix

    Must be a square symmetric matrix.
    """

    def __init__(self, data: Union[np.ndarray, str, Path]):
        if isinstance(data, (str, Path)):
            self._data = pd.read_csv(data, header=0, index_col=0).values.astype(float)
        elif isinstance(data, np.ndarray):
            self._data = np.array(data, dtype=np.float64)
        else:
            raise ValueError("Data must be array or file path")

        if self._data.ndim != 2:
            raise ValueError("Kinship matrix must be 2D")
        if self._data.shape[0] != self._data.shape[1]:
            raise ValueError("Kinship matrix must be square")
        if not np.allclose(self._data, self._data.T, atol=1e-8):
            raise ValueError("Kinship matrix must be symmetric")

        self.n = self._data.shape[0]

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    def __getitem__(self, key):
        return self._data[key]

    def to_numpy(self) -> np.ndarray:
        return self._data.copy()

    def eigendecomposition(self) -> Tuple[np.ndarray, np.ndarray]:
        """Eigenvalues and eigenvectors sorted by decreasing eigenvalue"""
        eigenvals, eigenvecs = np.linalg.eigh(self._data)
        order = np.argsort(eigenvals)[::-1]
        return eigenvals[order], eigenvecs[:, order]


def as_kinship_array(K: Union[KinshipMatrix, np.ndarray]) -> np.ndarray:
    """Return the dense float array behind a kinship input"""
    if isinstance(K, KinshipMatrix):
        return K.to_numpy()
    if isinstance(K, np.ndarray):
        return np.asarray(K, dtype=np.float64)
    raise ValueError("Kinship matrix must be KinshipMatrix or numpy array")
