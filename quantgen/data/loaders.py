"""
Data loading utilities for delimited text files
"""

import warnings
from pathlib import Path
from typing import Union, Tuple, Optional, Dict, List

import numpy as np
import pandas as pd

from ..utils.data_types import GenotypeMatrix, GenotypeMap, MISSING_GENOTYPE

NA_VALUES = ['', 'NA', 'NaN', 'nan', 'NAN', 'na', 'N/A', 'n/a', 'Null', 'NULL', '.', '-', '--']

FIELD_TRIAL_COLUMNS = ('geno', 'control', 'rank', 'location', 'year')


def detect_separator(filepath: Union[str, Path]) -> str:
    """Delimiter of a text table: from the extension, else from the first non-empty line

    Tab wins over comma when both appear as often; comma is the default.
    """
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    if suffix == '.csv':
        return ','
    if suffix in ('.tsv', '.tab'):
        return '\t'

    with filepath.open('r') as handle:
        for _ in range(10):
            line = handle.readline()
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            tabs, commas = line.count('\t'), line.count(',')
            if tabs or commas:
                return '\t' if tabs >= commas else ','
            if ' ' in line:
                return r'\s+'
    return ','


def _read_table(filepath: Union[str, Path], **kwargs) -> pd.DataFrame:
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")
    return pd.read_csv(filepath, sep=detect_separator(filepath),
                       na_values=NA_VALUES, keep_default_na=True, **kwargs)


def load_phenotype_file(filepath: Union[str, Path],
                        trait_columns: Optional[List[str]] = None,
                        id_column: str = 'ID',
                        verbose: bool = False) -> pd.DataFrame:
    """Load a phenotype table

    Args:
        filepath: Path to phenotype file
        trait_columns: Trait columns to keep (default: every numeric column)
        id_column: Name of the ID column; when absent the first column is used
        verbose: Print the columns retained

    Returns:
        DataFrame with an 'ID' column followed by the trait columns;
        duplicated IDs are averaged
    """
    df = _read_table(filepath)

    if id_column not in df.columns:
        first = df.columns[0]
        warnings.warn(f"No '{id_column}' column found; using first column '{first}' as ID")
        id_column = first
    df = df.rename(columns={id_column: 'ID'})
    df['ID'] = df['ID'].astype(str)

    if trait_columns is None:
        trait_columns = []
        for col in df.columns:
            if col == 'ID':
                continue
            coerced = pd.to_numeric(df[col], errors='coerce')
            if coerced.notna().any() and coerced[df[col].notna()].notna().all():
                trait_columns.append(col)
    else:
        missing = [c for c in trait_columns if c not in df.columns]
        if missing:
            raise ValueError(f"Trait columns not found in {filepath}: {missing}")

    df = df[['ID'] + list(trait_columns)].copy()
    if trait_columns:
        df[trait_columns] = df[trait_columns].apply(pd.to_numeric, errors='coerce')

    if df['ID'].duplicated().any():
        n_dups = int(df['ID'].duplicated().sum())
        df = df.groupby('ID', as_index=False, sort=False).mean()
        warnings.warn(f"Averaged {n_dups} duplicated phenotype records by ID")

    if verbose:
        print(f"Loaded {len(df)} individuals with traits: {', '.join(trait_columns)}")
    return df


def load_genotype_file(filepath: Union[str, Path],
                       id_column: Optional[str] = None,
                       verbose: bool = False) -> Tuple[GenotypeMatrix, List[str], List[str]]:
    """Load a numeric dosage table (one row per individual, one column per marker)

    Missing dosages are stored as -9.

    Args:
        filepath: Path to the table
        id_column: Column holding individual IDs (default: the first column)
        verbose: Print dimensions

    Returns:
        Tuple (GenotypeMatrix, individual IDs, marker names)
    """
    df = _read_table(filepath)
    id_column = id_column or df.columns[0]
    if id_column not in df.columns:
        raise ValueError(f"ID column '{id_column}' not found in {filepath}")

    ids = df[id_column].astype(str).tolist()
    markers = df.drop(columns=[id_column])
    values = markers.apply(pd.to_numeric, errors='coerce')
    bad = values.isna() & markers.notna()
    if bad.any().any():
        raise ValueError(f"Non-numeric dosages in columns {list(markers.columns[bad.any()])[:5]}")

    dosages = values.to_numpy(dtype=np.float64, copy=True)
    dosages[np.isnan(dosages)] = MISSING_GENOTYPE
    if np.all(np.mod(dosages, 1) == 0) and dosages.min() >= -128 and dosages.max() <= 127:
        dosages = dosages.astype(np.int8)

    if len(set(ids)) < len(ids):
        warnings.warn("Duplicated individual IDs in genotype file; keeping the first occurrence")
        first = pd.Index(ids).duplicated(keep='first')
        dosages = dosages[~first]
        ids = [i for i, dup in zip(ids, first) if not dup]

    if verbose:
        print(f"Loaded genotypes: {dosages.shape[0]} individuals x {dosages.shape[1]} markers")
    return GenotypeMatrix(dosages), ids, [str(c) for c in markers.columns]


def load_map_file(filepath: Union[str, Path]) -> GenotypeMap:
    """Load a genetic map (SNP, CHROM, POS; common aliases accepted)"""
    df = _read_table(filepath)
    aliases = {
        'Chr': 'CHROM', 'chr': 'CHROM', 'chromosome': 'CHROM', 'CHR': 'CHROM',
        'Pos': 'POS', 'pos': 'POS', 'position': 'POS', 'bp': 'POS',
        'snp': 'SNP', 'marker': 'SNP', 'rs': 'SNP',
    }
    for old, new in aliases.items():
        if old in df.columns and new not in df.columns:
            df = df.rename(columns={old: new})
    if 'SNP' in df.columns:
        df['SNP'] = df['SNP'].astype(str)
    return GenotypeMap(df)


def match_individuals(phenotype_df: pd.DataFrame,
                      individual_ids: List[str]) -> Tuple[pd.DataFrame, List[int], Dict[str, int]]:
    """Keep individuals present in both phenotype and genotype data

    Returns:
        Tuple (phenotypes sorted by ID, matching genotype row indices, summary counts)
    """
    if 'ID' not in phenotype_df.columns:
        raise ValueError("Phenotype dataframe must contain an 'ID' column")
    phenotype_df = phenotype_df.copy()
    phenotype_df['ID'] = phenotype_df['ID'].astype(str)

    geno_index = {}
    for idx, ind in enumerate(map(str, individual_ids)):
        geno_index.setdefault(ind, idx)
    common = set(phenotype_df['ID']) & set(geno_index)
    if not common:
        raise ValueError("No common individuals found between phenotype and genotype data")

    matched = phenotype_df[phenotype_df['ID'].isin(common)].sort_values('ID').reset_index(drop=True)
    indices = [geno_index[i] for i in matched['ID']]
    summary = {
        'n_phenotype_original': int(phenotype_df['ID'].nunique()),
        'n_genotype_original': len(geno_index),
        'n_common': len(common),
    }
    return matched, indices, summary


def as_bool(series: pd.Series) -> pd.Series:
    """TRUE/FALSE flags given as booleans, 0/1 or text"""
    if pd.api.types.is_bool_dtype(series):
        return series
    mapping = {'true': True, 't': True, '1': True, '1.0': True, 'yes': True,
               'false': False, 'f': False, '0': False, '0.0': False, 'no': False}
    text = series.astype(str).str.strip().str.lower()
    parsed = text.map(mapping)
    if parsed.isna().any():
        bad = sorted(series[parsed.isna()].astype(str).unique())[:5]
        raise ValueError(f"Column 'control' must hold TRUE/FALSE values, found {bad}")
    return parsed.astype(bool)


def load_field_trial_file(filepath: Union[str, Path],
                          response: Optional[str] = None,
                          verbose: bool = False) -> pd.DataFrame:
    """Load a field-trial table ready for spatial correction

    Checks the columns geno, control, rank, location, year (and the
    response when given), parses control as booleans and keeps rank and
    location numeric.
    """
    df = _read_table(filepath)
    required = list(FIELD_TRIAL_COLUMNS) + ([response] if response else [])
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Field-trial file {filepath} lacks columns: {missing}")

    df['geno'] = df['geno'].astype(str)
    df['control'] = as_bool(df['control'])
    for col in ('rank', 'location'):
        df[col] = pd.to_numeric(df[col], errors='raise')
    if response:
        df[response] = pd.to_numeric(df[response], errors='coerce')

    if verbose:
        years = sorted(df['year'].astype(str).unique())
        print(f"Loaded {len(df)} plots over {len(years)} year(s); "
              f"{int(df['control'].sum())} control plots")
    return df
