"""
Genotype simulation

Bi-allelic markers with Beta-distributed ancestral allele frequencies,
optional population structure under the Balding-Nichols model, optional
inbreeding (as in selfing crops) and missing calls coded -9.
"""

import copy
from typing import Optional, Dict, Any, Tuple, List, Sequence

import numpy as np
import pandas as pd

from ..utils.data_types import GenotypeMatrix, GenotypeMap, MISSING_GENOTYPE

DEFAULT_SIMULATION_CONFIG: Dict[str, Any] = {
    'n_individuals': 200,
    'n_markers': 2000,
    'n_chromosomes': 5,
    'chrom_length': 100_000_000,
    'maf_beta_a': 0.5,
    'maf_beta_b': 0.5,
    'min_maf': 0.01,
    'population_sizes': None,
    'fst': 0.05,
    'inbreeding_f': 0.0,
    'missing_rate': 0.0,
    'n_qtns': 10,
    'h2': 0.5,
    'effect_sd': 1.0,
    'seed': None,
}


def create_simulation_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Merge user settings into the default simulation configuration"""
    config = copy.deepcopy(DEFAULT_SIMULATION_CONFIG)
    for key, value in (overrides or {}).items():
        if key not in config:
            raise ValueError(f"Unknown simulation setting: {key}")
        config[key] = value

    if config['n_individuals'] < 2 or config['n_markers'] < 1:
        raise ValueError("Need at least 2 individuals and 1 marker")
    if not 0.0 <= config['missing_rate'] < 1.0:
        raise ValueError("missing_rate must lie in [0, 1)")
    if not 0.0 <= config['inbreeding_f'] <= 1.0:
        raise ValueError("inbreeding_f must lie in [0, 1]")
    if not 0.0 < config['fst'] < 1.0:
        raise ValueError("fst must lie in (0, 1)")
    if not 0.0 <= config['min_maf'] < 0.5:
        raise ValueError("min_maf must lie in [0, 0.5)")
    if config['population_sizes'] is not None and sum(config['population_sizes']) != config['n_individuals']:
        raise ValueError("population_sizes must sum to n_individuals")
    return config


def QG_SimulateGeneticMap(n_markers: int,
                          n_chromosomes: int = 1,
                          chrom_length: int = 100_000_000,
                          rng: Optional[np.random.Generator] = None) -> GenotypeMap:
    """Markers spread evenly over chromosomes at sorted, distinct random positions"""
    if n_chromosomes < 1 or n_markers < n_chromosomes:
        raise ValueError("Need at least one marker per chromosome")
    rng = rng or np.random.default_rng()

    per_chrom = np.full(n_chromosomes, n_markers // n_chromosomes)
    per_chrom[:n_markers % n_chromosomes] += 1

    chroms, positions = [], []
    for chrom, n_chr in enumerate(per_chrom, start=1):
        if n_chr > chrom_length:
            raise ValueError("More markers than base pairs on a chromosome")
        pos = np.sort(rng.choice(chrom_length, size=n_chr, replace=False)) + 1
        chroms.extend([str(chrom)] * n_chr)
        positions.append(pos)

    return GenotypeMap(pd.DataFrame({
        'SNP': [f'SNP_{i + 1:05d}' for i in range(n_markers)],
        'CHROM': chroms,
        'POS': np.concatenate(positions),
    }))


def simulate_allele_frequencies(n_markers: int,
                                alpha: float = 0.5,
                                beta: float = 0.5,
                                min_maf: float = 0.01,
                                rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Ancestral allele frequencies from Beta(alpha, beta) kept within [min_maf, 1 - min_maf]

    Beta(0.5, 0.5) gives the U-shaped spectrum of natural populations,
    Beta(2, 2) a spectrum centred on intermediate frequencies.
    """
    rng = rng or np.random.default_rng()
    freqs = rng.beta(alpha, beta, size=n_markers)
    return np.clip(freqs, min_maf, 1.0 - min_maf)


def simulate_population_frequencies(ancestral_freqs: np.ndarray,
                                    n_populations: int,
                                    fst: float = 0.05,
                                    rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Balding-Nichols sub-population frequencies, shape (n_populations, n_markers)

    p_k ~ Beta(p (1 - F) / F, (1 - p)(1 - F) / F), so that Var(p_k) = F p (1 - p).
    """
    rng = rng or np.random.default_rng()
    scale = (1.0 - fst) / fst
    a = ancestral_freqs * scale + 1e-6
    b = (1.0 - ancestral_freqs) * scale + 1e-6
    return rng.beta(a[np.newaxis, :], b[np.newaxis, :], size=(n_populations, len(ancestral_freqs)))


def apply_inbreeding(genotypes: np.ndarray, inbreeding_f: float,
                     rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Turn each heterozygote into a random homozygote with probability F"""
    rng = rng or np.random.default_rng()
    out = genotypes.copy()
    het = out == 1
    collapse = het & (rng.random(out.shape) < inbreeding_f)
    out[collapse] = np.where(rng.random(int(collapse.sum())) < 0.5, 0, 2)
    return out


def QG_SimulateGenotypes(n_individuals: int = 200,
                         n_markers: int = 2000,
                         n_chromosomes: int = 5,
                         population_sizes: Optional[Sequence[int]] = None,
                         fst: float = 0.05,
                         maf_beta_a: float = 0.5,
                         maf_beta_b: float = 0.5,
                         min_maf: float = 0.01,
                         inbreeding_f: float = 0.0,
                         missing_rate: float = 0.0,
                         chrom_length: int = 100_000_000,
                         seed: Optional[int] = None,
                         verbose: bool = False) -> Tuple[GenotypeMatrix, List[str], GenotypeMap, Dict[str, Any]]:
    """Simulate a bi-allelic genotype panel

    Args:
        n_individuals: Number of individuals
        n_markers: Number of markers
        n_chromosomes: Number of chromosomes the markers are spread over
        population_sizes: Sub-population sizes (must sum to n_individuals);
            None simulates a single panmictic population
        fst: Differentiation between sub-populations
        maf_beta_a, maf_beta_b: Beta parameters of the ancestral frequency spectrum
        min_maf: Lower bound on ancestral minor allele frequency
        inbreeding_f: Probability that a heterozygote is turned homozygous
        missing_rate: Share of calls set to missing (-9)
        chrom_length: Chromosome length in base pairs
        seed: Random seed
        verbose: Print a summary

    Returns:
        Tuple (GenotypeMatrix, individual IDs, GenotypeMap, info dict)
    """
    config = create_simulation_config({
        'n_individuals': n_individuals, 'n_markers': n_markers,
        'n_chromosomes': n_chromosomes, 'population_sizes': population_sizes,
        'fst': fst, 'maf_beta_a': maf_beta_a, 'maf_beta_b': maf_beta_b,
        'min_maf': min_maf, 'inbreeding_f': inbreeding_f,
        'missing_rate': missing_rate, 'chrom_length': chrom_length, 'seed': seed,
    })
    rng = np.random.default_rng(config['seed'])

    genetic_map = QG_SimulateGeneticMap(n_markers, n_chromosomes, chrom_length, rng=rng)
    ancestral = simulate_allele_frequencies(n_markers, maf_beta_a, maf_beta_b, min_maf, rng=rng)

    if population_sizes is None:
        sizes = [n_individuals]
        freqs = ancestral[np.newaxis, :]
    else:
        sizes = list(population_sizes)
        freqs = simulate_population_frequencies(ancestral, len(sizes), fst, rng=rng)

    blocks = [rng.binomial(2, freqs[k], size=(size, n_markers)) for k, size in enumerate(sizes)]
    genotypes = np.vstack(blocks).astype(np.int8)
    populations = np.repeat(np.arange(len(sizes)), sizes)

    if inbreeding_f > 0:
        genotypes = apply_inbreeding(genotypes, inbreeding_f, rng=rng)

    if missing_rate > 0:
        genotypes[rng.random(genotypes.shape) < missing_rate] = MISSING_GENOTYPE

    ids = [f'ID{i + 1:04d}' for i in range(n_individuals)]

    if verbose:
        het = np.mean(genotypes[genotypes != MISSING_GENOTYPE] == 1)
        print(f"Simulated {n_individuals} individuals x {n_markers} markers "
              f"({len(sizes)} population(s), observed heterozygosity {het:.3f})")

    info = {
        'ancestral_freqs': ancestral,
        'population_freqs': freqs,
        'populations': populations,
        'config': config,
    }
    return GenotypeMatrix(genotypes), ids, genetic_map, info
