import argparse
from typing import List, Optional, Sequence

OUTPUT_CHOICES = (
    'all_marker_pvalues',
    'significant_marker_pvalues',
    'manhattan',
    'qq',
)

GWAS_METHODS = ('GLM', 'MLM')


def normalize_outputs(outputs: List[str]) -> List[str]:
    """Lower-case known outputs; nothing valid means every output"""
    valid = [o.strip().lower() for o in outputs or [] if o.strip().lower() in OUTPUT_CHOICES]
    return valid if valid else list(OUTPUT_CHOICES)


def normalize_methods(methods: str) -> List[str]:
    """Comma-separated method names to upper case, rejecting unknown ones"""
    given = [m.strip() for m in methods.split(',') if m.strip()]
    unknown = [m for m in given if m.upper() not in GWAS_METHODS]
    if unknown:
        raise ValueError(f"Unknown GWAS method(s): {unknown}; choose among {GWAS_METHODS}")
    return list(dict.fromkeys(m.upper() for m in given))


def split_list(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [v.strip() for v in value.split(',') if v.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='quantgen',
        description="Quantitative genetics toolkit: simulation, GWAS, spatial correction, Gibbs sampling",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    sub = parser.add_subparsers(dest='command', required=True)

    # simulate
    sim = sub.add_parser('simulate', help="Simulate genotypes, phenotypes and optionally a field trial",
                         formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    sim.add_argument("--n-individuals", type=int, default=200, help="Number of individuals")
    sim.add_argument("--n-markers", type=int, default=2000, help="Number of markers")
    sim.add_argument("--n-chromosomes", type=int, default=5, help="Number of chromosomes")
    sim.add_argument("--populations", default=None,
                     help="Comma-separated sub-population sizes (must sum to --n-individuals)")
    sim.add_argument("--fst", type=float, default=0.05, help="Differentiation between sub-populations")
    sim.add_argument("--inbreeding", type=float, default=0.0, help="Inbreeding coefficient")
    sim.add_argument("--missing-rate", type=float, default=0.0, help="Share of missing calls")
    sim.add_argument("--n-qtns", type=int, default=10, help="Number of causal markers")
    sim.add_argument("--h2", type=float, default=0.5, help="Narrow-sense heritability")
    sim.add_argument("--field-trial", action='store_true', help="Also simulate a field trial of the panel")
    sim.add_argument("--n-rows", type=int, default=20, help="Field rows")
    sim.add_argument("--n-cols", type=int, default=20, help="Field columns")
    sim.add_argument("--years", default="2021", help="Comma-separated trial years")
    sim.add_argument("--seed", type=int, default=None, help="Random seed")
    sim.add_argument("--outputdir", "-o", default="./simulated", help="Output directory")

    # gwas
    gwas = sub.add_parser('gwas', help="Genome-wide association scan",
                          formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    gwas.add_argument("--phenotype", "-p", required=True, help="Phenotype file (ID column and trait columns)")
    gwas.add_argument("--phenotype-id-column", default='ID', help="Column name for sample IDs")
    gwas.add_argument("--genotype", "-g", required=True, help="Numeric dosage file (ID column then markers)")
    gwas.add_argument("--map", "-m", default=None, help="Genetic map file (SNP, CHROM, POS)")
    gwas.add_argument("--traits", default=None, help="Comma-separated traits (default: all)")
    gwas.add_argument("--methods", default="GLM,MLM", help="Methods to run (comma-separated)")
    gwas.add_argument("--alpha", type=float, default=0.05, help="Bonferroni alpha")
    gwas.add_argument("--cpu", type=int, default=1, help="Threads for MLM batches (0 = all cores)")
    gwas.add_argument("--outputs", nargs='+', choices=list(OUTPUT_CHOICES), default=list(OUTPUT_CHOICES),
                      help="Outputs to write")
    gwas.add_argument("--outputdir", "-o", default="./GWAS_results", help="Output directory")

    # spatial
    spatial = sub.add_parser('spatial', help="Correct spatial heterogeneity of a field trial",
                             formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    spatial.add_argument("--input", "-i", required=True,
                         help="Trial table with geno, control, rank, location, year and the response")
    spatial.add_argument("--response", "-r", required=True, help="Response column to correct")
    spatial.add_argument("--fix-eff", default=None, help="Comma-separated fixed effects of the kriging trend")
    spatial.add_argument("--min-ctls-per-year", type=int, default=10,
                         help="Skip years with this many controls or fewer")
    spatial.add_argument("--classical", action='store_true',
                         help="Method-of-moments variogram instead of Cressie's estimator")
    spatial.add_argument("--vgm-models", default="Exp,Sph,Gau,Ste", help="Candidate variogram models")
    spatial.add_argument("--nb-folds", type=int, default=5, help="Cross-validation folds")
    spatial.add_argument("--out-prefix", default=None, help="Prefix for plots and cross-validation statistics")
    spatial.add_argument("--output", "-o", required=True, help="Corrected table (CSV)")
    spatial.add_argument("--n-jobs", type=int, default=1, help="Years processed in parallel")
    spatial.add_argument("--seed", type=int, default=None, help="Seed of the fold assignment")
    spatial.add_argument("--verbose", "-v", type=int, default=1, choices=[0, 1, 2], help="Verbosity level")

    # gibbs
    gibbs = sub.add_parser('gibbs', help="Gibbs sampler for the Normal model on a phenotype column",
                           formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    gibbs.add_argument("--phenotype", "-p", required=True, help="Phenotype file")
    gibbs.add_argument("--trait", "-t", required=True, help="Trait column")
    gibbs.add_argument("--n-iter", type=int, default=5000, help="Number of iterations")
    gibbs.add_argument("--burnin", type=int, default=1000, help="Burn-in iterations")
    gibbs.add_argument("--thin", type=int, default=1, help="Thinning interval")
    gibbs.add_argument("--mu0", type=float, default=0.0, help="Prior mean of mu")
    gibbs.add_argument("--s0-2", type=float, default=1e6, help="Prior variance of mu")
    gibbs.add_argument("--a", type=float, default=0.01, help="Inverse-gamma shape of the sigma2 prior")
    gibbs.add_argument("--b", type=float, default=0.01, help="Inverse-gamma rate of the sigma2 prior")
    gibbs.add_argument("--seed", type=int, default=None, help="Random seed")
    gibbs.add_argument("--output", "-o", required=True, help="Chain output (CSV)")
    gibbs.add_argument("--summary", default=None, help="Posterior summary output (CSV)")
    gibbs.add_argument("--trace-plot", default=None, help="Trace plot file")
    gibbs.add_argument("--verbose", action='store_true', help="Show progress")

    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments (sys.argv when argv is None)"""
    return build_parser().parse_args(argv)
