"""
quantgen command line entry point
"""

import sys
from pathlib import Path
from typing import Optional, Sequence

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .utils import parse_args, normalize_outputs, normalize_methods, split_list
from ..association.glm import QG_GLM
from ..association.mlm import QG_MLM
from ..bayes.gibbs import QG_GibbsNormal, summarize_chain
from ..data.loaders import (load_phenotype_file, load_genotype_file, load_map_file,
                            load_field_trial_file, match_individuals)
from ..matrix.kinship import QG_K_VanRaden
from ..simulation.genotypes import QG_SimulateGenotypes
from ..simulation.phenotypes import QG_SimulatePhenotypes
from ..simulation.spatial import QG_SimulateFieldTrial
from ..spatial.correction import QG_CorrectSpatialHeterogeneity
from ..utils.data_types import GenotypeMap, MISSING_GENOTYPE
from ..utils.stats import bonferroni_correction
from ..visualization.manhattan import create_manhattan_plot, create_qq_plot
from ..visualization.mcmc import plot_traces


def run_simulate(args) -> None:
    outdir = Path(args.outputdir)
    outdir.mkdir(parents=True, exist_ok=True)
    populations = [int(s) for s in split_list(args.populations)] if args.populations else None

    geno, ids, geno_map, _ = QG_SimulateGenotypes(
        n_individuals=args.n_individuals, n_markers=args.n_markers,
        n_chromosomes=args.n_chromosomes, population_sizes=populations, fst=args.fst,
        inbreeding_f=args.inbreeding, missing_rate=args.missing_rate,
        seed=args.seed, verbose=True)
    pheno = QG_SimulatePhenotypes(geno, n_qtns=args.n_qtns, h2=args.h2, ids=ids,
                                  seed=None if args.seed is None else args.seed + 1)

    dosages = geno.to_numpy().astype(np.float64)
    dosages[dosages == MISSING_GENOTYPE] = np.nan
    geno_df = pd.DataFrame(dosages, columns=geno_map.snp_ids)
    geno_df.insert(0, 'ID', ids)
    geno_df.to_csv(outdir / 'genotypes.csv', index=False)
    geno_map.to_dataframe().to_csv(outdir / 'map.csv', index=False)
    pheno['phenotypes'].to_csv(outdir / 'phenotypes.csv', index=False)

    qtns = geno_map.to_dataframe().iloc[pheno['qtn_indices']].copy()
    qtns['effect'] = pheno['qtn_effects']
    qtns.to_csv(outdir / 'qtns.csv', index=False)
    written = ['genotypes.csv', 'map.csv', 'phenotypes.csv', 'qtns.csv']

    if args.field_trial:
        values = pd.Series(pheno['genetic_values'], index=ids)
        trial = QG_SimulateFieldTrial(values, n_rows=args.n_rows, n_cols=args.n_cols,
                                      years=split_list(args.years),
                                      seed=None if args.seed is None else args.seed + 2,
                                      verbose=True)
        trial.to_csv(outdir / 'field_trial.csv', index=False)
        written.append('field_trial.csv')

    print(f"Wrote {', '.join(written)} to {outdir}")


def run_gwas(args) -> None:
    outdir = Path(args.outputdir)
    outdir.mkdir(parents=True, exist_ok=True)
    methods = normalize_methods(args.methods)
    outputs = normalize_outputs(args.outputs)

    phe = load_phenotype_file(args.phenotype, trait_columns=split_list(args.traits),
                              id_column=args.phenotype_id_column, verbose=True)
    geno, ids, markers = load_genotype_file(args.genotype, verbose=True)
    if args.map:
        geno_map = load_map_file(args.map)
        if geno_map.n_markers != geno.n_markers:
            raise ValueError("Map and genotype file describe different numbers of markers")
    else:
        geno_map = GenotypeMap(pd.DataFrame({'SNP': markers, 'CHROM': '1',
                                             'POS': np.arange(1, len(markers) + 1)}))

    K = QG_K_VanRaden(geno, verbose=True) if 'MLM' in methods else None
    traits = [c for c in phe.columns if c != 'ID']

    for trait in traits:
        trait_df = phe[['ID', trait]].dropna()
        matched, idx, summary = match_individuals(trait_df, ids)
        print(f"Trait {trait}: {summary['n_common']} individuals with genotypes and phenotypes")
        y = matched[trait].to_numpy(dtype=np.float64)
        g = geno.subset_individuals(idx)

        for method in methods:
            if method == 'GLM':
                res = QG_GLM(y, g, snp_map=geno_map, verbose=True)
            else:
                K_sub = K.to_numpy()[np.ix_(idx, idx)]
                res = QG_MLM(y, g, K=K_sub, cpu=args.cpu, snp_map=geno_map, verbose=True)

            table = res.to_dataframe()
            _, threshold = bonferroni_correction(res.pvalues, args.alpha)
            prefix = outdir / f"{trait}_{method}"
            if 'all_marker_pvalues' in outputs:
                table.to_csv(f"{prefix}_all_marker_pvalues.csv", index=False)
            if 'significant_marker_pvalues' in outputs:
                table[table['P-value'] < threshold].to_csv(f"{prefix}_significant_marker_pvalues.csv", index=False)
            if 'manhattan' in outputs:
                fig = create_manhattan_plot(res.pvalues, map_data=geno_map, threshold=threshold,
                                            title=f"{trait} - {method}")
                fig.savefig(f"{prefix}_manhattan.png", dpi=150, bbox_inches='tight')
                plt.close(fig)
            if 'qq' in outputs:
                fig = create_qq_plot(res.pvalues, title=f"{trait} - {method}")
                fig.savefig(f"{prefix}_qq.png", dpi=150, bbox_inches='tight')
                plt.close(fig)


def run_spatial(args) -> None:
    dat = load_field_trial_file(args.input, response=args.response, verbose=args.verbose > 0)
    out = QG_CorrectSpatialHeterogeneity(
        dat, args.response,
        fix_eff=split_list(args.fix_eff),
        min_ctls_per_year=args.min_ctls_per_year,
        cressie=not args.classical,
        vgm_model=split_list(args.vgm_models),
        nb_folds=args.nb_folds,
        out_prefix=args.out_prefix,
        verbose=args.verbose,
        n_jobs=args.n_jobs,
        seed=args.seed)
    out.to_csv(args.output, index=False)
    if args.verbose > 0:
        print(f"Wrote {args.output}")


def run_gibbs(args) -> None:
    phe = load_phenotype_file(args.phenotype, trait_columns=[args.trait])
    y = phe[args.trait].dropna().to_numpy()
    chain = QG_GibbsNormal(y, n_iter=args.n_iter, burnin=args.burnin, thin=args.thin,
                           mu0=args.mu0, s0_2=args.s0_2, a=args.a, b=args.b,
                           seed=args.seed, verbose=args.verbose)
    chain.to_csv(args.output)

    summary = summarize_chain(chain)
    print(summary.to_string(float_format=lambda v: f"{v:.4g}"))
    if args.summary:
        summary.to_csv(args.summary)
    if args.trace_plot:
        fig = plot_traces(chain, title=f"Normal model for {args.trait}", output_file=args.trace_plot)
        plt.close(fig)


COMMANDS = {
    'simulate': run_simulate,
    'gwas': run_gwas,
    'spatial': run_spatial,
    'gibbs': run_gibbs,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        COMMANDS[args.command](args)
    except (ValueError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
