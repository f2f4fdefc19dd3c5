from .blup import QG_GBLUP, QG_FitGenotypeModel, solve_mixed_model_equations

__all__ = ['QG_GBLUP', 'QG_FitGenotypeModel', 'solve_mixed_model_equations']
