"""
quantgen: quantitative genetics toolkit

Simulation of genotypes, phenotypes and field trials, genomic relationship
matrices, GWAS (GLM and MLM), BLUP, correction of spatial heterogeneity in
field trials by kriging, and Gibbs samplers.
"""

__version__ = "0.1.0"
__author__ = "quantgen Development Team"

from .simulation.genotypes import QG_SimulateGenotypes, QG_SimulateGeneticMap
from .simulation.phenotypes import QG_SimulatePhenotypes, QG_SimulateAnimalModel
from .simulation.spatial import QG_SimulateAR1xAR1, QG_SimulateFieldTrial
from .matrix.kinship import QG_K_VanRaden
from .association.glm import QG_GLM
from .association.mlm import QG_MLM
from .models.blup import QG_GBLUP, QG_FitGenotypeModel
from .bayes.gibbs import QG_GibbsNormal, QG_GibbsBRR
from .spatial.variogram import QG_Variogram, QG_FitVariogram
from .spatial.kriging import QG_Krige, QG_KrigeCV
from .spatial.correction import QG_CorrectSpatialHeterogeneity
from .visualization.manhattan import QG_Report

__all__ = [
    'QG_SimulateGenotypes',
    'QG_SimulateGeneticMap',
    'QG_SimulatePhenotypes',
    'QG_SimulateAnimalModel',
    'QG_SimulateAR1xAR1',
    'QG_SimulateFieldTrial',
    'QG_K_VanRaden',
    'QG_GLM',
    'QG_MLM',
    'QG_GBLUP',
    'QG_FitGenotypeModel',
    'QG_GibbsNormal',
    'QG_GibbsBRR',
    'QG_Variogram',
    'QG_FitVariogram',
    'QG_Krige',
    'QG_KrigeCV',
    'QG_CorrectSpatialHeterogeneity',
    'QG_Report',
]
