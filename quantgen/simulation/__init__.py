"""
Simulation of genotypes, phenotypes and field trials
"""

from .genotypes import QG_SimulateGenotypes, QG_SimulateGeneticMap, create_simulation_config
from .phenotypes import QG_SimulatePhenotypes, QG_SimulateAnimalModel
from .spatial import QG_SimulateAR1xAR1, QG_SimulateFieldTrial

__all__ = ['QG_SimulateGenotypes', 'QG_SimulateGeneticMap', 'create_simulation_config',
           'QG_SimulatePhenotypes', 'QG_SimulateAnimalModel',
           'QG_SimulateAR1xAR1', 'QG_SimulateFieldTrial']
