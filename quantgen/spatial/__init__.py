"""
Geostatistics for field trials: variograms, kriging and spatial correction
"""

from .variogram import QG_Variogram, QG_FitVariogram, VariogramModel
from .kriging import QG_Krige, QG_KrigeCV, cross_validation_statistics
from .correction import QG_CorrectSpatialHeterogeneity

__all__ = ['QG_Variogram', 'QG_FitVariogram', 'VariogramModel',
           'QG_Krige', 'QG_KrigeCV', 'cross_validation_statistics',
           'QG_CorrectSpatialHeterogeneity']
