"""
Association testing methods for GWAS analysis
"""

from .glm import QG_GLM
from .mlm import QG_MLM

__all__ = ['QG_GLM', 'QG_MLM']
