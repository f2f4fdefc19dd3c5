from .gibbs import QG_GibbsNormal, QG_GibbsBRR, summarize_chain

__all__ = ['QG_GibbsNormal', 'QG_GibbsBRR', 'summarize_chain']
