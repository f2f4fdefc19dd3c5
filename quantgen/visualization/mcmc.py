"""
Trace and posterior density plots for MCMC chains
"""

from typing import Optional, Sequence

import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns


def plot_traces(chain: pd.DataFrame,
                params: Optional[Sequence[str]] = None,
                title: str = "",
                output_file: Optional[str] = None) -> plt.Figure:
    """One row per parameter: trace on the left, posterior density on the right"""
    params = list(params) if params is not None else list(chain.columns)
    missing = [p for p in params if p not in chain.columns]
    if missing:
        raise ValueError(f"Parameters not in chain: {missing}")
    if not params:
        raise ValueError("No parameter to plot")

    fig, axes = plt.subplots(len(params), 2, figsize=(10, 2.5 * len(params)), squeeze=False)
    for i, name in enumerate(params):
        values = chain[name]
        axes[i, 0].plot(chain.index, values, linewidth=0.6)
        axes[i, 0].set_ylabel(name)
        axes[i, 0].axhline(values.mean(), color='red', linestyle='--', linewidth=0.8)
        sns.histplot(values, kde=True, stat='density', ax=axes[i, 1], color='grey')
        axes[i, 1].set_xlabel(name)
    axes[-1, 0].set_xlabel('iteration')
    if title:
        fig.suptitle(title)
    plt.tight_layout()
    if output_file is not None:
        fig.savefig(output_file)
    return fig
