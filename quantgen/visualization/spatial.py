"""
Plots for field trials and their spatial analysis
"""

from typing import Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from ..spatial.variogram import VariogramModel


def plot_variogram_fit(vg: pd.DataFrame,
                       model: Optional[VariogramModel] = None,
                       title: str = "",
                       output_file: Optional[str] = None,
                       figsize: Tuple[float, float] = (8.27, 5.0)) -> plt.Figure:
    """Experimental semivariances with the fitted model curve

    Args:
        vg: Experimental variogram (np, dist, gamma)
        model: Fitted model drawn over the lag range
        title: Figure title
        output_file: Save the figure there (the format follows the extension)
        figsize: Figure size, A4 width by default

    Returns:
        matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(vg['dist'], vg['gamma'], color='blue', s=18, zorder=3)
    if 'np' in vg.columns and len(vg) < 40:
        for _, row in vg.iterrows():
            ax.annotate(str(int(row['np'])), (row['dist'], row['gamma']),
                        textcoords='offset points', xytext=(3, 3), fontsize=7, color='grey')
    if model is not None:
        h = np.linspace(0.0, float(vg['dist'].max()) * 1.05, 200)
        ax.plot(h[1:], model.variogram(h[1:]), color='blue', label=repr(model))
        ax.legend(loc='lower right', fontsize=7)
    ax.set_xlim(left=0)
    ax.set_ylim(bottom=0)
    ax.set_xlabel('distance')
    ax.set_ylabel('semivariance')
    if title:
        ax.set_title(title)
    plt.tight_layout()
    if output_file is not None:
        fig.savefig(output_file)
    return fig


def plot_field_heatmap(data: pd.DataFrame,
                       value: str,
                       row: str = 'rank',
                       col: str = 'location',
                       title: str = "",
                       cmap: str = 'viridis',
                       output_file: Optional[str] = None,
                       figsize: Tuple[float, float] = (8, 6)) -> plt.Figure:
    """Heatmap of one value per plot laid out on the field grid

    Plots sharing a position are averaged; positions without a plot stay blank.
    """
    for column in (value, row, col):
        if column not in data.columns:
            raise ValueError(f"Column '{column}' not found in data")
    grid = data.pivot_table(index=row, columns=col, values=value, aggfunc='mean')

    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(grid, cmap=cmap, ax=ax, cbar_kws={'label': value})
    ax.set_xlabel(col)
    ax.set_ylabel(row)
    if title:
        ax.set_title(title)
    plt.tight_layout()
    if output_file is not None:
        fig.savefig(output_file)
    return fig


def plot_cv_residuals(coords: np.ndarray,
                      residuals: np.ndarray,
                      title: str = "",
                      output_file: Optional[str] = None,
                      figsize: Tuple[float, float] = (8, 6)) -> plt.Figure:
    """Bubble plot of cross-validation residuals at the control locations"""
    coords = np.asarray(coords, dtype=np.float64)
    residuals = np.asarray(residuals, dtype=np.float64)
    frame = pd.DataFrame({
        'rank': coords[:, 0],
        'location': coords[:, 1],
        'residual': residuals,
        'sign': np.where(residuals >= 0, 'positive', 'negative'),
        'size': np.abs(residuals),
    })

    fig, ax = plt.subplots(figsize=figsize)
    sns.scatterplot(data=frame, x='rank', y='location', hue='sign', size='size',
                    palette={'positive': 'tab:green', 'negative': 'tab:red'},
                    sizes=(10, 200), ax=ax)
    ax.set_xlabel('ranks')
    ax.set_ylabel('locations')
    if title:
        ax.set_title(title)
    plt.tight_layout()
    if output_file is not None:
        fig.savefig(output_file)
    return fig
