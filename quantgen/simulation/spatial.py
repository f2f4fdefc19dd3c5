"""
Spatial field simulation

Separable first-order autoregressive process on a rows x columns grid
(Martin, 1996, Biometrics) and a field-trial generator placing panel
entries and repeated checks on such a grid, year after year.
"""

from typing import Optional, Sequence, Union, Dict, Any

import numba
import numpy as np
import pandas as pd


@numba.jit(nopython=True, cache=True)
def _ar1xar1_recursion(epsilons, rho_r, rho_c, start_scale, row_scale, col_scale):
    """Fill every (R, C) slice of epsilons with the AR1 x AR1 recursion"""
    R, C, n = epsilons.shape
    out = np.empty((R, C, n))
    for k in range(n):
        out[0, 0, k] = start_scale * epsilons[0, 0, k]
        for j in range(1, C):
            out[0, j, k] = rho_c * out[0, j - 1, k] + col_scale * epsilons[0, j, k]
        for i in range(1, R):
            out[i, 0, k] = rho_r * out[i - 1, 0, k] + row_scale * epsilons[i, 0, k]
        for i in range(1, R):
            for j in range(1, C):
                out[i, j, k] = (rho_r * out[i - 1, j, k]
                                + rho_c * out[i, j - 1, k]
                                - rho_r * rho_c * out[i - 1, j - 1, k]
                                + epsilons[i, j, k])
    return out


def QG_SimulateAR1xAR1(n: int = 1,
                       R: int = 2,
                       C: int = 2,
                       rho_r: float = 0.0,
                       rho_c: float = 0.0,
                       sigma_x2: float = 1.0,
                       sigma_e2: float = 1.0,
                       seed: Optional[int] = None) -> np.ndarray:
    """Draw n realisations of an AR1 x AR1 spatial process

    Innovations are N(0, sigma_e2). The first row and column are scaled so
    that their marginal variance is sigma_x2; inner cells follow

        X[i, j] = rho_r X[i-1, j] + rho_c X[i, j-1] - rho_r rho_c X[i-1, j-1] + e[i, j]

    Args:
        n: Number of realisations
        R: Number of rows (> 1)
        C: Number of columns (> 1)
        rho_r: Autocorrelation between adjacent rows, |rho_r| <= 1
        rho_c: Autocorrelation between adjacent columns, |rho_c| <= 1
        sigma_x2: Variance of the process on the grid borders
        sigma_e2: Innovation variance (> 0)
        seed: Random seed

    Returns:
        Array of shape (R, C, n)
    """
    if n < 1:
        raise ValueError("n must be at least 1")
    if R <= 1 or C <= 1:
        raise ValueError("The grid needs more than one row and more than one column")
    if abs(rho_r) > 1 or abs(rho_c) > 1:
        raise ValueError("Autocorrelations must lie in [-1, 1]")
    if sigma_x2 < 0:
        raise ValueError("sigma_x2 must be non-negative")
    if sigma_e2 <= 0:
        raise ValueError("sigma_e2 must be positive")

    rng = np.random.default_rng(seed)
    epsilons = rng.normal(0.0, np.sqrt(sigma_e2), size=(R, C, n))

    ratio = sigma_x2 / sigma_e2
    return _ar1xar1_recursion(epsilons,
                              float(rho_r), float(rho_c),
                              np.sqrt(ratio),
                              np.sqrt((1.0 - rho_r ** 2) * ratio),
                              np.sqrt((1.0 - rho_c ** 2) * ratio))


def _as_genotype_series(genotype_values: Union[pd.Series, Dict[str, float], np.ndarray, Sequence[float]]) -> pd.Series:
    if isinstance(genotype_values, pd.Series):
        values = genotype_values.copy()
    elif isinstance(genotype_values, dict):
        values = pd.Series(genotype_values)
    else:
        arr = np.asarray(genotype_values, dtype=np.float64)
        values = pd.Series(arr, index=[f'ID{i + 1:04d}' for i in range(len(arr))])
    values.index = values.index.astype(str)
    if len(values) == 0:
        raise ValueError("At least one genotype is needed")
    return values.astype(np.float64)


def QG_SimulateFieldTrial(genotype_values: Union[pd.Series, Dict[str, float], np.ndarray],
                          n_rows: int = 20,
                          n_cols: int = 20,
                          years: Sequence[Any] = (2021,),
                          control_values: Optional[Dict[str, float]] = None,
                          control_share: float = 0.1,
                          n_blocks: int = 2,
                          mu: float = 50.0,
                          year_sd: float = 2.0,
                          rho_r: float = 0.7,
                          rho_c: float = 0.7,
                          sigma_spatial2: float = 4.0,
                          sigma_noise2: float = 1.0,
                          response: str = 'response',
                          seed: Optional[int] = None,
                          verbose: bool = False) -> pd.DataFrame:
    """Simulate a multi-year field trial with spatial heterogeneity

    Each year the rows x cols plots receive the check varieties on a random
    subset of plots (control_share of the grid) and the panel entries on the
    others, entries being replicated when the grid has room for it. The
    response is

        mu + year effect + genotypic value + AR1 x AR1 field + noise

    with a stationary field of variance sigma_spatial2.

    Args:
        genotype_values: Genotypic values of the panel, indexed by name
        n_rows, n_cols: Field dimensions
        years: Year labels
        control_values: Genotypic values of the checks (default two checks, 0 and 1)
        control_share: Share of plots sown with checks
        n_blocks: Number of blocks, made of contiguous column bands
        mu: Grand mean
        year_sd: Standard deviation of year effects
        rho_r, rho_c: Row and column autocorrelation of the field
        sigma_spatial2: Variance of the spatial field
        sigma_noise2: Plot error variance
        response: Name of the response column
        seed: Random seed
        verbose: Print a summary per year

    Returns:
        DataFrame with columns geno, control, rank, location, year, block,
        <response> (one row per plot and year); rank is the row and
        location the column of the plot
    """
    if abs(rho_r) >= 1 or abs(rho_c) >= 1:
        raise ValueError("Field autocorrelations must lie in (-1, 1)")
    if not 0.0 < control_share < 1.0:
        raise ValueError("control_share must lie in (0, 1)")
    if n_blocks < 1 or n_blocks > n_cols:
        raise ValueError("n_blocks must lie in [1, n_cols]")
    if sigma_spatial2 < 0 or sigma_noise2 < 0:
        raise ValueError("Variances must be non-negative")

    entries = _as_genotype_series(genotype_values)
    controls = pd.Series(control_values if control_values is not None else {'CTL1': 0.0, 'CTL2': 1.0},
                         dtype=np.float64)
    controls.index = controls.index.astype(str)
    overlap = set(entries.index) & set(controls.index)
    if overlap:
        raise ValueError(f"Checks and entries share names: {sorted(overlap)}")

    rng = np.random.default_rng(seed)
    n_plots = n_rows * n_cols
    n_ctl_plots = max(1, int(round(control_share * n_plots)))
    if n_ctl_plots >= n_plots:
        raise ValueError("No plot left for the panel entries")

    rows = np.repeat(np.arange(1, n_rows + 1), n_cols)
    cols = np.tile(np.arange(1, n_cols + 1), n_rows)
    blocks = (cols - 1) * n_blocks // n_cols + 1

    # stationary field: innovations scaled by (1 - rho_r^2)(1 - rho_c^2)
    innovation = (1.0 - rho_r ** 2) * (1.0 - rho_c ** 2) * sigma_spatial2

    tables = []
    for year in years:
        year_effect = rng.normal(0.0, year_sd) if year_sd > 0 else 0.0
        if sigma_spatial2 > 0:
            field = QG_SimulateAR1xAR1(1, n_rows, n_cols, rho_r, rho_c,
                                       sigma_spatial2, innovation,
                                       seed=int(rng.integers(2 ** 31 - 1)))[:, :, 0].ravel()
        else:
            field = np.zeros(n_plots)

        plot_order = rng.permutation(n_plots)
        ctl_plots = plot_order[:n_ctl_plots]
        entry_plots = plot_order[n_ctl_plots:]

        geno = np.empty(n_plots, dtype=object)
        geno[ctl_plots] = np.resize(controls.index.to_numpy(), n_ctl_plots)
        geno[entry_plots] = np.resize(rng.permutation(entries.index.to_numpy()), len(entry_plots))

        is_control = np.zeros(n_plots, dtype=bool)
        is_control[ctl_plots] = True

        g_values = np.where(is_control,
                            controls.reindex(geno).to_numpy(),
                            entries.reindex(geno).to_numpy())
        noise = rng.normal(0.0, np.sqrt(sigma_noise2), size=n_plots) if sigma_noise2 > 0 else 0.0

        tables.append(pd.DataFrame({
            'geno': geno.astype(str),
            'control': is_control,
            'rank': rows,
            'location': cols,
            'year': year,
            'block': blocks,
            response: mu + year_effect + g_values + field + noise,
        }))

        if verbose:
            print(f"Year {year}: {n_ctl_plots} check plots, {len(entry_plots)} entry plots "
                  f"({len(entries)} entries), year effect {year_effect:+.2f}")

    return pd.concat(tables, ignore_index=True)
