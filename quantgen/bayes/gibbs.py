"""
Gibbs samplers

* Normal model with semi-conjugate priors, written for teaching: every
  conditional is a textbook distribution and the chain is returned whole.
* Bayesian ridge regression of a phenotype on marker dosages (the "BRR"
  model of BGLR) with single-site updates of the marker effects.
"""

from typing import Optional, Sequence, Union, Dict, Any

import numba
import numpy as np
import pandas as pd
from statsmodels.tsa.stattools import acf
from tqdm import tqdm

from ..utils.data_types import GenotypeMatrix


def _check_chain_settings(n_iter: int, burnin: int, thin: int) -> None:
    if n_iter < 1:
        raise ValueError("n_iter must be positive")
    if not 0 <= burnin < n_iter:
        raise ValueError("burnin must lie in [0, n_iter)")
    if thin < 1:
        raise ValueError("thin must be at least 1")


def _finite_response(y) -> np.ndarray:
    y = np.asarray(y, dtype=np.float64).ravel()
    if len(y) < 2:
        raise ValueError("At least two observations are needed")
    if np.any(~np.isfinite(y)):
        raise ValueError("Response contains missing or infinite values")
    return y


def _keep(iteration: int, burnin: int, thin: int) -> bool:
    return iteration >= burnin and (iteration - burnin) % thin == 0


def QG_GibbsNormal(y: Union[np.ndarray, pd.Series, Sequence[float]],
                   n_iter: int = 5000,
                   burnin: int = 1000,
                   thin: int = 1,
                   mu0: float = 0.0,
                   s0_2: float = 1e6,
                   a: float = 0.01,
                   b: float = 0.01,
                   seed: Optional[int] = None,
                   verbose: bool = False) -> pd.DataFrame:
    """Gibbs sampler for y_i ~ N(mu, sigma2)

    Priors: mu ~ N(mu0, s0_2) and sigma2 ~ InvGamma(a, b). The full
    conditionals are

        mu | sigma2, y ~ N(m*, v*),  v* = 1 / (1/s0_2 + n/sigma2),
                                     m* = v* (mu0/s0_2 + sum(y)/sigma2)
        sigma2 | mu, y ~ InvGamma(a + n/2, b + sum((y - mu)^2)/2)

    Args:
        y: Observations
        n_iter: Total number of iterations
        burnin: Iterations discarded at the start of the chain
        thin: Keep one iteration out of thin after burn-in
        mu0, s0_2: Prior mean and variance of mu
        a, b: Shape and rate of the inverse-gamma prior on sigma2
        seed: Random seed
        verbose: Show a progress bar

    Returns:
        DataFrame of retained draws with columns mu and sigma2, indexed by
        iteration
    """
    y = _finite_response(y)
    _check_chain_settings(n_iter, burnin, thin)
    if s0_2 <= 0 or a <= 0 or b <= 0:
        raise ValueError("Prior variance, shape and rate must be positive")

    rng = np.random.default_rng(seed)
    n = len(y)
    sum_y = float(y.sum())

    mu = float(y.mean())
    sigma2 = float(y.var(ddof=1))

    iterations, mus, sigma2s = [], [], []
    for it in tqdm(range(n_iter), desc="Gibbs (Normal)", disable=not verbose):
        v_star = 1.0 / (1.0 / s0_2 + n / sigma2)
        m_star = v_star * (mu0 / s0_2 + sum_y / sigma2)
        mu = rng.normal(m_star, np.sqrt(v_star))

        rate = b + 0.5 * float(np.sum((y - mu) ** 2))
        sigma2 = 1.0 / rng.gamma(a + 0.5 * n, 1.0 / rate)

        if _keep(it, burnin, thin):
            iterations.append(it + 1)
            mus.append(mu)
            sigma2s.append(sigma2)

    chain = pd.DataFrame({'mu': mus, 'sigma2': sigma2s}, index=pd.Index(iterations, name='iteration'))
    if verbose:
        print(f"Kept {len(chain)} draws: posterior mean mu = {chain['mu'].mean():.4f}, "
              f"sigma2 = {chain['sigma2'].mean():.4f}")
    return chain


@numba.jit(nopython=True, cache=True)
def _sweep_effects(Z, ZtZ, effects, residuals, var_e, var_b, normals):
    """Single-site update of every marker effect; residuals are kept in sync"""
    n, p = Z.shape
    for j in range(p):
        if ZtZ[j] <= 0.0:
            continue
        b_old = effects[j]
        zr = 0.0
        for i in range(n):
            zr += Z[i, j] * residuals[i]
        rhs = (zr + ZtZ[j] * b_old) / var_e
        precision = ZtZ[j] / var_e + 1.0 / var_b
        b_new = rhs / precision + normals[j] / np.sqrt(precision)
        shift = b_new - b_old
        for i in range(n):
            residuals[i] -= Z[i, j] * shift
        effects[j] = b_new


def QG_GibbsBRR(y: Union[np.ndarray, pd.Series],
                Z: Union[GenotypeMatrix, np.ndarray],
                n_iter: int = 1500,
                burnin: int = 500,
                thin: int = 5,
                df_b: float = 5.0,
                df_e: float = 5.0,
                r2: float = 0.5,
                seed: Optional[int] = None,
                verbose: bool = False) -> Dict[str, Any]:
    """Bayesian ridge regression y = mu + Z b + e by Gibbs sampling

    b_j ~ N(0, var_b), e ~ N(0, var_e), flat prior on mu, scaled inverse
    chi-square priors on both variances. Prior scales follow the BGLR
    rule: a share r2 of var(y) is expected to come from the markers, so

        S_e = var(y) (1 - r2) (df_e + 2)
        S_b = var(y) r2 / sum_j var(Z_j) (df_b + 2)

    Marker columns are centred (missing dosages imputed with the column
    mean).

    Returns:
        Dictionary with 'mu', 'effects', 'effects_sd', 'fitted', 'var_b',
        'var_e' (posterior means) and 'chain', a DataFrame of retained
        draws of mu, var_b and var_e
    """
    y = _finite_response(y)
    _check_chain_settings(n_iter, burnin, thin)
    if not 0.0 < r2 < 1.0:
        raise ValueError("r2 must lie in (0, 1)")
    if df_b <= 0 or df_e <= 0:
        raise ValueError("Prior degrees of freedom must be positive")

    if isinstance(Z, GenotypeMatrix):
        Zm = Z.to_imputed().astype(np.float64)
    else:
        Zm = GenotypeMatrix(np.asarray(Z)).to_imputed().astype(np.float64)
    n, p = Zm.shape
    if len(y) != n:
        raise ValueError("Z must have one row per observation")

    Zm = Zm - Zm.mean(axis=0)
    Zm = np.asfortranarray(Zm)
    ZtZ = np.sum(Zm * Zm, axis=0)
    sum_var_z = float(np.sum(ZtZ) / (n - 1))
    if sum_var_z <= 0:
        raise ValueError("All markers are monomorphic")

    var_y = float(y.var(ddof=1))
    S_e = var_y * (1.0 - r2) * (df_e + 2.0)
    S_b = var_y * r2 / sum_var_z * (df_b + 2.0)

    rng = np.random.default_rng(seed)
    mu = float(y.mean())
    effects = np.zeros(p)
    residuals = y - mu
    var_e = var_y * (1.0 - r2)
    var_b = var_y * r2 / sum_var_z

    n_kept = 0
    sum_b = np.zeros(p)
    sum_b2 = np.zeros(p)
    sum_mu = 0.0
    rows = []
    for it in tqdm(range(n_iter), desc="Gibbs (BRR)", disable=not verbose):
        residuals += mu
        mu = rng.normal(residuals.mean(), np.sqrt(var_e / n))
        residuals -= mu

        _sweep_effects(Zm, ZtZ, effects, residuals, var_e, var_b, rng.standard_normal(p))

        var_b = (S_b + float(effects @ effects)) / rng.chisquare(df_b + p)
        var_e = (S_e + float(residuals @ residuals)) / rng.chisquare(df_e + n)

        if _keep(it, burnin, thin):
            n_kept += 1
            sum_mu += mu
            sum_b += effects
            sum_b2 += effects ** 2
            rows.append((it + 1, mu, var_b, var_e))

    chain = pd.DataFrame(rows, columns=['iteration', 'mu', 'var_b', 'var_e']).set_index('iteration')
    post_b = sum_b / n_kept
    post_mu = sum_mu / n_kept
    post_sd = np.sqrt(np.maximum(sum_b2 / n_kept - post_b ** 2, 0.0))

    if verbose:
        print(f"BRR: {n_kept} draws kept, var_b = {chain['var_b'].mean():.4g}, "
              f"var_e = {chain['var_e'].mean():.4g}")

    return {
        'mu': post_mu,
        'effects': post_b,
        'effects_sd': post_sd,
        'fitted': post_mu + Zm @ post_b,
        'var_b': float(chain['var_b'].mean()),
        'var_e': float(chain['var_e'].mean()),
        'chain': chain,
    }


def effective_sample_size(x: np.ndarray) -> float:
    """ESS from the initial positive sequence of paired autocorrelations (Geyer 1992)"""
    x = np.asarray(x, dtype=np.float64)
    n = len(x)
    if n < 4 or np.var(x) == 0:
        return float('nan')
    rho = acf(x, nlags=n - 1, fft=True)
    tau = -1.0
    for k in range(0, n - 1, 2):
        pair = rho[k] + rho[k + 1]
        if pair <= 0:
            break
        tau += 2.0 * pair
    return float(n / tau)


def summarize_chain(chain: Union[pd.DataFrame, pd.Series, np.ndarray],
                    probs: Sequence[float] = (0.025, 0.5, 0.975)) -> pd.DataFrame:
    """Posterior summaries of every column of a chain

    Returns:
        DataFrame indexed by parameter with columns mean, sd, one column per
        quantile (e.g. q2.5) and ess
    """
    if isinstance(chain, pd.Series):
        chain = chain.to_frame()
    elif not isinstance(chain, pd.DataFrame):
        arr = np.asarray(chain, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr[:, np.newaxis]
        chain = pd.DataFrame(arr, columns=[f'param{i + 1}' for i in range(arr.shape[1])])
    if len(chain) == 0:
        raise ValueError("Chain is empty")
    for q in probs:
        if not 0.0 <= q <= 1.0:
            raise ValueError("Quantile probabilities must lie in [0, 1]")

    rows = {}
    for name in chain.columns:
        values = chain[name].to_numpy(dtype=np.float64)
        row = {'mean': values.mean(), 'sd': values.std(ddof=1) if len(values) > 1 else float('nan')}
        for q in probs:
            row[f'q{100 * q:g}'] = float(np.quantile(values, q))
        row['ess'] = effective_sample_size(values)
        rows[name] = row
    return pd.DataFrame.from_dict(rows, orient='index')
