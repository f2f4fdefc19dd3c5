import numpy as np
import pandas as pd
import pytest

from quantgen.bayes.gibbs import (QG_GibbsBRR, QG_GibbsNormal, effective_sample_size,
                                  summarize_chain)


def test_gibbs_normal_recovers_mean_and_variance() -> None:
    y = np.random.default_rng(0).normal(3.0, 2.0, size=500)

    chain = QG_GibbsNormal(y, n_iter=3000, burnin=500, seed=1)

    assert list(chain.columns) == ['mu', 'sigma2']
    assert chain['mu'].mean() == pytest.approx(y.mean(), abs=0.05)
    assert chain['sigma2'].mean() == pytest.approx(np.var(y, ddof=1), rel=0.1)
    assert chain['sigma2'].min() > 0


def test_gibbs_normal_burnin_and_thinning() -> None:
    y = np.random.default_rng(2).normal(size=50)

    chain = QG_GibbsNormal(y, n_iter=1000, burnin=200, thin=4, seed=3)

    assert len(chain) == 200
    assert chain.index.name == 'iteration'
    assert chain.index[0] == 201
    assert np.all(np.diff(chain.index) == 4)


def test_gibbs_normal_informative_prior_dominates() -> None:
    y = np.random.default_rng(4).normal(0.0, 1.0, size=20)

    chain = QG_GibbsNormal(y, n_iter=500, burnin=100, mu0=10.0, s0_2=1e-8, seed=5)

    assert chain['mu'].mean() == pytest.approx(10.0, abs=1e-3)


def test_gibbs_normal_is_reproducible() -> None:
    y = np.arange(10.0)
    a = QG_GibbsNormal(y, n_iter=200, burnin=50, seed=7)
    b = QG_GibbsNormal(y, n_iter=200, burnin=50, seed=7)
    pd.testing.assert_frame_equal(a, b)


@pytest.mark.parametrize("kwargs", [
    {'burnin': 100, 'n_iter': 100},
    {'thin': 0},
    {'s0_2': 0.0},
    {'a': -1.0},
])
def test_gibbs_normal_rejects_invalid_settings(kwargs) -> None:
    with pytest.raises(ValueError):
        QG_GibbsNormal(np.arange(5.0), **kwargs)


def test_gibbs_normal_rejects_missing_values() -> None:
    with pytest.raises(ValueError, match="missing"):
        QG_GibbsNormal(np.array([1.0, np.nan, 2.0]))


def test_gibbs_brr_fits_polygenic_signal() -> None:
    rng = np.random.default_rng(8)
    n, p = 200, 60
    Z = rng.integers(0, 3, size=(n, p)).astype(np.int8)
    beta = rng.normal(0.0, 0.5, size=p)
    g = (Z - Z.mean(axis=0)) @ beta
    y = 5.0 + g + rng.normal(0.0, np.std(g), size=n)

    res = QG_GibbsBRR(y, Z, n_iter=800, burnin=300, thin=5, seed=9)

    assert res['effects'].shape == (p,)
    assert np.all(res['effects_sd'] >= 0)
    assert list(res['chain'].columns) == ['mu', 'var_b', 'var_e']
    assert len(res['chain']) == 100
    assert res['mu'] == pytest.approx(y.mean(), abs=0.5)
    assert np.corrcoef(res['fitted'], g)[0, 1] > 0.7
    assert np.corrcoef(res['effects'], beta)[0, 1] > 0.5
    assert res['var_e'] > 0 and res['var_b'] > 0


def test_gibbs_brr_validates_input() -> None:
    with pytest.raises(ValueError):
        QG_GibbsBRR(np.arange(4.0), np.ones((3, 2)))
    with pytest.raises(ValueError, match="monomorphic"):
        QG_GibbsBRR(np.arange(4.0), np.ones((4, 2)))
    with pytest.raises(ValueError):
        QG_GibbsBRR(np.arange(4.0), np.eye(4), r2=1.0)


def test_effective_sample_size_reflects_autocorrelation() -> None:
    rng = np.random.default_rng(10)
    n = 4000
    iid = rng.normal(size=n)
    ar = np.empty(n)
    ar[0] = 0.0
    for t in range(1, n):
        ar[t] = 0.9 * ar[t - 1] + rng.normal()

    assert 0.5 * n < effective_sample_size(iid) < 1.5 * n
    assert effective_sample_size(ar) < 0.2 * n
    assert np.isnan(effective_sample_size(np.ones(10)))
    assert np.isnan(effective_sample_size(np.arange(3.0)))


def test_summarize_chain_columns() -> None:
    chain = pd.DataFrame({'mu': np.linspace(0, 1, 101), 'sigma2': np.full(101, 2.0)})

    summary = summarize_chain(chain)

    assert list(summary.columns) == ['mean', 'sd', 'q2.5', 'q50', 'q97.5', 'ess']
    assert list(summary.index) == ['mu', 'sigma2']
    assert summary.loc['mu', 'mean'] == pytest.approx(0.5)
    assert summary.loc['mu', 'q50'] == pytest.approx(0.5)
    assert summary.loc['sigma2', 'sd'] == 0.0
    assert np.isnan(summary.loc['sigma2', 'ess'])

    arr_summary = summarize_chain(np.arange(10.0))
    assert list(arr_summary.index) == ['param1']
    with pytest.raises(ValueError):
        summarize_chain(chain, probs=(1.5,))
