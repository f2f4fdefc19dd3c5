"""
Correction of spatial heterogeneity in field trials

Check varieties (controls) repeated across the field sample its spatial
trend. For every year, the control response is modelled by a variogram,
checked by kriging cross-validation, then kriged at every plot; subtracting
that prediction from the observed response removes the field effect.
"""

import warnings
from typing import Optional, Sequence, Union, Dict, Any, List, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from joblib import Parallel, delayed

from .variogram import QG_Variogram, QG_FitVariogram, VariogramModel
from .kriging import QG_Krige, QG_KrigeCV, cross_validation_statistics
from ..data.loaders import as_bool

REQUIRED_COLUMNS = ('geno', 'control', 'rank', 'location', 'year')


def _clean_fixed_effects(fix_eff: Optional[Sequence[str]], columns) -> List[str]:
    if fix_eff is None:
        return []
    if isinstance(fix_eff, str):
        fix_eff = [fix_eff]
    cleaned = [f for f in fix_eff if f != '1']
    if 'year' in cleaned:
        warnings.warn("'year' is removed from fix_eff")
        cleaned = [f for f in cleaned if f != 'year']
    for f in cleaned:
        if f not in columns:
            raise ValueError(f"Fixed effect '{f}' is not a column of dat")
    return cleaned


def _numeric_column(series: pd.Series, name: str) -> pd.Series:
    if isinstance(series.dtype, pd.CategoricalDtype):
        series = series.astype(object)
    if pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series):
        return series.astype(np.float64)
    converted = pd.to_numeric(series, errors='coerce')
    if converted[series.notna()].isna().any():
        raise ValueError(f"dat['{name}'] should hold numbers")
    return converted.astype(np.float64)


def _year_levels(years: pd.Series) -> list:
    if isinstance(years.dtype, pd.CategoricalDtype):
        return [y for y in years.cat.categories if (years == y).any()]
    return sorted(years.dropna().unique(), key=lambda y: (str(type(y)), y))


def _fixed_effect_design(frame: pd.DataFrame, fix_eff: List[str]) -> pd.DataFrame:
    """Numeric fixed effects as they are, the others as treatment-coded dummies"""
    parts = []
    for f in fix_eff:
        col = frame[f]
        if pd.api.types.is_numeric_dtype(col) and not pd.api.types.is_bool_dtype(col):
            parts.append(col.astype(np.float64).rename(f))
        else:
            dummies = pd.get_dummies(col.astype('category'), prefix=f, drop_first=True, dtype=np.float64)
            dummies.loc[col.isna()] = np.nan
            parts.append(dummies)
    if not parts:
        return pd.DataFrame(index=frame.index)
    return pd.concat(parts, axis=1)


def trend_formula(response: str, fix_eff: List[str]) -> str:
    return " + ".join([f"{response} ~ 1"] + fix_eff)


def _correct_year(year: Any,
                  year_dat: pd.DataFrame,
                  response: str,
                  fix_eff: List[str],
                  min_ctls_per_year: int,
                  cressie: bool,
                  vgm_model: Sequence[str],
                  nb_folds: int,
                  seed: Optional[int],
                  verbose: int) -> Dict[str, Any]:
    """Variogram, cross-validation and kriging for one year"""
    design = _fixed_effect_design(year_dat, fix_eff)
    keep_cols = ['geno', 'rank', 'location', response]
    complete = (year_dat['control']
                & year_dat[keep_cols].notna().all(axis=1)
                & design.notna().all(axis=1))
    ctl = year_dat.loc[complete, keep_cols]
    ctl_design = design.loc[complete]

    if len(ctl) <= min_ctls_per_year:
        return {'year': year, 'skipped': True, 'n_controls': len(ctl)}

    if ctl.duplicated(subset=['rank', 'location']).any():
        raise ValueError(f"In {year}, kriging does not work with duplicated control locations")
    if year_dat.duplicated(subset=['rank', 'location']).any():
        raise ValueError(f"In {year}, several plots share the same rank and location")

    # dummies absent from the controls cannot be estimated
    constant = [c for c in design.columns if ctl_design[c].nunique() <= 1]
    if constant and verbose > 1:
        print(f"  dropping trend columns constant among controls: {constant}")
    design = design.drop(columns=constant)
    trend = list(design.columns)

    coords = ctl[['rank', 'location']].to_numpy(dtype=np.float64)
    values = ctl[response].to_numpy(dtype=np.float64)
    X = ctl_design[trend].to_numpy(dtype=np.float64) if trend else None

    formula = trend_formula(response, fix_eff)
    if verbose > 0:
        print(f"compute experimental variogram on control data in {year}...")
        print(f"kriging formula in {year}:\n{formula}")

    cloud = QG_Variogram(coords, values, X=X, cloud=True, cressie=cressie)
    vg = QG_Variogram(coords, values, X=X, cloud=False, cressie=cressie)
    if verbose > 1:
        print(f"  variogram cloud: {len(cloud)} pairs")
        print(vg.to_string(index=False))

    if verbose > 0:
        print(f"fit variogram model on control data in {year}...")
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', UserWarning)
        model = QG_FitVariogram(vg, models=vgm_model, fit_kappa=True, verbose=verbose > 1)
    if verbose > 0:
        print(model.to_dataframe().to_string(index=False))
        print(f"sum of squared errors: {model.sserr:.3f}")

    if verbose > 0:
        print(f"assess prediction accuracy by {nb_folds}-fold cross-validation in {year}...")
    cv = QG_KrigeCV(coords, values, model, X=X, nfold=nb_folds, seed=seed)
    cv.insert(0, 'location', coords[:, 1])
    cv.insert(0, 'rank', coords[:, 0])
    cv_stats = cross_validation_statistics(cv)
    if verbose > 0:
        print("  " + "  ".join(f"{k}={v:.4g}" for k, v in cv_stats.items()))

    if verbose > 0:
        print(f"prediction (kriging) of control data on all plots in {year}...")
    complete = design.notna().all(axis=1) & year_dat[['rank', 'location']].notna().all(axis=1)
    targets = year_dat.loc[complete]
    kriged = QG_Krige(coords, values,
                      targets[['rank', 'location']].to_numpy(dtype=np.float64), model,
                      X=X, new_X=design.loc[complete, trend].to_numpy(dtype=np.float64) if trend else None)
    prediction = pd.Series(np.nan, index=year_dat.index)
    prediction[targets.index] = kriged['var1.pred'].to_numpy()
    kriging_variance = pd.Series(np.nan, index=year_dat.index)
    kriging_variance[targets.index] = kriged['var1.var'].to_numpy()

    return {
        'year': year,
        'skipped': False,
        'n_controls': len(ctl),
        'formula': formula,
        'cloud': cloud,
        'variogram': vg,
        'model': model,
        'cv': cv,
        'cv_stats': cv_stats,
        'prediction': prediction,
        'kriging_variance': kriging_variance,
    }


def _cv_stats_table(results: List[Dict[str, Any]]) -> pd.DataFrame:
    rows = []
    for res in results:
        if res['skipped']:
            continue
        model: VariogramModel = res['model']
        row = {'year': res['year'], 'n_controls': res['n_controls'], 'model': model.model,
               'nugget': model.nugget, 'psill': model.psill, 'range': model.range,
               'kappa': model.kappa, 'SSErr': model.sserr}
        row.update(res['cv_stats'])
        rows.append(row)
    return pd.DataFrame(rows)


def _diagnostic_plots(res: Dict[str, Any], plots: pd.DataFrame, response: str,
                      out_prefix: Optional[str], verbose: int) -> Tuple[List[str], list]:
    """Variogram fit, plus CV residuals and kriged field at verbosity 2

    Figures go to <out_prefix>_<plot>_<year>.pdf when out_prefix is given;
    otherwise they are left open and returned.
    """
    from ..visualization.spatial import plot_variogram_fit, plot_cv_residuals, plot_field_heatmap

    year = res['year']
    figures = []
    if out_prefix is not None or verbose > 1:
        figures.append(('plot-vg-ctl-fit', plot_variogram_fit(
            res['variogram'], res['model'],
            title=f"{response}: fit of variogram model ({res['model'].model}) on controls in {year}")))
    if verbose > 1:
        figures.append(('plot-cv-res-ctl', plot_cv_residuals(
            res['cv'][['rank', 'location']].to_numpy(), res['cv']['residual'].to_numpy(),
            title=f"Cross-validation residuals of the controls in {year}")))
        figures.append(('plot-krig-pred', plot_field_heatmap(
            plots, 'prediction', title=f"{response}: kriged control response in {year}")))

    if out_prefix is None:
        return [], [fig for _, fig in figures]
    files = []
    for name, fig in figures:
        files.append(f"{out_prefix}_{name}_{year}.pdf")
        fig.savefig(files[-1])
        plt.close(fig)
    return files, []


def QG_CorrectSpatialHeterogeneity(dat: pd.DataFrame,
                                   response: str,
                                   fix_eff: Optional[Sequence[str]] = None,
                                   min_ctls_per_year: int = 10,
                                   cressie: bool = True,
                                   vgm_model: Union[str, Sequence[str]] = ("Exp", "Sph", "Gau", "Ste"),
                                   nb_folds: int = 5,
                                   out_prefix: Optional[str] = None,
                                   verbose: int = 1,
                                   n_jobs: int = 1,
                                   seed: Optional[int] = None,
                                   return_details: bool = False) -> Union[pd.DataFrame, Tuple[pd.DataFrame, Dict[Any, Dict]]]:
    """Correct spatial heterogeneity of a field trial by kriging the controls

    For each year, predicted responses that the controls would have had on
    every plot are subtracted from the observed responses.

    Args:
        dat: Trial table with columns geno, control (bool), rank, location,
            year and <response>
        response: Column to correct
        fix_eff: Columns entering the kriging trend (e.g. ["block"]);
            "1" is ignored and "year" is removed with a warning
        min_ctls_per_year: Years with this many complete controls or fewer
            are skipped
        cressie: Use Cressie's robust variogram estimator instead of the
            method of moments
        vgm_model: Candidate variogram model(s); the smallest SSErr wins
        nb_folds: Number of folds of the kriging cross-validation
        out_prefix: If given, save variogram-fit plots
            (<out_prefix>_plot-vg-ctl-fit_<year>.pdf) and the
            cross-validation statistics (<out_prefix>_cv-stats.csv)
        verbose: 0 silent, 1 progress, 2 details and diagnostic plots
            (CV residuals and kriged field too; kept open in the
            per-year "figures" detail when out_prefix is None)
        n_jobs: Years processed in parallel (joblib; -1 for all cores)
        seed: Seed of the cross-validation fold assignment
        return_details: Also return the per-year variograms, models and
            cross-validation results

    Returns:
        Copy of dat with a new column <response>.csh (0 for skipped
        years, NaN where the response is missing), and the per-year details when return_details is True
    """
    if not isinstance(dat, pd.DataFrame):
        raise ValueError("dat must be a pandas DataFrame")
    for col in REQUIRED_COLUMNS + (response,):
        if col not in dat.columns:
            raise ValueError(f"Column '{col}' not found in dat")
    if isinstance(vgm_model, str):
        vgm_model = [vgm_model]
    if nb_folds < 2:
        raise ValueError("nb_folds must be at least 2")

    fix_eff = _clean_fixed_effects(fix_eff, dat.columns)

    dat = dat.copy()
    for col in ('rank', 'location'):
        dat[col] = _numeric_column(dat[col], col)
    dat[response] = _numeric_column(dat[response], response)
    if dat['control'].isna().any():
        raise ValueError("dat['control'] must be TRUE or FALSE for every plot")
    dat['control'] = as_bool(dat['control'])

    out = dat.copy()
    new_col = f"{response}.csh"
    out[new_col] = 0.0

    years = _year_levels(dat['year'])
    jobs = [delayed(_correct_year)(year, dat[dat['year'] == year], response, fix_eff,
                                   min_ctls_per_year, cressie, vgm_model, nb_folds, seed, verbose)
            for year in years]
    if n_jobs != 1 and len(jobs) > 1:
        results = Parallel(n_jobs=n_jobs)(jobs)
    else:
        results = [func(*args, **kwargs) for func, args, kwargs in jobs]

    for res in results:
        if res['skipped']:
            print(f"skip year '{res['year']}' because not enough control data")
            continue
        pred = res['prediction']
        if verbose > 0:
            print(f"correct panel data with the predicted values of the controls in {res['year']}...")
        out.loc[pred.index, new_col] = out.loc[pred.index, response] - pred
    out.loc[out[response].isna(), new_col] = np.nan

    for res in results:
        if res['skipped']:
            continue
        plots = dat.loc[res['prediction'].index, ['rank', 'location']].assign(prediction=res['prediction'])
        files, res['figures'] = _diagnostic_plots(res, plots, response, out_prefix, verbose)
        if files and verbose > 0:
            print(f"saved {', '.join(files)}")

    if out_prefix is not None:
        stats_file = f"{out_prefix}_cv-stats.csv"
        _cv_stats_table(results).to_csv(stats_file, index=False)
        if verbose > 0:
            print(f"saved {stats_file}")

    if return_details:
        return out, {res['year']: res for res in results}
    return out
