"""
Goodness-of-fit criteria, k-fold cross-validation and sequential ANOVA.

Conventions
-----------
* ``p`` in AIC/BIC counts every estimated coefficient, intercept
  included.  The error variance is not counted and the constant
  ``n(1 + ln 2pi)`` of the Gaussian log-likelihood is dropped:

      AIC = n ln(RSS/n) + 2p
      BIC = n ln(RSS/n) + p ln(n)

  Values are only comparable between models scored by this module.
* Adjusted R^2 uses the number of non-intercept terms ``k = p - 1``:
  ``1 - (1 - R^2)(n - 1)/(n - k - 1)``, and is NaN when
  ``n - k - 1 <= 0``.
* MSE is on the modelling (transformed) scale unless a caller asks
  for the original scale.
"""

from dataclasses import dataclass, asdict

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import stats
from sklearn.model_selection import KFold

from .design import inverse_transform, transform_response
from .errors import CrossValidationError, NonNestedModelsError
from .fitting import DEFAULT_RESPONSE, fit, fit_ridge


@dataclass(frozen=True)
class ScoreRecord:
    """Criteria for one fitted (spec, response) pair."""

    spec_id: str
    response: str
    n: int
    p: int
    rss: float
    r2: float
    adj_r2: float
    aic: float
    bic: float
    mse: float
    cv_mse: float = np.nan

    def to_dict(self):
        return asdict(self)


# ---------------------------------------------------------------------------
# In-sample criteria
# ---------------------------------------------------------------------------

def r_squared(y, fitted):
    y = np.asarray(y, dtype=np.float64)
    ss_tot = np.sum((y - y.mean()) ** 2)
    if ss_tot <= 0:
        return np.nan
    return 1.0 - np.sum((y - np.asarray(fitted)) ** 2) / ss_tot


def adjusted_r_squared(r2, n, k):
    """Adjusted R^2 for ``k`` non-intercept terms; NaN if undefined."""
    denom = n - k - 1
    if denom <= 0 or not np.isfinite(r2):
        return np.nan
    return 1.0 - (1.0 - r2) * (n - 1) / denom


def information_criteria(rss, n, p):
    """Return ``(AIC, BIC)`` under the module's convention."""
    if rss <= 0:
        base = -np.inf
    else:
        base = n * np.log(rss / n)
    return base + 2 * p, base + p * np.log(n)


def score(fitted_model, rows=None, cv_mse=np.nan):
    """
    Score a fitted model.

    Parameters
    ----------
    fitted_model : FittedModel
    rows : pd.DataFrame or None
        Rows to compute ``mse`` on.  ``None`` gives the in-sample MSE
        (``RSS / n``); a held-out table gives the holdout MSE on the
        modelling scale.
    cv_mse : float, optional
        Cross-validated MSE to carry on the record.

    Returns
    -------
    ScoreRecord
    """
    n = fitted_model.n
    p = fitted_model.n_params
    rss = fitted_model.rss
    r2 = r_squared(fitted_model.y, fitted_model.fitted)
    aic, bic = information_criteria(rss, n, p)

    if rows is None:
        mse = rss / n
    else:
        y_true = transform_response(rows[fitted_model.response].to_numpy(),
                                    fitted_model.transform)
        mse = float(np.mean(
            (y_true - fitted_model.linear_predictor(rows)) ** 2))

    return ScoreRecord(
        spec_id=fitted_model.spec.spec_id,
        response=fitted_model.response,
        n=n, p=p, rss=rss, r2=r2,
        adj_r2=adjusted_r_squared(r2, n, p - 1),
        aic=aic, bic=bic, mse=mse, cv_mse=cv_mse,
    )


def score_table(models, cv_mse=None):
    """
    One row per model, as a DataFrame.

    ``cv_mse`` may map ``(spec_id, response)`` to a CV estimate.
    """
    cv_mse = cv_mse or {}
    rows = []
    for mdl in models:
        key = (mdl.spec.spec_id, mdl.response)
        rows.append(score(mdl, cv_mse=cv_mse.get(key, np.nan)).to_dict())
    return pd.DataFrame(rows)


# ---------------------------------------------------------------------------
# Cross-validation
# ---------------------------------------------------------------------------

def fold_assignments(n, k, seed):
    """
    Random, roughly equal fold labels ``0..k-1`` for ``n`` rows.

    Deterministic given ``seed``; no global random state is touched.
    """
    if not 2 <= k <= n:
        raise ValueError(f"Need 2 <= k <= n for k-fold CV (k={k}, n={n}).")
    folds = np.empty(n, dtype=int)
    splitter = KFold(n_splits=k, shuffle=True, random_state=seed)
    for fold, (_, test_idx) in enumerate(splitter.split(np.arange(n))):
        folds[test_idx] = fold
    return folds


def _fold_errors(fold, design_spec, train, test, response, ridge_lambda,
                 original_scale):
    try:
        if ridge_lambda is None:
            mdl = fit(design_spec, train, response=response)
        else:
            mdl = fit_ridge(design_spec, train, ridge_lambda,
                            response=response)
        eta = mdl.linear_predictor(test)
    except (ValueError, ArithmeticError) as exc:
        raise CrossValidationError(
            f"Fold {fold} of {design_spec.spec_id} for {response} failed: "
            f"{exc}", fold=fold,
        ) from exc

    y = test[response].to_numpy(dtype=np.float64)
    if original_scale:
        return (y - inverse_transform(eta, design_spec.transform)) ** 2
    return (transform_response(y, design_spec.transform) - eta) ** 2


def cv_mse(design_spec, all_rows, k=10, seed=0, response=DEFAULT_RESPONSE,
           ridge_lambda=None, original_scale=False, n_jobs=1):
    """
    k-fold cross-validated mean squared error.

    Each fold is held out in turn, the spec is refitted on the remaining
    rows and the held-out rows are predicted; the squared errors of all
    held-out predictions are averaged.

    Parameters
    ----------
    design_spec : DesignSpec
    all_rows : pd.DataFrame
        Recoded observations.
    k : int, default=10
    seed : int, default=0
        Seeds the fold assignment (see ``fold_assignments``).
    response : str
    ridge_lambda : float or None
        Cross-validate a ridge fit with this penalty instead of OLS.
    original_scale : bool, default=False
        Measure errors after inverse-transforming the predictions.
    n_jobs : int, default=1
        Folds are independent and may run in parallel with joblib;
        results are combined in fold order.

    Raises
    ------
    CrossValidationError
        If any fold fails (e.g. a fold leaves a categorical level out of
        its training rows).  Folds are never skipped.
    """
    folds = fold_assignments(len(all_rows), k, seed)
    jobs = (
        delayed(_fold_errors)(
            fold, design_spec,
            all_rows.iloc[np.flatnonzero(folds != fold)],
            all_rows.iloc[np.flatnonzero(folds == fold)],
            response, ridge_lambda, original_scale,
        )
        for fold in range(k)
    )
    errors = Parallel(n_jobs=n_jobs)(jobs)
    return float(np.mean(np.concatenate(errors)))


# ---------------------------------------------------------------------------
# Nested-model F tests
# ---------------------------------------------------------------------------

def _check_nested(models):
    if len(models) < 2:
        raise NonNestedModelsError("Need at least two models to compare.")
    first = models[0]
    for prev, cur in zip(models[:-1], models[1:]):
        if cur.method != 'ols' or prev.method != 'ols':
            raise NonNestedModelsError(
                "Sequential ANOVA is only defined for OLS fits.")
        if cur.response != first.response or cur.n != first.n or \
                not np.array_equal(cur.y, first.y):
            raise NonNestedModelsError(
                "Models were not fitted to the same response data.")
        prev_terms, cur_terms = set(prev.terms), set(cur.terms)
        if not prev_terms < cur_terms:
            extra = sorted(prev_terms - cur_terms)
            raise NonNestedModelsError(
                f"{prev.spec.spec_id} is not strictly nested in "
                f"{cur.spec.spec_id}"
                + (f" (terms not in the larger model: {extra})" if extra
                   else " (same terms)")
            )


def anova_table(models):
    """
    Sequential ANOVA for strictly nested OLS fits, smallest first.

    Each model is compared with its predecessor; as in R's
    ``anova(m1, m2, ...)`` the F denominator is the residual mean square
    of the largest model.

    Returns
    -------
    pd.DataFrame
        Columns ``Model``, ``Res.Df``, ``RSS``, ``Df``, ``Sum of Sq``,
        ``F``, ``Pr(>F)``; the first row has NaN test columns.

    Raises
    ------
    NonNestedModelsError
    """
    models = list(models)
    _check_nested(models)

    largest = models[-1]
    scale = (largest.rss / largest.df_resid
             if largest.df_resid > 0 else np.nan)

    rows = []
    for i, mdl in enumerate(models):
        row = {
            'Model': mdl.spec.spec_id,
            'Res.Df': mdl.df_resid,
            'RSS': mdl.rss,
            'Df': np.nan, 'Sum of Sq': np.nan, 'F': np.nan, 'Pr(>F)': np.nan,
        }
        if i > 0:
            prev = models[i - 1]
            df = prev.df_resid - mdl.df_resid
            ss = prev.rss - mdl.rss
            row['Df'] = df
            row['Sum of Sq'] = ss
            if np.isfinite(scale):
                if scale > 0:
                    f_stat = (ss / df) / scale
                    row['F'] = f_stat
                    row['Pr(>F)'] = stats.f.sf(f_stat, df, largest.df_resid)
                else:
                    row['F'] = np.inf
                    row['Pr(>F)'] = 0.0
        rows.append(row)
    return pd.DataFrame(rows)


def sequential_anova(models):
    """``(F, p)`` for each model against its predecessor."""
    table = anova_table(models)
    return [(float(f), float(p))
            for f, p in zip(table['F'].iloc[1:], table['Pr(>F)'].iloc[1:])]
