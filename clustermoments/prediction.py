"""
Predictions and coefficient confidence intervals from fitted models.
"""

import numpy as np
import pandas as pd
from scipy import stats

from .design import inverse_transform
from .recode import recode_table


def predict(fitted_model, new_rows, response_transform=None):
    """
    Predict a response on its original scale.

    Parameters
    ----------
    fitted_model : FittedModel
    new_rows : pd.DataFrame
        Recoded rows (``St`` plus the model's categorical factors).
    response_transform : {'identity', 'log'} or None
        Transform to undo.  Defaults to, and must agree with, the one the
        model was fitted under.

    Returns
    -------
    np.ndarray

    Raises
    ------
    UnseenLevelError
        If a row uses a categorical level absent from the fit.
    """
    transform = fitted_model.transform
    if response_transform is not None and response_transform != transform:
        raise ValueError(
            f"Model was fitted under the '{transform}' transform; cannot "
            f"invert it as '{response_transform}'."
        )
    return inverse_transform(fitted_model.linear_predictor(new_rows),
                             transform)


def confidence_intervals(fitted_model, level=0.95):
    """
    t-based confidence intervals for the coefficients of an OLS fit.

    Returns
    -------
    pd.DataFrame
        Indexed by term with columns ``estimate``, ``std_error``,
        ``lower`` and ``upper``.
    """
    if not 0 < level < 1:
        raise ValueError(f"level must be in (0, 1), got {level}")
    if fitted_model.cov_unscaled is None:
        raise ValueError(
            "Confidence intervals are only available for OLS fits; this "
            f"model is {fitted_model.method}."
        )
    if fitted_model.df_resid <= 0:
        raise ValueError("No residual degrees of freedom left for a "
                         "confidence interval.")

    se = np.sqrt(np.diag(fitted_model.cov_unscaled) * fitted_model.sigma2)
    t_crit = stats.t.ppf(0.5 + level / 2.0, fitted_model.df_resid)
    coef = np.asarray(fitted_model.coef)
    return pd.DataFrame(
        {
            'estimate': coef,
            'std_error': se,
            'lower': coef - t_crit * se,
            'upper': coef + t_crit * se,
        },
        index=pd.Index(fitted_model.terms, name='term'),
    )


def _as_mapping(models):
    if isinstance(models, dict):
        return dict(models)
    return {mdl.response: mdl for mdl in models}


def predict_table(models, new_rows):
    """
    Augment a prediction table with one predicted column per response.

    ``new_rows`` needs ``Re``, ``Fr`` and ``St``; it is recoded
    internally and left untouched.  Existing response columns of the
    same name are overwritten in the returned copy.
    """
    recoded = recode_table(new_rows)
    out = new_rows.copy()
    for response, mdl in _as_mapping(models).items():
        out[response] = predict(mdl, recoded)
    return out


def confidence_interval_tables(models, level=0.95):
    """``{response: confidence_intervals(model, level)}``."""
    return {response: confidence_intervals(mdl, level)
            for response, mdl in _as_mapping(models).items()}
