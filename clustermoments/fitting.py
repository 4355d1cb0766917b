"""
Least-squares and ridge fitting of a ``DesignSpec`` to one response.

OLS is solved through a QR decomposition of the design matrix (never the
normal equations), after an SVD rank check.  Ridge standardises the
non-intercept columns, solves with scikit-learn's ``Ridge`` (which does
not penalise the intercept) and maps the coefficients back to the
original columns, so both kinds of fit expose coefficients on the same
named terms.
"""

from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from scipy.linalg import solve_triangular
from sklearn.linear_model import Ridge
from sklearn.preprocessing import StandardScaler

from .design import INTERCEPT, DesignEncoder, transform_response
from .errors import RankDeficiencyError
from .recode import RESPONSES


DEFAULT_RESPONSE = RESPONSES[0]


def _frozen(arr):
    arr = np.array(arr, dtype=np.float64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    A fitted regression for one (response, design) pair.

    Attributes
    ----------
    spec : DesignSpec
    response : str
        Name of the response column.
    terms : tuple of str
        Encoded column names, intercept first.
    coef : np.ndarray
        One coefficient per term.
    y : np.ndarray
        Response on the modelling (transformed) scale.
    fitted : np.ndarray
    residuals : np.ndarray
    df_resid : int
        ``n - p`` with ``p`` the number of coefficients (intercept
        included).
    encoder : DesignEncoder
        Encodes new rows exactly as the training rows were encoded.
    cov_unscaled : np.ndarray or None
        ``(X'X)^-1`` for OLS fits; ``None`` for ridge.
    ridge_lambda : float or None
        Penalty used, ``None`` for OLS.

    Arrays are read-only; refitting produces a new object.
    """

    spec: object
    response: str
    terms: tuple
    coef: np.ndarray
    y: np.ndarray
    fitted: np.ndarray
    residuals: np.ndarray
    df_resid: int
    encoder: DesignEncoder = field(repr=False)
    cov_unscaled: np.ndarray = field(default=None, repr=False)
    ridge_lambda: float = None

    @property
    def method(self):
        return 'ols' if self.ridge_lambda is None else 'ridge'

    @property
    def transform(self):
        return self.spec.transform

    @property
    def n(self):
        return len(self.y)

    @property
    def n_params(self):
        return len(self.coef)

    @property
    def rss(self):
        return float(np.sum(self.residuals ** 2))

    @property
    def sigma2(self):
        """Residual mean square ``RSS / df_resid``."""
        if self.df_resid <= 0:
            return np.nan
        return self.rss / self.df_resid

    @property
    def coefficients(self):
        return pd.Series(self.coef, index=list(self.terms), name=self.response)

    def linear_predictor(self, rows):
        """Predictions on the modelling scale for (recoded) rows."""
        X = self.encoder.transform(rows)
        return X.to_numpy() @ self.coef

    def __repr__(self):
        return (f"FittedModel(response={self.response!r}, "
                f"spec={self.spec.spec_id!r}, method={self.method!r}, "
                f"n={self.n}, p={self.n_params})")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _prepare(design_spec, training_rows, response, response_transform):
    if response_transform is not None and \
            response_transform != design_spec.transform:
        design_spec = design_spec.replace(transform=response_transform)
    if len(training_rows) == 0:
        raise ValueError("Cannot fit on an empty set of training rows.")
    if response not in training_rows.columns:
        raise ValueError(f"Response column '{response}' not in table.")
    raw = training_rows[response].to_numpy(dtype=np.float64)
    if not np.all(np.isfinite(raw)):
        raise ValueError(
            f"Response column '{response}' has missing or infinite "
            f"value(s).")

    y = transform_response(raw, design_spec.transform)
    encoder = DesignEncoder(design_spec)
    X = encoder.fit_transform(training_rows)
    _check_rank(X)
    return design_spec, encoder, X, y


def _check_rank(X):
    n, p = X.shape
    if n < p:
        raise RankDeficiencyError(
            f"Design has {p} columns but only {n} rows.",
            columns=tuple(X.columns),
        )
    values = X.to_numpy()
    rank = np.linalg.matrix_rank(values)
    if rank < p:
        zero = [c for c in X.columns if not np.any(X[c].to_numpy())]
        detail = (f" All-zero column(s) (level or combination absent from "
                  f"the training rows): {zero}." if zero else "")
        raise RankDeficiencyError(
            f"Design matrix has rank {rank} < {p} columns.{detail}",
            columns=zero,
        )


# ---------------------------------------------------------------------------
# Public fitters
# ---------------------------------------------------------------------------

def fit(design_spec, training_rows, response=DEFAULT_RESPONSE,
        response_transform=None):
    """
    Ordinary least-squares fit of one response.

    Parameters
    ----------
    design_spec : DesignSpec
    training_rows : pd.DataFrame
        Recoded observations (``gravity``/``flow`` present).
    response : str, default='R_moment_1'
    response_transform : {'identity', 'log'} or None
        Overrides ``design_spec.transform`` when given; the returned
        model's ``spec`` carries the transform actually used.

    Returns
    -------
    FittedModel

    Raises
    ------
    DomainError
        Log transform of a non-positive response.
    RankDeficiencyError
        Design matrix not of full column rank.
    """
    spec, encoder, X, y = _prepare(design_spec, training_rows, response,
                                   response_transform)
    values = X.to_numpy()

    q, r = np.linalg.qr(values)
    coef = solve_triangular(r, q.T @ y, lower=False)
    r_inv = solve_triangular(r, np.eye(r.shape[0]), lower=False)
    cov_unscaled = r_inv @ r_inv.T

    fitted = values @ coef
    return FittedModel(
        spec=spec,
        response=response,
        terms=tuple(X.columns),
        coef=_frozen(coef),
        y=_frozen(y),
        fitted=_frozen(fitted),
        residuals=_frozen(y - fitted),
        df_resid=values.shape[0] - values.shape[1],
        encoder=encoder,
        cov_unscaled=_frozen(cov_unscaled),
    )


def fit_ridge(design_spec, training_rows, lam, response=DEFAULT_RESPONSE,
              response_transform=None):
    """
    L2-penalised least squares with an unpenalised intercept.

    Non-intercept columns are standardised before the penalty is
    applied and the coefficients are mapped back afterwards, so they are
    directly comparable with an OLS fit of the same spec.  ``lam`` is the
    scikit-learn ``Ridge(alpha=lam)`` penalty on the standardised columns.
    """
    if lam < 0:
        raise ValueError(f"Ridge penalty must be non-negative, got {lam}")
    spec, encoder, X, y = _prepare(design_spec, training_rows, response,
                                   response_transform)
    if X.columns[0] != INTERCEPT:
        raise ValueError("Design matrix must start with the intercept.")
    Z = X.to_numpy()[:, 1:]

    scaler = StandardScaler().fit(Z)
    mdl = Ridge(alpha=lam, fit_intercept=True).fit(scaler.transform(Z), y)

    slopes = mdl.coef_ / scaler.scale_
    intercept = mdl.intercept_ - np.dot(slopes, scaler.mean_)
    coef = np.concatenate([[intercept], slopes])

    fitted = X.to_numpy() @ coef
    return FittedModel(
        spec=spec,
        response=response,
        terms=tuple(X.columns),
        coef=_frozen(coef),
        y=_frozen(y),
        fitted=_frozen(fitted),
        residuals=_frozen(y - fitted),
        df_resid=X.shape[0] - X.shape[1],
        encoder=encoder,
        ridge_lambda=float(lam),
    )
