"""
Declarative model specifications and the design matrices built from them.

A ``DesignSpec`` names *what* enters a regression (response transform,
``St`` basis and degree, categorical main effects, pairwise
interactions).  A ``DesignEncoder`` turns a spec plus a recoded
training table into a numeric design matrix, remembering everything
needed to encode new rows identically (polynomial recurrence, spline
knots, levels seen during fitting).
"""

from dataclasses import dataclass, replace

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin

from .errors import DomainError, RankDeficiencyError, UnseenLevelError
from .recode import FACTORS, LEVELS, REFERENCE_LEVEL


TRANSFORMS = ('identity', 'log')
BASES = ('poly', 'spline')
INTERACTIONS = ('St:gravity', 'St:flow', 'gravity:flow')
INTERCEPT = '(Intercept)'


# ---------------------------------------------------------------------------
# Response transforms
# ---------------------------------------------------------------------------

def transform_response(y, transform):
    """
    Map a response onto the modelling scale.

    Raises
    ------
    DomainError
        If ``transform='log'`` and any value is non-positive or
        non-finite.
    """
    y = np.asarray(y, dtype=np.float64).ravel()
    if transform == 'identity':
        return y.copy()
    if transform == 'log':
        bad = ~np.isfinite(y) | (y <= 0)
        if bad.any():
            raise DomainError(
                f"log transform requires strictly positive, finite "
                f"responses; {int(bad.sum())} value(s) violate this "
                f"(first: {y[bad][0]!r})."
            )
        return np.log(y)
    raise ValueError(f"Unknown transform: {transform}")


def inverse_transform(eta, transform):
    """Undo ``transform_response``."""
    eta = np.asarray(eta, dtype=np.float64)
    if transform == 'identity':
        return eta.copy()
    if transform == 'log':
        return np.exp(eta)
    raise ValueError(f"Unknown transform: {transform}")


# ---------------------------------------------------------------------------
# Design specification
# ---------------------------------------------------------------------------

def _canonical(terms, allowed, kind):
    terms = tuple(terms)
    unknown = [t for t in terms if t not in allowed]
    if unknown:
        raise ValueError(f"Unknown {kind}: {unknown}. Allowed: {allowed}")
    return tuple(t for t in allowed if t in terms)


@dataclass(frozen=True)
class DesignSpec:
    """
    Immutable description of one candidate regression.

    Parameters
    ----------
    transform : {'identity', 'log'}
        Response transform.
    degree : int
        Polynomial degree for ``St`` (ignored when ``basis='spline'``).
    main_effects : tuple of str
        Subset of ``('gravity', 'flow')``.
    interactions : tuple of str
        Subset of ``('St:gravity', 'St:flow', 'gravity:flow')``.  Each
        categorical factor named in an interaction must also be a main
        effect.
    basis : {'poly', 'spline'}
        ``St`` expansion.
    spline_df : int
        Columns of the natural spline basis when ``basis='spline'``.
    """

    transform: str = 'identity'
    degree: int = 1
    main_effects: tuple = FACTORS
    interactions: tuple = ()
    basis: str = 'poly'
    spline_df: int = 4

    def __post_init__(self):
        if self.transform not in TRANSFORMS:
            raise ValueError(f"Unknown transform: {self.transform}")
        if self.basis not in BASES:
            raise ValueError(f"Unknown basis: {self.basis}")
        if int(self.degree) < 1:
            raise ValueError(f"degree must be >= 1, got {self.degree}")
        if int(self.spline_df) < 1:
            raise ValueError(f"spline_df must be >= 1, got {self.spline_df}")
        object.__setattr__(self, 'degree', int(self.degree))
        object.__setattr__(self, 'spline_df', int(self.spline_df))
        object.__setattr__(
            self, 'main_effects',
            _canonical(self.main_effects, FACTORS, 'main effect'))
        object.__setattr__(
            self, 'interactions',
            _canonical(self.interactions, INTERACTIONS, 'interaction'))

        for term in self.interactions:
            for part in term.split(':'):
                if part in FACTORS and part not in self.main_effects:
                    raise ValueError(
                        f"Interaction '{term}' requires main effect "
                        f"'{part}'."
                    )

    @property
    def st_label(self):
        if self.basis == 'spline':
            return f"ns(St,{self.spline_df})"
        return f"poly(St,{self.degree})"

    @property
    def spec_id(self):
        """Readable identifier, e.g. ``log~poly(St,3)+gravity+flow``."""
        terms = [self.st_label] + list(self.main_effects) + list(
            self.interactions)
        return f"{self.transform}~" + '+'.join(terms)

    def replace(self, **changes):
        """Return a new spec with some fields changed."""
        return replace(self, **changes)

    def __str__(self):
        return self.spec_id


# ---------------------------------------------------------------------------
# St bases
# ---------------------------------------------------------------------------

def _as_1d(x):
    if isinstance(x, (pd.DataFrame, pd.Series)):
        x = x.to_numpy()
    x = np.asarray(x, dtype=np.float64)
    if x.ndim == 2 and x.shape[1] == 1:
        x = x[:, 0]
    if x.ndim != 1:
        raise ValueError(f"Expected a single column, got shape {x.shape}")
    return x


def spline_knots(x, df, name='St'):
    """
    Knots of a natural spline with ``df`` columns: ``df + 1`` evenly
    spaced quantiles of the distinct values of ``x``.

    Using distinct values keeps replicated grid points from collapsing
    neighbouring knots.
    """
    values = np.unique(_as_1d(x))
    if values.size < df + 1:
        raise RankDeficiencyError(
            f"Natural spline with df={df} needs {df + 1} distinct knots; "
            f"{name} has only {values.size} distinct value(s)."
        )
    return np.quantile(values, np.linspace(0.0, 1.0, df + 1))


class OrthogonalPolynomialBasis(BaseEstimator, TransformerMixin):
    """
    Orthogonal polynomials in one variable, evaluated on new data.

    The basis is the monic three-term recurrence

        p_0 = 1,  p_{k+1}(x) = (x - a_k) p_k(x) - b_k p_{k-1}(x)

    with ``a_k`` and ``b_k`` chosen so the ``p_k`` are orthogonal over the
    training points; column ``k`` is ``p_k / ||p_k||``.  On the training
    data the columns are orthonormal and orthogonal to the intercept,
    which keeps high-degree fits well conditioned.  Because the first
    ``d`` columns do not depend on the requested degree, a degree-``d``
    basis is an exact prefix of a degree-``d+1`` basis.

    Parameters
    ----------
    degree : int, default=1
    name : str, default='St'
        Used for column names ``poly(<name>)k``.
    """

    def __init__(self, degree=1, name='St'):
        self.degree = degree
        self.name = name

    def fit(self, x, y=None):
        x = _as_1d(x)
        n_unique = np.unique(x).size
        if self.degree >= n_unique:
            raise RankDeficiencyError(
                f"Polynomial degree {self.degree} needs at least "
                f"{self.degree + 1} distinct {self.name} values; "
                f"got {n_unique}."
            )

        alpha = np.empty(self.degree)
        norm2 = np.empty(self.degree + 2)
        norm2[0] = 1.0
        norm2[1] = float(len(x))

        p_prev = np.zeros_like(x)
        p_cur = np.ones_like(x)
        for k in range(self.degree):
            alpha[k] = np.dot(x, p_cur ** 2) / norm2[k + 1]
            p_next = (x - alpha[k]) * p_cur - (norm2[k + 1] / norm2[k]) * p_prev
            p_prev, p_cur = p_cur, p_next
            norm2[k + 2] = np.dot(p_cur, p_cur)
            if not norm2[k + 2] > 1e-12 * norm2[k + 1]:
                raise RankDeficiencyError(
                    f"Polynomial column {k + 1} of {self.name} vanishes "
                    f"on the training points."
                )

        self.alpha_ = alpha
        self.norm2_ = norm2
        return self

    def transform(self, x):
        x = _as_1d(x)
        Z = np.empty((len(x), self.degree))
        p_prev = np.zeros_like(x)
        p_cur = np.ones_like(x)
        for k in range(self.degree):
            p_next = ((x - self.alpha_[k]) * p_cur
                      - (self.norm2_[k + 1] / self.norm2_[k]) * p_prev)
            p_prev, p_cur = p_cur, p_next
            Z[:, k] = p_cur / np.sqrt(self.norm2_[k + 2])
        return Z

    def get_feature_names_out(self, input_features=None):
        return np.array(
            [f"poly({self.name}){k}" for k in range(1, self.degree + 1)],
            dtype=object)


class NaturalSplineBasis(BaseEstimator, TransformerMixin):
    """
    Natural cubic spline basis (linear beyond the boundary knots).

    ``df + 1`` knots are placed at evenly spaced quantiles of the
    distinct training values (see ``spline_knots``), the outermost at the
    minimum and maximum.  With knots ``xi_1 < ... < xi_K`` the basis is
    ``x`` together with ``d_k(x) - d_{K-1}(x)`` for ``k = 1..K-2``, where

        d_k(x) = ((x - xi_k)_+^3 - (x - xi_K)_+^3) / (xi_K - xi_k)

    Columns are centred and scaled with training moments.
    """

    def __init__(self, df=4, name='St'):
        self.df = df
        self.name = name

    def _raw(self, x):
        knots = self.knots_
        last = knots[-1]

        def d(k):
            return ((np.clip(x - knots[k], 0, None) ** 3
                     - np.clip(x - last, 0, None) ** 3)
                    / (last - knots[k]))

        cols = [x]
        if len(knots) > 2:
            d_end = d(len(knots) - 2)
            cols += [d(k) - d_end for k in range(len(knots) - 2)]
        return np.column_stack(cols)

    def fit(self, x, y=None):
        x = _as_1d(x)
        self.knots_ = spline_knots(x, self.df, self.name)
        raw = self._raw(x)
        self.mean_ = raw.mean(axis=0)
        self.scale_ = raw.std(axis=0)
        if np.any(self.scale_ <= 0):
            raise RankDeficiencyError(
                f"Natural spline column of {self.name} is constant on the "
                f"training points."
            )
        return self

    def transform(self, x):
        x = _as_1d(x)
        return (self._raw(x) - self.mean_) / self.scale_

    def get_feature_names_out(self, input_features=None):
        return np.array(
            [f"ns({self.name},{self.df}){k}" for k in range(1, self.df + 1)],
            dtype=object)


# ---------------------------------------------------------------------------
# Design matrix
# ---------------------------------------------------------------------------

def _dummy_name(factor, level):
    return f"{factor}[{level}]"


class DesignEncoder:
    """
    Build the numeric design matrix for a ``DesignSpec``.

    Categorical factors use reference-level (``low``) dummy coding with a
    column for each non-reference level observed in the training rows.
    If ``low`` itself is absent the dummies add up to the intercept and
    the fitter rejects the design as rank deficient; a level absent from
    training but present in later rows raises ``UnseenLevelError`` on
    ``transform``.  Interaction columns are elementwise
    products of the linear ``St`` column and the factor dummies, or of the
    dummies of both factors.
    """

    def __init__(self, spec):
        self.spec = spec

    def fit(self, table):
        _require_columns(table, ['St'] + list(self.spec.main_effects))
        st = _st_values(table)
        if self.spec.basis == 'spline':
            self.basis_ = NaturalSplineBasis(df=self.spec.spline_df).fit(st)
        else:
            self.basis_ = OrthogonalPolynomialBasis(
                degree=self.spec.degree).fit(st)

        self.levels_ = {}
        for factor in self.spec.main_effects:
            observed = set(_factor_values(table, factor))
            _check_known_levels(observed, factor)
            self.levels_[factor] = tuple(l for l in LEVELS if l in observed)

        self.terms_ = tuple(self._build(table).columns)
        return self

    def transform(self, table):
        """
        Encode rows with the fitted basis and levels.

        Raises
        ------
        UnseenLevelError
            If a row carries a categorical level absent from the
            training rows.
        ValueError
            If ``St`` is missing, infinite or negative.
        """
        _require_columns(table, ['St'] + list(self.spec.main_effects))
        for factor, seen in self.levels_.items():
            values = set(_factor_values(table, factor))
            _check_known_levels(values, factor)
            unseen = sorted(values - set(seen), key=LEVELS.index)
            if unseen:
                raise UnseenLevelError(
                    f"{factor} level(s) {unseen} were not present when the "
                    f"model was fitted (seen: {list(seen)}).",
                    factor=factor, levels=unseen,
                )
        return self._build(table)

    def fit_transform(self, table):
        self.fit(table)
        return self._build(table)

    def _build(self, table):
        n = len(table)
        st_cols = self.basis_.transform(_st_values(table))
        st_names = self.basis_.get_feature_names_out()

        cols = {INTERCEPT: np.ones(n)}
        for name, col in zip(st_names, st_cols.T):
            cols[name] = col

        dummies = {}
        for factor in self.spec.main_effects:
            values = _factor_values(table, factor)
            dummies[factor] = {}
            for level in self.levels_[factor]:
                if level == REFERENCE_LEVEL:
                    continue
                name = _dummy_name(factor, level)
                dummies[factor][name] = (values == level).astype(np.float64)
                cols[name] = dummies[factor][name]

        st_linear = st_cols[:, 0]
        for term in self.spec.interactions:
            left, right = term.split(':')
            if left == 'St':
                for name, col in dummies[right].items():
                    cols[f"St:{name}"] = st_linear * col
            else:
                for lname, lcol in dummies[left].items():
                    for rname, rcol in dummies[right].items():
                        cols[f"{lname}:{rname}"] = lcol * rcol

        return pd.DataFrame(cols, index=table.index)


def _require_columns(table, columns):
    missing = [c for c in columns if c not in table.columns]
    if missing:
        hint = ''
        if any(c in FACTORS for c in missing):
            hint = ' (recode the table with recode_table() first)'
        raise ValueError(f"Table is missing column(s) {missing}{hint}.")


def _st_values(table):
    st = table['St'].to_numpy(dtype=np.float64)
    if not np.all(np.isfinite(st)):
        raise ValueError("St has missing or infinite value(s).")
    if np.any(st < 0):
        raise ValueError("St must be non-negative.")
    return st


def _factor_values(table, factor):
    return table[factor].astype(object).to_numpy()


def _check_known_levels(values, factor):
    bad = [v for v in values if v not in LEVELS]
    if bad:
        raise ValueError(
            f"{factor} contains unknown level(s) {bad}; expected {LEVELS}."
        )
