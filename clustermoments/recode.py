"""
Categorical recoding of the Reynolds and Froude numbers.

``Re`` and ``Fr`` only take a handful of values across the simulation
campaign, so they are treated as ordinal categories rather than as
continuous predictors:

    gravity : Fr < 0.1 -> low,  0.1 < Fr < 1   -> moderate,  Fr > 1   -> high
    flow    : Re < 100 -> low,  100 < Re < 300 -> moderate,  Re > 300 -> high

The bands are open on both sides, so a value sitting exactly on a
threshold belongs to no band and raises ``UnclassifiedBoundaryError``.
``Fr = inf`` (no gravity) is a legitimate value and maps to ``high``.
"""

import numpy as np
import pandas as pd

from .errors import UnclassifiedBoundaryError


PREDICTORS = ('Re', 'Fr', 'St')
RESPONSES = ('R_moment_1', 'R_moment_2', 'R_moment_3', 'R_moment_4')
FACTORS = ('gravity', 'flow')
LEVELS = ('low', 'moderate', 'high')
REFERENCE_LEVEL = 'low'

GRAVITY_THRESHOLDS = (0.1, 1.0)
FLOW_THRESHOLDS = (100.0, 300.0)


def _classify(value, thresholds, predictor, allow_inf=False):
    value = float(value)
    if np.isnan(value):
        raise ValueError(f"{predictor} is NaN; cannot recode a missing value.")
    if np.isneginf(value) or (np.isposinf(value) and not allow_inf):
        raise ValueError(f"{predictor}={value} is not a finite value.")
    lower, upper = thresholds
    if value in (lower, upper):
        raise UnclassifiedBoundaryError(
            f"{predictor}={value:g} lies exactly on a recoding threshold "
            f"{thresholds}; boundary values are not assigned to any band.",
            predictor=predictor, value=value,
        )
    if value < lower:
        return 'low'
    if value < upper:
        return 'moderate'
    return 'high'


def classify_gravity(fr):
    """Map a Froude number to its gravity regime (``inf`` is high)."""
    return _classify(fr, GRAVITY_THRESHOLDS, 'Fr', allow_inf=True)


def classify_flow(re):
    """Map a Reynolds number to its flow regime."""
    return _classify(re, FLOW_THRESHOLDS, 'Re')


def recode(observation):
    """
    Return a copy of a single observation with ``gravity`` and ``flow``.

    Parameters
    ----------
    observation : mapping
        Must contain ``Re`` and ``Fr``.  Any other keys are carried over.

    Returns
    -------
    dict
    """
    out = dict(observation)
    out['gravity'] = classify_gravity(observation['Fr'])
    out['flow'] = classify_flow(observation['Re'])
    return out


def recode_table(table):
    """
    Return a new DataFrame with ordered categorical ``gravity``/``flow``.

    The input table is never modified.
    """
    validate_observations(table, require_responses=False)
    out = table.copy()
    gravity = [classify_gravity(v) for v in out['Fr'].to_numpy()]
    flow = [classify_flow(v) for v in out['Re'].to_numpy()]
    out['gravity'] = pd.Categorical(gravity, categories=LEVELS, ordered=True)
    out['flow'] = pd.Categorical(flow, categories=LEVELS, ordered=True)
    return out


def validate_observations(table, require_responses=True, responses=RESPONSES):
    """
    Check that a table carries the expected numeric schema.

    Predictor columns must be numeric with no missing values; ``Fr`` may
    be ``+inf``.  Response columns, when required, must be numeric and
    finite.  Nothing is dropped or imputed: the first problem found is
    raised as ``ValueError``.
    """
    if not isinstance(table, pd.DataFrame):
        raise ValueError(
            f"Expected a pandas DataFrame, got {type(table).__name__}."
        )
    if len(table) == 0:
        raise ValueError("Observation table is empty.")

    required = list(PREDICTORS)
    if require_responses:
        required += list(responses)
    missing = [c for c in required if c not in table.columns]
    if missing:
        raise ValueError(f"Observation table is missing column(s): {missing}")

    for col in required:
        if not pd.api.types.is_numeric_dtype(table[col]):
            raise ValueError(f"Column '{col}' is not numeric.")
        values = table[col].to_numpy(dtype=np.float64)
        if np.isnan(values).any():
            raise ValueError(
                f"Column '{col}' contains {int(np.isnan(values).sum())} "
                f"missing value(s)."
            )
        if col == 'Fr':
            if np.isneginf(values).any():
                raise ValueError("Column 'Fr' contains -inf.")
        elif not np.all(np.isfinite(values)):
            raise ValueError(f"Column '{col}' contains infinite values.")

    if (table['St'].to_numpy(dtype=np.float64) < 0).any():
        raise ValueError("Column 'St' must be non-negative.")
    return table
