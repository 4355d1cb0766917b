"""Shared fixtures and repository-relative imports."""

import os
import sys

import matplotlib
import numpy as np
import pandas as pd
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

matplotlib.use("Agg")

RE_VALUES = (90.0, 224.0, 398.0)
FR_VALUES = (0.052, 0.3, np.inf)


def make_toy_table(seed=0, noise=0.005):
    """Every Re x Fr combination with two St values; log m1 = 0.1 St."""
    rng = np.random.RandomState(seed)
    rows = []
    for re in RE_VALUES:
        for fr in FR_VALUES:
            for st in rng.uniform(0.2, 3.0, size=2):
                m1 = np.exp(0.1 * st + rng.randn() * noise)
                rows.append({'Re': re, 'Fr': fr, 'St': st,
                             'R_moment_1': m1, 'R_moment_2': m1 ** 2,
                             'R_moment_3': m1 ** 3, 'R_moment_4': m1 ** 4})
    return pd.DataFrame(rows)


def make_moment_table(seed=1, n_st=12, noise=0.05, st_grid=None):
    """
    Four moments with a shared quadratic St trend on the log scale,
    regime offsets, and an St x gravity slope change.

    ``st_grid`` replaces the evenly spaced St values (repeats allowed).
    """
    rng = np.random.RandomState(seed)
    gravity_eff = {0.052: 0.0, 0.3: 0.4, np.inf: 0.9}
    flow_eff = {90.0: 0.0, 224.0: -0.3, 398.0: -0.6}
    if st_grid is None:
        st_grid = np.linspace(0.1, 3.0, n_st)
    rows = []
    for re in RE_VALUES:
        for fr in FR_VALUES:
            for st in st_grid:
                row = {'Re': re, 'Fr': fr, 'St': st}
                for k in range(1, 5):
                    log_m = (-1.0 + k * (0.8 * st - 0.2 * st ** 2)
                             + k * gravity_eff[fr] + flow_eff[re]
                             + (0.6 * st if fr == np.inf else 0.0)
                             + rng.randn() * noise)
                    row[f'R_moment_{k}'] = np.exp(log_m)
                rows.append(row)
    return pd.DataFrame(rows)


@pytest.fixture
def toy_table():
    return make_toy_table()


@pytest.fixture
def moment_table():
    return make_moment_table()
