"""
Tests for OLS and ridge fitting.
"""

import numpy as np
import pandas as pd
import pytest
from sklearn.linear_model import LinearRegression

from clustermoments import (
    DesignEncoder,
    DesignSpec,
    DomainError,
    RankDeficiencyError,
    fit,
    fit_ridge,
    predict,
    recode_table,
)


def test_log_linear_fit_recovers_st_slope(toy_table):
    """
    log(m1) = 0.1 St + noise(sd=0.005): the St slope, read off as the
    change in log prediction per unit St, should be within 0.02 of 0.1.
    """
    train = recode_table(toy_table)
    model = fit(DesignSpec(transform='log', degree=1), train)

    grid = recode_table(pd.DataFrame({
        'Re': [224.0, 224.0], 'Fr': [0.3, 0.3], 'St': [1.0, 2.0]}))
    pred = predict(model, grid)
    slope = np.log(pred[1]) - np.log(pred[0])

    assert abs(slope - 0.1) < 0.02, f"Recovered slope {slope:.4f}"


def test_ols_matches_sklearn_on_the_same_design(moment_table):
    train = recode_table(moment_table)
    spec = DesignSpec(transform='log', degree=4,
                      interactions=('St:gravity', 'gravity:flow'))
    model = fit(spec, train, response='R_moment_3')

    X = DesignEncoder(spec).fit_transform(train).to_numpy()[:, 1:]
    y = np.log(train['R_moment_3'].to_numpy())
    ref = LinearRegression().fit(X, y)

    assert np.allclose(model.coef[0], ref.intercept_, atol=1e-7)
    assert np.allclose(model.coef[1:], ref.coef_, atol=1e-7)


def test_fitted_model_shapes_and_degrees_of_freedom(toy_table):
    train = recode_table(toy_table)
    model = fit(DesignSpec(degree=2, interactions=('St:flow',)), train,
                response='R_moment_2')

    n = len(train)
    assert model.n == n
    assert len(model.coef) == len(model.terms) == model.n_params
    assert len(model.fitted) == len(model.residuals) == n
    assert model.df_resid == n - model.n_params
    assert np.allclose(model.fitted + model.residuals, model.y)
    assert model.coefficients.index[0] == '(Intercept)'


def test_response_transform_argument_overrides_spec(toy_table):
    train = recode_table(toy_table)
    model = fit(DesignSpec(), train, response_transform='log')
    assert model.transform == 'log'
    assert model.spec.spec_id.startswith('log~')
    assert np.allclose(model.y, np.log(train['R_moment_1']))


def test_fitted_arrays_are_read_only(toy_table):
    model = fit(DesignSpec(), recode_table(toy_table))
    with pytest.raises(ValueError):
        model.coef[0] = 0.0
    with pytest.raises(AttributeError):
        model.df_resid = 3


def test_missing_reference_level_is_rank_deficient(toy_table):
    train = recode_table(toy_table)
    train = train[train['flow'] != 'low']
    with pytest.raises(RankDeficiencyError):
        fit(DesignSpec(), train)


def test_missing_factor_combination_is_rank_deficient(toy_table):
    train = recode_table(toy_table)
    drop = (train['gravity'] == 'high') & (train['flow'] == 'high')
    with pytest.raises(RankDeficiencyError) as err:
        fit(DesignSpec(interactions=('gravity:flow',)), train[~drop])
    assert 'gravity[high]:flow[high]' in err.value.columns


def test_too_many_columns_for_the_rows_is_rank_deficient(toy_table):
    train = recode_table(toy_table).iloc[:9]
    with pytest.raises(RankDeficiencyError):
        fit(DesignSpec(degree=5, interactions=('St:gravity', 'St:flow')),
            train)


def test_log_fit_of_non_positive_response_raises(toy_table):
    train = recode_table(toy_table)
    train.loc[train.index[4], 'R_moment_1'] = 0.0
    with pytest.raises(DomainError):
        fit(DesignSpec(transform='log'), train)
    # identity is still fine
    fit(DesignSpec(transform='identity'), train)


def test_missing_values_in_training_rows_raise(toy_table):
    train = recode_table(toy_table)
    bad_response = train.copy()
    bad_response.loc[bad_response.index[3], 'R_moment_2'] = np.nan
    with pytest.raises(ValueError, match="R_moment_2"):
        fit(DesignSpec(), bad_response, response='R_moment_2')

    bad_st = train.copy()
    bad_st.loc[bad_st.index[3], 'St'] = np.nan
    with pytest.raises(ValueError, match="St"):
        fit(DesignSpec(), bad_st)


def test_ridge_with_tiny_penalty_matches_ols(moment_table):
    train = recode_table(moment_table)
    spec = DesignSpec(transform='log', degree=3)
    ols = fit(spec, train, response='R_moment_2')
    ridge = fit_ridge(spec, train, 1e-8, response='R_moment_2')

    assert ridge.method == 'ridge' and ridge.ridge_lambda == 1e-8
    assert ridge.terms == ols.terms
    assert np.allclose(ridge.coef, ols.coef, atol=1e-5)


def test_ridge_shrinks_slopes_but_not_the_intercept(moment_table):
    train = recode_table(moment_table)
    spec = DesignSpec(transform='log', degree=2)
    y = np.log(train['R_moment_1'].to_numpy())

    mild = fit_ridge(spec, train, 1.0)
    heavy = fit_ridge(spec, train, 1e9)

    assert np.linalg.norm(heavy.coef[1:]) < np.linalg.norm(mild.coef[1:])
    assert np.allclose(heavy.coef[1:], 0.0, atol=1e-5)
    assert np.isclose(heavy.coef[0], y.mean(), atol=1e-4), (
        "Unpenalised intercept should tend to the response mean"
    )
    assert heavy.cov_unscaled is None


def test_ridge_rejects_negative_penalty(toy_table):
    with pytest.raises(ValueError):
        fit_ridge(DesignSpec(), recode_table(toy_table), -1.0)
