"""
Tests for design specifications, St bases and the design encoder.
"""

import numpy as np
import pandas as pd
import pytest

from clustermoments import (
    DesignEncoder,
    DesignSpec,
    DomainError,
    NaturalSplineBasis,
    OrthogonalPolynomialBasis,
    RankDeficiencyError,
    UnseenLevelError,
    inverse_transform,
    recode_table,
    transform_response,
)


def test_orthogonal_polynomials_are_orthonormal_on_training_points():
    rng = np.random.RandomState(0)
    x = rng.uniform(0, 5, size=60)
    Z = OrthogonalPolynomialBasis(degree=6).fit_transform(x)

    assert Z.shape == (60, 6)
    assert np.allclose(Z.T @ Z, np.eye(6), atol=1e-8)
    assert np.allclose(Z.sum(axis=0), 0.0, atol=1e-8), (
        "Columns should be orthogonal to the intercept"
    )


def test_lower_degree_basis_is_a_prefix():
    """The nesting used by sequential ANOVA relies on this."""
    x = np.linspace(0.1, 3.0, 25)
    low = OrthogonalPolynomialBasis(degree=3).fit_transform(x)
    high = OrthogonalPolynomialBasis(degree=5).fit(x)

    assert np.allclose(low, high.transform(x)[:, :3])
    assert list(high.get_feature_names_out()[:3]) == [
        'poly(St)1', 'poly(St)2', 'poly(St)3']


def test_polynomial_basis_evaluates_polynomials_on_new_data():
    """New-data columns stay inside span{1, x, x^2}."""
    x_train = np.linspace(0.0, 2.0, 15)
    x_new = np.array([-0.5, 0.3, 1.7, 2.5, 4.0])
    Z = OrthogonalPolynomialBasis(degree=2).fit(x_train).transform(x_new)

    V = np.column_stack([np.ones_like(x_new), x_new, x_new ** 2])
    coef, *_ = np.linalg.lstsq(V, Z, rcond=None)
    assert np.allclose(V @ coef, Z, atol=1e-10)


def test_degree_needs_enough_distinct_values():
    x = np.repeat([0.5, 1.0, 1.5], 4)
    OrthogonalPolynomialBasis(degree=2).fit(x)
    with pytest.raises(RankDeficiencyError):
        OrthogonalPolynomialBasis(degree=3).fit(x)


def test_natural_spline_is_linear_beyond_boundary_knots():
    x = np.linspace(0.0, 1.0, 40)
    basis = NaturalSplineBasis(df=4).fit(x)
    assert basis.transform(x).shape == (40, 4)
    assert basis.knots_[0] == 0.0 and basis.knots_[-1] == 1.0

    outside = np.array([1.5, 2.0, 2.5, 3.0])
    Z = basis.transform(outside)
    assert np.allclose(np.diff(Z, n=2, axis=0), 0.0, atol=1e-9)


def test_spline_knots_ignore_replicated_grid_points():
    """Repeated St values must not collapse neighbouring knots."""
    grid = [0, .05, .1, .1, .1, .1, .2, .5, 1, 1, 2, 3]
    x = np.tile(grid, 9)
    basis = NaturalSplineBasis(df=4).fit(x)
    assert np.all(np.diff(basis.knots_) > 0)
    assert basis.knots_[0] == 0.0 and basis.knots_[-1] == 3.0
    assert np.all(np.isfinite(basis.transform(x)))

    with pytest.raises(RankDeficiencyError, match="8 distinct"):
        NaturalSplineBasis(df=8).fit(x)


def test_spec_terms_are_canonical():
    a = DesignSpec(transform='log', degree=3, main_effects=('flow', 'gravity'),
                   interactions=('gravity:flow', 'St:gravity'))
    b = DesignSpec(transform='log', degree=3,
                   interactions=('St:gravity', 'gravity:flow'))

    assert a == b
    assert a.spec_id == 'log~poly(St,3)+gravity+flow+St:gravity+gravity:flow'
    assert a.replace(degree=4).degree == 4
    assert a.degree == 3


def test_spec_rejects_interaction_without_main_effect():
    with pytest.raises(ValueError, match="requires main effect"):
        DesignSpec(main_effects=('flow',), interactions=('St:gravity',))
    with pytest.raises(ValueError):
        DesignSpec(transform='sqrt')
    with pytest.raises(ValueError):
        DesignSpec(degree=0)


def test_log_transform_guards_its_domain():
    with pytest.raises(DomainError):
        transform_response([1.0, 0.0, 2.0], 'log')
    with pytest.raises(DomainError):
        transform_response([1.0, -3.0], 'log')


def test_log_round_trip_is_exact():
    y = np.array([1e-6, 0.37, 1.0, 42.0, 3.5e8])
    back = inverse_transform(transform_response(y, 'log'), 'log')
    assert np.allclose(back, y, rtol=1e-12, atol=0)


def test_encoder_builds_named_columns(toy_table):
    table = recode_table(toy_table)
    spec = DesignSpec(degree=2, interactions=('St:flow', 'gravity:flow'))
    X = DesignEncoder(spec).fit_transform(table)

    assert list(X.columns) == [
        '(Intercept)', 'poly(St)1', 'poly(St)2',
        'gravity[moderate]', 'gravity[high]',
        'flow[moderate]', 'flow[high]',
        'St:flow[moderate]', 'St:flow[high]',
        'gravity[moderate]:flow[moderate]', 'gravity[moderate]:flow[high]',
        'gravity[high]:flow[moderate]', 'gravity[high]:flow[high]',
    ]
    assert np.allclose(X['St:flow[high]'],
                       X['poly(St)1'] * X['flow[high]'])
    assert X['gravity[high]:flow[high]'].sum() == 2


def test_encoder_rejects_unseen_levels(toy_table):
    table = recode_table(toy_table)
    train = table[table['gravity'] != 'high']
    encoder = DesignEncoder(DesignSpec()).fit(train)

    assert 'gravity[high]' not in encoder.terms_
    with pytest.raises(UnseenLevelError) as err:
        encoder.transform(table)
    assert err.value.factor == 'gravity'
    assert err.value.levels == ('high',)


def test_encoder_requires_recoded_rows(toy_table):
    with pytest.raises(ValueError, match="recode_table"):
        DesignEncoder(DesignSpec()).fit(toy_table)
