"""
Tests for predictions and coefficient confidence intervals.
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from clustermoments import (
    DesignEncoder,
    DesignSpec,
    UnseenLevelError,
    confidence_interval_tables,
    confidence_intervals,
    fit,
    fit_ridge,
    predict,
    predict_table,
    recode_table,
)
from clustermoments.recode import RESPONSES


def test_held_out_prediction_is_positive_and_finite(toy_table):
    train = recode_table(toy_table)
    model = fit(DesignSpec(transform='log'), train)

    new = pd.DataFrame({'Re': [224.0], 'Fr': [0.3], 'St': [1.5]})
    out = predict_table({'R_moment_1': model}, new)

    value = out['R_moment_1'].iloc[0]
    assert np.isfinite(value) and value > 0
    assert list(new.columns) == ['Re', 'Fr', 'St'], "input was modified"


def test_inverse_transform_undoes_the_fit_transform(moment_table):
    train = recode_table(moment_table)
    model = fit(DesignSpec(transform='log', degree=3), train,
                response='R_moment_3')
    pred = predict(model, train)
    assert np.allclose(pred, np.exp(model.fitted), rtol=1e-12, atol=0)


def test_prediction_rejects_levels_unseen_in_training(toy_table):
    table = recode_table(toy_table)
    model = fit(DesignSpec(), table[table['gravity'] != 'high'])

    new = recode_table(pd.DataFrame({'Re': [90.0], 'Fr': [np.inf],
                                     'St': [1.0]}))
    with pytest.raises(UnseenLevelError):
        predict(model, new)


def test_prediction_transform_must_match_the_fit(toy_table):
    model = fit(DesignSpec(transform='log'), recode_table(toy_table))
    rows = recode_table(toy_table)
    predict(model, rows, response_transform='log')
    with pytest.raises(ValueError):
        predict(model, rows, response_transform='identity')


@pytest.mark.parametrize('st', [np.nan, np.inf, -0.5])
def test_prediction_rejects_invalid_st(toy_table, st):
    train = recode_table(toy_table)
    model = fit(DesignSpec(transform='log'), train)
    rows = train.iloc[:2].copy()
    rows.loc[rows.index[0], 'St'] = st
    with pytest.raises(ValueError, match="St"):
        predict(model, rows)

def test_confidence_intervals_follow_the_t_distribution(moment_table):
    train = recode_table(moment_table)
    spec = DesignSpec(transform='log', degree=2, interactions=('St:flow',))
    model = fit(spec, train, response='R_moment_2')
    ci = confidence_intervals(model, level=0.95)

    X = DesignEncoder(spec).fit_transform(train).to_numpy()
    sigma2 = model.rss / model.df_resid
    se = np.sqrt(np.diag(np.linalg.inv(X.T @ X)) * sigma2)
    t_crit = stats.t.ppf(0.975, model.df_resid)

    assert list(ci.index) == list(model.terms)
    assert list(ci.columns) == ['estimate', 'std_error', 'lower', 'upper']
    assert np.allclose(ci['std_error'], se, rtol=1e-8)
    assert np.allclose(ci['lower'], model.coef - t_crit * se, rtol=1e-8)
    assert (ci['lower'] < ci['estimate']).all()
    assert (ci['estimate'] < ci['upper']).all()


def test_higher_confidence_gives_wider_intervals(moment_table):
    model = fit(DesignSpec(transform='log'), recode_table(moment_table))
    narrow = confidence_intervals(model, level=0.90)
    wide = confidence_intervals(model, level=0.99)
    assert ((wide['upper'] - wide['lower'])
            > (narrow['upper'] - narrow['lower'])).all()

    with pytest.raises(ValueError):
        confidence_intervals(model, level=1.5)


def test_ridge_models_have_no_t_intervals(moment_table):
    model = fit_ridge(DesignSpec(), recode_table(moment_table), 0.1)
    with pytest.raises(ValueError, match="OLS"):
        confidence_intervals(model)


def test_batch_outputs_cover_every_response(moment_table):
    train = recode_table(moment_table)
    models = [fit(DesignSpec(transform='log', degree=2), train, response=r)
              for r in RESPONSES]
    new = moment_table[['Re', 'Fr', 'St']].iloc[:7]

    out = predict_table(models, new)
    assert list(out.columns) == ['Re', 'Fr', 'St'] + list(RESPONSES)
    assert (out[list(RESPONSES)] > 0).all().all()

    tables = confidence_interval_tables(models)
    assert set(tables) == set(RESPONSES)
