"""
Example: model selection on synthetic cluster-volume moments
==============================================================
Builds a small Re x Fr x St campaign whose log-moments share a quadratic
St trend, regime offsets and an St x gravity slope change, then runs
the full selection and predicts a held-out grid.

No external data needed.
"""

import numpy as np
import pandas as pd

# If running from the repo root (not pip-installed), uncomment:
# import sys; sys.path.insert(0, '..')

from clustermoments import MomentModelSelector
from clustermoments.plotting import plot_degree_selection, plot_diagnostics

# ------------------------------------------------------------------
# 1.  Simulate a campaign
# ------------------------------------------------------------------
rng = np.random.RandomState(0)
gravity_eff = {0.052: 0.0, 0.3: 0.35, np.inf: 0.8}
flow_eff = {90: 0.0, 224: -0.25, 398: -0.5}

rows = []
for re in (90, 224, 398):
    for fr in (0.052, 0.3, np.inf):
        for st in rng.uniform(0.05, 3.0, size=25):
            row = {'Re': re, 'Fr': fr, 'St': st}
            for k in range(1, 5):
                log_m = (k * (0.7 * st - 0.15 * st ** 2)
                         + k * gravity_eff[fr] + flow_eff[re]
                         + (0.5 * st if np.isinf(fr) else 0.0)
                         + rng.randn() * 0.08)
                row[f'R_moment_{k}'] = np.exp(log_m)
            rows.append(row)
df = pd.DataFrame(rows)

test_mask = rng.rand(len(df)) < 0.2
train, test = df[~test_mask], df[test_mask]
print(f"Dataset: n_train={len(train)}, n_test={len(test)}\n")

# ------------------------------------------------------------------
# 2.  Select and fit
# ------------------------------------------------------------------
selector = MomentModelSelector(cv_folds=10, random_state=42)
selector.fit(train, verbose=True)

# ------------------------------------------------------------------
# 3.  Evaluate on held-out rows (log scale)
# ------------------------------------------------------------------
pred = selector.predict(test[['Re', 'Fr', 'St']])
for k in range(1, 5):
    col = f'R_moment_{k}'
    err = np.log(pred[col]) - np.log(test[col])
    print(f"{col}: held-out log-scale MSE = {np.mean(err ** 2):.5f}")

print("\nCoefficient intervals for R_moment_1:")
print(selector.confidence_intervals()['R_moment_1'].to_string())

# ------------------------------------------------------------------
# 4.  Figures
# ------------------------------------------------------------------
import matplotlib.pyplot as plt

plot_degree_selection(selector)
plot_diagnostics(selector.final_models_['R_moment_1'])
plt.show()
