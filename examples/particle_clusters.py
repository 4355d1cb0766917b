"""
Example: predict cluster-volume moments for the simulation test set
=====================================================================
Reads the training campaign and the prediction inputs, runs the model
selection, and writes

  * predictions.csv        -- test inputs with four predicted moments
  * ci_<response>.csv      -- 95% coefficient intervals per moment

Usage:  python particle_clusters.py [data-train.csv] [data-test.csv]
"""

import sys
from pathlib import Path

import pandas as pd

from clustermoments import MomentModelSelector
from clustermoments.recode import PREDICTORS

# ------------------------------------------------------------------
# 1.  Load data
# ------------------------------------------------------------------
train_path = Path(sys.argv[1] if len(sys.argv) > 1 else "data-train.csv")
test_path = Path(sys.argv[2] if len(sys.argv) > 2 else "data-test.csv")

train = pd.read_csv(train_path)
test = pd.read_csv(test_path)

print(f"Training rows: {len(train)}   Prediction rows: {len(test)}\n")

# ------------------------------------------------------------------
# 2.  Select the shared design and fit all four moments
# ------------------------------------------------------------------
selector = MomentModelSelector(max_degree=8, cv_folds=10, random_state=1)
selector.fit(train, verbose=True)

# ------------------------------------------------------------------
# 3.  Write outputs
# ------------------------------------------------------------------
predictions = selector.predict(test[list(PREDICTORS)])
predictions.to_csv("predictions.csv", index=False)
print("\nWrote predictions.csv")

for response, table in selector.confidence_intervals(level=0.95).items():
    out = f"ci_{response}.csv"
    table.to_csv(out)
    print(f"Wrote {out}")
