"""
clustermoments: shared-structure model selection for the raw moments of
particle-cluster volume distributions in turbulent particle-laden flow.

Categorical recoding of Re/Fr, OLS and ridge fits of declarative designs,
AIC/BIC/adjusted-R²/CV scoring, nested F-tests and a selector that
applies one policy to all four moments.
"""

from .design import (
    DesignSpec,
    DesignEncoder,
    NaturalSplineBasis,
    OrthogonalPolynomialBasis,
    inverse_transform,
    transform_response,
)
from .errors import (
    ClusterMomentsError,
    CrossValidationError,
    DomainError,
    NonNestedModelsError,
    RankDeficiencyError,
    UnclassifiedBoundaryError,
    UnseenLevelError,
)
from .fitting import FittedModel, fit, fit_ridge
from .prediction import (
    confidence_interval_tables,
    confidence_intervals,
    predict,
    predict_table,
)
from .recode import (
    RESPONSES,
    classify_flow,
    classify_gravity,
    recode,
    recode_table,
    validate_observations,
)
from .scoring import (
    ScoreRecord,
    anova_table,
    cv_mse,
    fold_assignments,
    score,
    score_table,
    sequential_anova,
)
from .selection import MomentModelSelector, choose_transform, select_ridge_lambda

__version__ = "0.1.0"

__all__ = [
    "DesignSpec", "DesignEncoder", "NaturalSplineBasis",
    "OrthogonalPolynomialBasis", "inverse_transform", "transform_response",
    "ClusterMomentsError", "CrossValidationError", "DomainError",
    "NonNestedModelsError", "RankDeficiencyError",
    "UnclassifiedBoundaryError", "UnseenLevelError",
    "FittedModel", "fit", "fit_ridge",
    "confidence_interval_tables", "confidence_intervals", "predict",
    "predict_table",
    "RESPONSES", "classify_flow", "classify_gravity", "recode",
    "recode_table", "validate_observations",
    "ScoreRecord", "anova_table", "cv_mse", "fold_assignments", "score",
    "score_table", "sequential_anova",
    "MomentModelSelector", "choose_transform", "select_ridge_lambda",
]
