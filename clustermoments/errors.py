"""
Exception taxonomy for the cluster-moment model-selection engine.

Every error is raised at the point where the problem is detectable
(recoding, design construction, fitting, prediction) and is never
silently coerced into NaN or a dropped row.
"""


class ClusterMomentsError(Exception):
    """Base class for all engine errors."""


class DomainError(ClusterMomentsError, ValueError):
    """A response transform was asked for values outside its domain
    (e.g. the log of a non-positive moment)."""


class RankDeficiencyError(ClusterMomentsError, ValueError):
    """The design matrix is not of full column rank."""

    def __init__(self, message, columns=()):
        super().__init__(message)
        self.columns = tuple(columns)


class UnseenLevelError(ClusterMomentsError, ValueError):
    """A prediction row uses a categorical level absent from the fit."""

    def __init__(self, message, factor=None, levels=()):
        super().__init__(message)
        self.factor = factor
        self.levels = tuple(levels)


class UnclassifiedBoundaryError(ClusterMomentsError, ValueError):
    """A predictor value sits exactly on a recoding threshold."""

    def __init__(self, message, predictor=None, value=None):
        super().__init__(message)
        self.predictor = predictor
        self.value = value


class NonNestedModelsError(ClusterMomentsError, ValueError):
    """Models handed to a sequential ANOVA are not strictly nested."""


class CrossValidationError(ClusterMomentsError, RuntimeError):
    """A cross-validation fold could not be fitted or predicted.

    The run is aborted rather than skipping the fold; the underlying
    error is chained as ``__cause__``.
    """

    def __init__(self, message, fold=None):
        super().__init__(message)
        self.fold = fold
