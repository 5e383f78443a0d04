"""
Error types raised while building the SIRS cohort.

MalformedInputError and ImputationFailure are fatal and abort the run.
EmptyGroupWarning is only ever issued through the warnings module: a stay with no
readings for a measurement yields an absent aggregate, not a failure.
"""


class CohortBuildError(Exception):
    """Base class for fatal cohort-building errors."""


class MalformedInputError(CohortBuildError, ValueError):
    """
    Raised when an input table is missing required columns, holds a value that
    cannot be parsed, or breaks the subject/admission/ICU stay hierarchy.
    """


class ImputationFailure(CohortBuildError, RuntimeError):
    """Raised when the KNN imputer cannot be fitted or is used before fitting."""


class EmptyGroupWarning(UserWarning):
    """Issued when some ICU stays have no readings at all for a measurement."""
