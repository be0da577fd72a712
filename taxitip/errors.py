"""Error and warning types raised by the pipeline stages."""


class SchemaError(ValueError):
    """A required column is missing or cannot be converted to its expected type."""


class FitError(RuntimeError):
    """A model could not be fitted, e.g. a rank-deficient design matrix."""


class DataQualityWarning(UserWarning):
    """Non-fatal data issue (negative duration, unmapped payment code)."""
