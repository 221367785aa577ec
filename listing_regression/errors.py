"""
Pipeline Exceptions
===================

Error types raised by the curation, preprocessing and training stages.
Data errors are fatal and propagate to the caller; non-convergence is
reported on the fitted model instead of raised.
"""


class SchemaError(ValueError):
    """Input table does not match the listing schema."""


class CurationError(ValueError):
    """Curation cannot produce a usable table."""


class ImputationError(CurationError):
    """A retained column has no observed value to impute from."""


class UnseenCategoryError(ValueError):
    """A categorical value outside the fixed level set was encountered."""

    def __init__(self, column: str, values):
        self.column = column
        self.values = sorted(str(v) for v in values)
        super().__init__(
            f"Unseen levels in categorical column '{column}': {self.values}"
        )


class FitTimeoutError(TimeoutError):
    """A single model fit exceeded its wall-clock budget."""

    def __init__(self, label: str, seconds: float):
        self.label = label
        self.seconds = seconds
        super().__init__(f"Fitting '{label}' exceeded the time budget of {seconds:.3f}s")
