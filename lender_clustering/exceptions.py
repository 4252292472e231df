"""
Errors and warnings raised by the clustering pipeline.
"""


class MissingMetricError(KeyError):
    """An institution has no total or no accepted applications, so its metrics are undefined."""

    def __init__(self, institution: str, reason: str):
        self.institution = institution
        self.reason = reason
        super().__init__(f"{institution}: {reason}")

    def __str__(self):
        return f"{self.institution}: {self.reason}"


class DegenerateInputError(ValueError):
    """A metric column cannot be standardized (zero variance or too few rows)."""

    def __init__(self, message: str, columns=None):
        self.columns = list(columns or [])
        super().__init__(message)


class NonConvergenceWarning(RuntimeWarning):
    """k-medoids hit its iteration cap before the medoids stabilized."""


class SelectionAmbiguityWarning(UserWarning):
    """No candidate cluster count won the index vote outright."""
