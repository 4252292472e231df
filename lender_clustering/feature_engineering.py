"""
Feature engineering for institution metrics.
Standardizes metric columns to zero mean and unit variance.
"""

import numpy as np
import pandas as pd
from typing import List, Optional

from .data_structures import METRIC_COLUMNS
from .exceptions import DegenerateInputError


class Standardizer:
    """
    Z-score standardization against the subset it is fitted on.

    Uses the sample standard deviation (ddof=1), like R's scale().
    Each clustering subset needs its own instance: the scaling basis is
    part of the result.
    """

    def __init__(self):
        self.columns: Optional[List[str]] = None
        self.mean_: Optional[pd.Series] = None
        self.std_: Optional[pd.Series] = None

    def fit(self, df: pd.DataFrame, columns: Optional[List[str]] = None) -> "Standardizer":
        """
        Compute per-column mean and sample standard deviation.

        Args:
            df: Metrics subset (one row per institution)
            columns: Columns to standardize (default: the three metrics)

        Raises:
            DegenerateInputError: fewer than two rows, or a column with
                zero or undefined standard deviation
        """
        columns = list(columns or METRIC_COLUMNS)
        if len(df) < 2:
            raise DegenerateInputError(
                f"Need at least 2 institutions to standardize, got {len(df)}",
                columns=columns,
            )

        values = df[columns].astype(float)
        mean = values.mean(axis=0)
        std = values.std(axis=0, ddof=1)

        degenerate = [c for c in columns if not np.isfinite(std[c]) or std[c] == 0]
        if degenerate:
            raise DegenerateInputError(
                f"Zero variance in column(s) {degenerate}; cannot standardize",
                columns=degenerate,
            )

        self.columns = columns
        self.mean_ = mean
        self.std_ = std
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """Apply the fitted scaling; keeps the input index."""
        if self.mean_ is None:
            raise ValueError("Standardizer not fitted. Call fit() first.")
        values = df[self.columns].astype(float)
        return (values - self.mean_) / self.std_

    def fit_transform(self, df: pd.DataFrame,
                      columns: Optional[List[str]] = None) -> pd.DataFrame:
        return self.fit(df, columns).transform(df)

    def inverse_transform(self, scaled: pd.DataFrame) -> pd.DataFrame:
        """Map z-scores back to original metric units."""
        if self.mean_ is None:
            raise ValueError("Standardizer not fitted. Call fit() first.")
        return scaled[self.columns] * self.std_ + self.mean_
