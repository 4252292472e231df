"""
Pairwise Euclidean distances between institutions.
"""

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from typing import Optional


class DistanceEngine:
    """Euclidean distances in standardized metric space."""

    def __init__(self):
        self.condensed_: Optional[np.ndarray] = None
        self.labels_ = None

    def pairwise(self, standardized: pd.DataFrame) -> pd.DataFrame:
        """
        Compute the full distance matrix.

        Args:
            standardized: Z-scores, one row per institution

        Returns:
            Square DataFrame indexed both ways by institution, in input order
        """
        X = standardized.to_numpy(dtype=float)
        if not np.all(np.isfinite(X)):
            raise ValueError("Standardized metrics contain NaN or infinite values")

        self.condensed_ = pdist(X, metric="euclidean")
        self.labels_ = list(standardized.index)

        if len(X) < 2:
            matrix = np.zeros((len(X), len(X)))
        else:
            # squareform gives an exactly symmetric matrix with a zero diagonal
            matrix = squareform(self.condensed_)
        return pd.DataFrame(matrix, index=self.labels_, columns=self.labels_)

    def condensed(self) -> np.ndarray:
        """Upper triangle of the last matrix, in scipy's pdist layout."""
        if self.condensed_ is None:
            raise ValueError("No distances computed yet. Call pairwise() first.")
        return self.condensed_
