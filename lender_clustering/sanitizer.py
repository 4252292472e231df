"""
Removal of institutions with incomplete metrics.
"""

import pandas as pd
from typing import List, Optional

from .data_structures import METRIC_COLUMNS


class RecordSanitizer:
    """Drop metric rows with a missing value in any continuous metric."""

    def __init__(self, columns: Optional[List[str]] = None):
        self.columns = list(columns or METRIC_COLUMNS)
        self.removed: List[str] = []

    def sanitize(self, metrics: pd.DataFrame) -> pd.DataFrame:
        """
        Return only the complete rows.

        Missing metrics are expected for some institutions, so nothing is
        raised; the removed institutions are kept in self.removed.
        """
        complete = metrics[self.columns].notna().all(axis=1)
        self.removed = [str(name) for name in metrics.index[~complete]]
        print(f"Removed {self.n_removed} institutions with missing metrics "
              f"({int(complete.sum())} remaining)")
        return metrics[complete].copy()

    @property
    def n_removed(self) -> int:
        return len(self.removed)
