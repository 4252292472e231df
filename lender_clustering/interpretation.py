"""
Cluster interpretation: metric summaries and threshold-based segments.
"""

import pandas as pd
from typing import Dict, List, Optional

from .data_structures import METRIC_COLUMNS, MEAN_INTEREST_RATE


def summarize_metrics(metrics: pd.DataFrame,
                      columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Min, quartiles, median, mean and max for each metric column.

    Returns:
        DataFrame with one row per metric
    """
    columns = list(columns or METRIC_COLUMNS)
    values = metrics[columns].astype(float)
    return pd.DataFrame({
        'min': values.min(),
        'q1': values.quantile(0.25),
        'median': values.median(),
        'mean': values.mean(),
        'q3': values.quantile(0.75),
        'max': values.max(),
    })


def cluster_profiles(metrics: pd.DataFrame, assignment: pd.Series,
                     columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Per-cluster size, mean and median of each metric in original units.

    Args:
        metrics: Unstandardized metrics indexed by institution
        assignment: Institution -> cluster label
    """
    columns = list(columns or METRIC_COLUMNS)
    joined = metrics.loc[assignment.index, columns].astype(float)
    grouped = joined.groupby(assignment.rename('cluster'))

    profile = grouped.agg(['mean', 'median'])
    profile.columns = [f"{col}_{stat}" for col, stat in profile.columns]
    profile.insert(0, 'n_institutions', grouped.size())
    return profile


class SegmentFilter:
    """
    Slice a cluster assignment into named reporting segments.

    Institutions are split by cluster label and by whether their mean
    interest rate is above the configured threshold. Only selection
    happens here; no metric is recomputed.
    """

    def __init__(self, assignment: pd.Series, metrics: pd.DataFrame,
                 interest_rate_threshold: float):
        """
        Args:
            assignment: Institution -> cluster label
            metrics: Unstandardized metrics indexed by institution
            interest_rate_threshold: Rate separating low and high segments
        """
        missing = assignment.index.difference(metrics.index)
        if len(missing):
            raise ValueError(f"No metrics for assigned institutions: {list(missing)[:5]}")

        self.threshold = interest_rate_threshold
        self.frame = metrics.loc[assignment.index].copy()
        self.frame['cluster'] = assignment.astype(int)

    @property
    def labels(self) -> List[int]:
        return sorted(int(c) for c in self.frame['cluster'].unique())

    def high_band(self) -> str:
        return f"> {self.threshold:g}"

    def low_band(self) -> str:
        return f"<= {self.threshold:g}"

    def cluster(self, label: int) -> pd.DataFrame:
        """All institutions of one cluster."""
        if label not in self.labels:
            raise ValueError(f"Unknown cluster label: {label}")
        return self.frame[self.frame['cluster'] == label].copy()

    def label_interest_rate(self, frame: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """Add a rate_band column marking institutions above the threshold."""
        frame = (self.frame if frame is None else frame).copy()
        high = frame[MEAN_INTEREST_RATE] > self.threshold
        frame['rate_band'] = high.map({True: self.high_band(), False: self.low_band()})
        return frame

    def above_threshold(self, label: int) -> pd.DataFrame:
        members = self.cluster(label)
        return self.label_interest_rate(members[members[MEAN_INTEREST_RATE] > self.threshold])

    def below_threshold(self, label: int) -> pd.DataFrame:
        members = self.cluster(label)
        return self.label_interest_rate(members[members[MEAN_INTEREST_RATE] <= self.threshold])

    def segments(self) -> Dict[str, pd.DataFrame]:
        """
        Named sub-segments for reporting.

        Returns:
            Dict with cluster_{c}, cluster_{c}_low_rate and
            cluster_{c}_high_rate for every cluster label c
        """
        out = {}
        for label in self.labels:
            out[f"cluster_{label}"] = self.label_interest_rate(self.cluster(label))
            out[f"cluster_{label}_low_rate"] = self.below_threshold(label)
            out[f"cluster_{label}_high_rate"] = self.above_threshold(label)
        return out
