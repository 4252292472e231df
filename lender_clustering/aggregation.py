"""
Per-institution aggregation of loan application records.
"""

import numpy as np
import pandas as pd
from typing import List, Union, Optional

from .data_structures import (
    ApplicationRecord, InstitutionMetrics,
    PCT_ACCEPTED, MEAN_INTEREST_RATE, MEAN_LOAN_AMOUNT,
)
from .data_loader import ApplicationLoader
from .exceptions import MissingMetricError


METRICS_FRAME_COLUMNS = [
    "total_count", "accepted_count",
    PCT_ACCEPTED, MEAN_INTEREST_RATE, MEAN_LOAN_AMOUNT,
]


class MetricAggregator:
    """
    Builds the institution-level metrics table from application records.

    The records must already be restricted to one applicant population.
    Interest rates and loan amounts are averaged over accepted applications
    only; institutions without any accepted application get no row.
    """

    def __init__(self, records: Union[List[ApplicationRecord], pd.DataFrame]):
        """
        Args:
            records: ApplicationRecord list, or a DataFrame with the columns
                produced by ApplicationLoader.to_dataframe()
        """
        if isinstance(records, pd.DataFrame):
            self.records = records
        else:
            self.records = ApplicationLoader.to_dataframe(list(records))

        self.metrics: Optional[pd.DataFrame] = None
        self.excluded: List[str] = []

    def _group(self):
        return self.records.groupby("institution_name", sort=False)

    def _accepted(self) -> pd.DataFrame:
        return self.records[self.records["accepted"].astype(bool)]

    def total_count(self, institution: str) -> int:
        """Number of applications received by the institution."""
        return int((self.records["institution_name"] == institution).sum())

    def accepted_count(self, institution: str) -> int:
        """Number of accepted applications of the institution."""
        accepted = self._accepted()
        return int((accepted["institution_name"] == institution).sum())

    def acceptance_pct(self, institution: str) -> float:
        total = self.total_count(institution)
        if total == 0:
            raise MissingMetricError(institution, "no applications")
        return self.accepted_count(institution) * 100 / total

    def _accepted_mean(self, institution: str, column: str) -> float:
        accepted = self._accepted()
        values = accepted.loc[accepted["institution_name"] == institution, column]
        if len(values) == 0:
            raise MissingMetricError(institution, "no accepted applications")
        return float(values.mean())

    def mean_interest_rate(self, institution: str) -> float:
        """Mean interest rate over accepted applications."""
        return self._accepted_mean(institution, "interest_rate")

    def mean_loan_amount(self, institution: str) -> float:
        """Mean loan amount over accepted applications."""
        return self._accepted_mean(institution, "loan_amount")

    def aggregate(self) -> pd.DataFrame:
        """
        Compute metrics for every institution with at least one accepted
        application.

        Returns:
            DataFrame indexed by institution name, sorted by total_count
            descending (then by name), with columns total_count,
            accepted_count, pct_accepted, mean_interest_rate, mean_loan_amount
        """
        if self.records.empty:
            self.metrics = pd.DataFrame(columns=METRICS_FRAME_COLUMNS)
            self.metrics.index.name = "institution_name"
            return self.metrics

        totals = self._group().size().rename("total_count")

        accepted = self._accepted()
        grouped = accepted.groupby("institution_name", sort=False)
        accepted_stats = pd.DataFrame({
            "accepted_count": grouped.size(),
            MEAN_INTEREST_RATE: grouped["interest_rate"].mean(),
            MEAN_LOAN_AMOUNT: grouped["loan_amount"].mean(),
        })

        # inner join: institutions with zero accepted applications drop out here
        metrics = accepted_stats.join(totals, how="inner")
        metrics[PCT_ACCEPTED] = metrics["accepted_count"] * 100 / metrics["total_count"]

        metrics = metrics[METRICS_FRAME_COLUMNS].copy()
        metrics["total_count"] = metrics["total_count"].astype(np.int64)
        metrics["accepted_count"] = metrics["accepted_count"].astype(np.int64)
        metrics.index.name = "institution_name"

        metrics = (
            metrics.reset_index()
            .sort_values(["total_count", "institution_name"], ascending=[False, True])
            .set_index("institution_name")
        )

        self.excluded = sorted(set(totals.index) - set(metrics.index))
        self.metrics = metrics
        return metrics

    @property
    def n_excluded(self) -> int:
        """Institutions dropped for lack of accepted applications."""
        return len(self.excluded)

    def get_metrics(self) -> pd.DataFrame:
        if self.metrics is None:
            raise ValueError("Metrics not computed yet. Call aggregate() first.")
        return self.metrics

    def get_institution(self, institution: str) -> InstitutionMetrics:
        """Metrics for one institution as a dataclass."""
        metrics = self.get_metrics()
        if institution not in metrics.index:
            raise MissingMetricError(institution, "no metrics row")
        return InstitutionMetrics.from_row(institution, metrics.loc[institution])
