"""
Data structures for loan application and institution metric representation.
"""

from dataclasses import dataclass
from typing import List, Optional
from enum import Enum

import pandas as pd


PCT_ACCEPTED = "pct_accepted"
MEAN_INTEREST_RATE = "mean_interest_rate"
MEAN_LOAN_AMOUNT = "mean_loan_amount"

# Continuous metrics used for standardization and clustering
METRIC_COLUMNS: List[str] = [PCT_ACCEPTED, MEAN_INTEREST_RATE, MEAN_LOAN_AMOUNT]

# HMDA action_taken code for "Loan originated"
ACTION_ORIGINATED = 1


class Outcome(Enum):
    """Decision outcome of a loan application."""
    ACCEPTED = "accepted"
    OTHER = "other"

    @classmethod
    def from_action_taken(cls, action_taken) -> "Outcome":
        """Map an HMDA action_taken code to an outcome."""
        try:
            code = int(action_taken)
        except (TypeError, ValueError):
            return cls.OTHER
        return cls.ACCEPTED if code == ACTION_ORIGINATED else cls.OTHER


@dataclass(frozen=True)
class ApplicationRecord:
    """A single loan application, already joined with the institution name."""
    institution_id: str
    institution_name: str
    ethnicity: str
    outcome: Outcome
    loan_amount: float
    interest_rate: Optional[float] = None

    @property
    def accepted(self) -> bool:
        return self.outcome is Outcome.ACCEPTED


@dataclass(frozen=True)
class InstitutionMetrics:
    """Aggregate metrics for one institution."""
    institution_name: str
    total_count: int
    accepted_count: int
    pct_accepted: float
    mean_interest_rate: float
    mean_loan_amount: float

    @classmethod
    def from_row(cls, name: str, row: pd.Series) -> "InstitutionMetrics":
        """Build from one row of the metrics DataFrame."""
        return cls(
            institution_name=name,
            total_count=int(row["total_count"]),
            accepted_count=int(row["accepted_count"]),
            pct_accepted=float(row[PCT_ACCEPTED]),
            mean_interest_rate=float(row[MEAN_INTEREST_RATE]),
            mean_loan_amount=float(row[MEAN_LOAN_AMOUNT]),
        )

    def as_vector(self) -> List[float]:
        return [self.pct_accepted, self.mean_interest_rate, self.mean_loan_amount]
