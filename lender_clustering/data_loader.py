"""
Adapters turning tabular loan application data into ApplicationRecord objects.
"""

import pandas as pd
from typing import List, Dict, Any, Optional
from .data_structures import ApplicationRecord, Outcome


class ApplicationLoader:
    """Load loan application rows into structured records."""

    @staticmethod
    def _to_float(value) -> Optional[float]:
        # HMDA exports use "Exempt" / "NA" strings for missing rates
        number = pd.to_numeric(value, errors='coerce')
        if pd.isna(number):
            return None
        return float(number)

    @staticmethod
    def from_dataframe(df: pd.DataFrame,
                       institution_id_col: str = 'lei',
                       name_col: str = 'respondent_name',
                       ethnicity_col: str = 'derived_ethnicity',
                       action_col: str = 'action_taken',
                       interest_rate_col: str = 'interest_rate',
                       loan_amount_col: str = 'loan_amount') -> List[ApplicationRecord]:
        """
        Load application records from a pandas DataFrame.

        Expected DataFrame columns (HMDA LAR names, already joined with
        institution display names):
        - lei: institution identifier
        - respondent_name: institution display name
        - derived_ethnicity: applicant ethnicity category
        - action_taken: HMDA action code (1 = originated)
        - interest_rate: numeric or missing
        - loan_amount: numeric

        Rows with no institution name are skipped.

        Args:
            df: Input DataFrame
            institution_id_col: Name of institution ID column
            name_col: Name of institution name column
            ethnicity_col: Name of ethnicity column
            action_col: Name of action taken column
            interest_rate_col: Name of interest rate column
            loan_amount_col: Name of loan amount column

        Returns:
            List of ApplicationRecord objects
        """
        records = []

        for row in df.to_dict(orient='records'):
            name = row.get(name_col)
            if name is None or pd.isna(name):
                continue

            loan_amount = ApplicationLoader._to_float(row.get(loan_amount_col))
            records.append(ApplicationRecord(
                institution_id=str(row.get(institution_id_col, '')),
                institution_name=str(name),
                ethnicity=str(row.get(ethnicity_col, '')),
                outcome=Outcome.from_action_taken(row.get(action_col)),
                loan_amount=loan_amount if loan_amount is not None else float('nan'),
                interest_rate=ApplicationLoader._to_float(row.get(interest_rate_col)),
            ))

        return records

    @staticmethod
    def from_dict_list(data: List[Dict[str, Any]]) -> List[ApplicationRecord]:
        """
        Load application records from a list of dictionaries using the
        same keys as from_dataframe().
        """
        return ApplicationLoader.from_dataframe(pd.DataFrame(data))

    @staticmethod
    def filter_population(records: List[ApplicationRecord],
                          ethnicity: str) -> List[ApplicationRecord]:
        """Keep only the applications from one ethnicity category."""
        return [r for r in records if r.ethnicity == ethnicity]

    @staticmethod
    def to_dataframe(records: List[ApplicationRecord]) -> pd.DataFrame:
        """Convert records to the column layout used by MetricAggregator."""
        return pd.DataFrame({
            'institution_id': [r.institution_id for r in records],
            'institution_name': [r.institution_name for r in records],
            'ethnicity': [r.ethnicity for r in records],
            'accepted': [r.accepted for r in records],
            'interest_rate': pd.Series([r.interest_rate for r in records], dtype=float),
            'loan_amount': [r.loan_amount for r in records],
        })
