"""
Pipeline configuration.
"""

import json
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict


@dataclass
class PipelineConfig:
    """
    Parameters of a pipeline run.

    Attributes:
        ethnicity: Applicant population to keep (HMDA derived_ethnicity value)
        top_n: Number of highest-volume institutions used for hierarchical clustering
        min_applications: Minimum total applications for the partitioning subset
        min_k: Smallest cluster count evaluated by the selector
        max_k: Largest cluster count evaluated by the selector
        random_state: Seed for KMeans during selection and for medoid initialization
        interest_rate_threshold: Cutoff separating low and high rate segments
        max_iter: Iteration cap for k-medoids
        init: k-medoids initialization ('build', 'k-medoids++', 'random')
    """
    ethnicity: str = "Hispanic or Latino"
    top_n: int = 100
    min_applications: int = 1000
    min_k: int = 2
    max_k: int = 15
    random_state: int = 1234
    interest_rate_threshold: float = 3.5
    max_iter: int = 300
    init: str = "build"

    def __post_init__(self):
        if self.top_n < 2:
            raise ValueError("top_n must be at least 2")
        if self.min_k < 2:
            raise ValueError("min_k must be at least 2")
        if self.max_k < self.min_k:
            raise ValueError(f"max_k ({self.max_k}) must be >= min_k ({self.min_k})")
        if self.max_iter < 1:
            raise ValueError("max_iter must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Build a config from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_json(cls, path: str) -> "PipelineConfig":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))
