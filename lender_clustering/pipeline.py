"""
Main pipeline orchestrating the clustering workflow.
"""

import numpy as np
import pandas as pd
from typing import List, Dict, Optional, Union

from .config import PipelineConfig
from .data_structures import ApplicationRecord, METRIC_COLUMNS
from .data_loader import ApplicationLoader
from .aggregation import MetricAggregator
from .sanitizer import RecordSanitizer
from .feature_engineering import Standardizer
from .distance import DistanceEngine
from .hierarchical import HierarchicalClusterer, MergeTree
from .model_selection import ClusterCountSelector, SelectionResult
from .clustering import PartitionClusterer, PartitionResult
from .interpretation import SegmentFilter, summarize_metrics, cluster_profiles


class LenderClusteringPipeline:
    """
    Complete two-stage pipeline for institution clustering.

    Stage A: average-linkage hierarchical clustering of the top-N
    institutions by application volume (exploratory merge tree).
    Stage B: cluster count selection then k-medoids over institutions
    with at least min_applications applications.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        """
        Initialize clustering pipeline.

        Args:
            config: Pipeline parameters (default: PipelineConfig())
        """
        self.config = config or PipelineConfig()
        self._reset()

    def _reset(self):
        """Forget every result of a previous fit."""
        # Components
        self.aggregator: Optional[MetricAggregator] = None
        self.sanitizer: Optional[RecordSanitizer] = None
        self.top_standardizer: Optional[Standardizer] = None
        self.partition_standardizer: Optional[Standardizer] = None
        self.distance_engine: Optional[DistanceEngine] = None
        self.hierarchical: Optional[HierarchicalClusterer] = None
        self.selector: Optional[ClusterCountSelector] = None
        self.partitioner: Optional[PartitionClusterer] = None
        self.segment_filter: Optional[SegmentFilter] = None

        # Data
        self.metrics: Optional[pd.DataFrame] = None
        self.top_subset: Optional[pd.DataFrame] = None
        self.partition_subset: Optional[pd.DataFrame] = None
        self.distances: Optional[pd.DataFrame] = None
        self.merge_tree: Optional[MergeTree] = None
        self.selection: Optional[SelectionResult] = None
        self.partition: Optional[PartitionResult] = None

    def _reset_hierarchical(self):
        self.top_standardizer = None
        self.distance_engine = None
        self.hierarchical = None
        self.top_subset = None
        self.distances = None
        self.merge_tree = None

    def _reset_partition(self):
        self.partition_standardizer = None
        self.selector = None
        self.partitioner = None
        self.segment_filter = None
        self.partition_subset = None
        self.selection = None
        self.partition = None

    def _population(self, records: Union[List[ApplicationRecord], pd.DataFrame]):
        ethnicity = self.config.ethnicity
        if isinstance(records, pd.DataFrame):
            if not ethnicity:
                return records
            if 'ethnicity' not in records.columns:
                raise ValueError(
                    f"Cannot select population '{ethnicity}': "
                    "records have no 'ethnicity' column"
                )
            return records[records['ethnicity'] == ethnicity]
        records = list(records)
        if ethnicity:
            return ApplicationLoader.filter_population(records, ethnicity)
        return records

    def build_metrics(self, records: Union[List[ApplicationRecord], pd.DataFrame]) -> pd.DataFrame:
        """Aggregate and sanitize per-institution metrics."""
        self._reset()
        population = self._population(records)
        print(f"Aggregating {len(population)} applications "
              f"(population: {self.config.ethnicity or 'all'})...")

        self.aggregator = MetricAggregator(population)
        raw = self.aggregator.aggregate()
        print(f"{len(raw)} institutions with accepted applications "
              f"({self.aggregator.n_excluded} without)")

        self.sanitizer = RecordSanitizer(METRIC_COLUMNS)
        self.metrics = self.sanitizer.sanitize(raw)
        return self.metrics

    def run_hierarchical(self) -> MergeTree:
        """Stage A on the top_n institutions by total applications."""
        metrics = self.get_metrics()
        self._reset_hierarchical()
        top_subset = metrics.head(self.config.top_n)
        print(f"Hierarchical clustering of top {len(top_subset)} institutions...")

        standardizer = Standardizer()
        scaled = standardizer.fit_transform(top_subset, METRIC_COLUMNS)
        self.top_standardizer = standardizer
        self.top_subset = top_subset

        self.distance_engine = DistanceEngine()
        self.distances = self.distance_engine.pairwise(scaled)

        self.hierarchical = HierarchicalClusterer()
        self.merge_tree = self.hierarchical.fit(self.distances)
        coph = self.merge_tree.cophenetic_correlation(self.distance_engine.condensed())
        print(f"Merge tree: {len(self.merge_tree)} merges, "
              f"max height {self.merge_tree.heights.max():.3f}, "
              f"cophenetic correlation {coph:.3f}")
        return self.merge_tree

    def run_partition(self) -> PartitionResult:
        """Stage B on institutions with at least min_applications applications."""
        metrics = self.get_metrics()
        self._reset_partition()
        subset = metrics[metrics['total_count'] >= self.config.min_applications]
        print(f"Partitioning {len(subset)} institutions with "
              f">= {self.config.min_applications} applications...")

        # separate scaling basis from the hierarchical subset
        standardizer = Standardizer()
        scaled = standardizer.fit_transform(subset, METRIC_COLUMNS)
        self.partition_standardizer = standardizer
        self.partition_subset = subset

        self.selector = ClusterCountSelector(
            min_k=self.config.min_k,
            max_k=self.config.max_k,
            random_state=self.config.random_state,
        )
        self.selection = self.selector.select(scaled.to_numpy())
        print(f"Votes: {self.selection.votes}")
        print(f"Chosen k={self.selection.k} ({self.selection.decision_rule})")

        self.partitioner = PartitionClusterer(
            n_clusters=self.selection.k,
            random_state=self.config.random_state,
            init=self.config.init,
            max_iter=self.config.max_iter,
        )
        self.partition = self.partitioner.fit(scaled)
        print(f"k-medoids {'converged' if self.partition.converged else 'stopped'} "
              f"after {self.partition.n_iter} iterations")
        print(f"Cluster sizes: {self.partitioner.get_cluster_sizes()}")
        print(f"Medoids: {self.partition.medoids}")

        self.segment_filter = SegmentFilter(
            self.partition.assignment,
            self.partition_subset,
            self.config.interest_rate_threshold,
        )
        return self.partition

    def fit(self, records: Union[List[ApplicationRecord], pd.DataFrame]):
        """
        Fit the complete pipeline.

        Args:
            records: Application records (ApplicationRecord list or a
                DataFrame from ApplicationLoader.to_dataframe())

        Returns:
            self
        """
        self.build_metrics(records)
        self.run_hierarchical()
        self.run_partition()
        return self

    def get_metrics(self) -> pd.DataFrame:
        """Get sanitized institution metrics."""
        if self.metrics is None:
            raise ValueError("Pipeline not fitted yet. Call fit() first.")
        return self.metrics

    def get_merge_tree(self) -> MergeTree:
        if self.merge_tree is None:
            raise ValueError("Pipeline not fitted yet. Call fit() first.")
        return self.merge_tree

    def get_assignments(self) -> pd.DataFrame:
        """Get institution-to-cluster assignments with original metrics."""
        if self.partition is None:
            raise ValueError("Pipeline not fitted yet. Call fit() first.")
        out = self.partition_subset.copy()
        out['cluster'] = self.partition.assignment
        out['is_medoid'] = out.index.isin(self.partition.medoids)
        return out

    def get_cluster_labels(self) -> np.ndarray:
        """Get cluster labels for the partitioned institutions."""
        if self.partition is None:
            raise ValueError("Pipeline not fitted yet. Call fit() first.")
        return self.partition.assignment.to_numpy()

    def get_cluster_summary(self) -> pd.DataFrame:
        """Per-cluster pam statistics joined with metric profiles."""
        if self.partition is None:
            raise ValueError("Pipeline not fitted yet. Call fit() first.")
        profiles = cluster_profiles(self.partition_subset, self.partition.assignment)
        return self.partition.cluster_info.join(profiles)

    def get_metric_summary(self, subset: str = 'all') -> pd.DataFrame:
        """Summary statistics of 'all', 'top' or 'partition' institutions."""
        frames = {
            'all': self.metrics,
            'top': self.top_subset,
            'partition': self.partition_subset,
        }
        if subset not in frames:
            raise ValueError(f"Unknown subset: {subset}")
        if frames[subset] is None:
            raise ValueError("Pipeline not fitted yet. Call fit() first.")
        return summarize_metrics(frames[subset])

    def get_segments(self) -> Dict[str, pd.DataFrame]:
        """Named cluster / interest rate segments."""
        if self.segment_filter is None:
            raise ValueError("Pipeline not fitted yet. Call fit() first.")
        return self.segment_filter.segments()
