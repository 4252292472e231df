"""
Partitioning Around Medoids (k-medoids) for institution segmentation.
"""

import warnings
from dataclasses import dataclass
from typing import List, Literal, Optional, Union

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import silhouette_samples
from sklearn_extra.cluster import KMedoids

from .exceptions import NonConvergenceWarning


@dataclass
class PartitionResult:
    """
    Output of a k-medoids run.

    assignment maps institution name to a label in 1..k; labels are
    numbered by the row position of each cluster's medoid.
    """
    assignment: pd.Series
    medoids: List[str]
    medoid_coordinates: pd.DataFrame
    cluster_info: pd.DataFrame
    silhouette: pd.Series
    average_silhouette: float
    objective: float
    n_iter: int
    converged: bool

    @property
    def n_clusters(self) -> int:
        return len(self.medoids)


class PartitionClusterer:
    """
    Apply k-medoids clustering with Euclidean distance.

    Wraps scikit-learn-extra's KMedoids with the alternate method: each
    iteration assigns every point to its nearest medoid, then replaces each
    medoid by the member with the smallest total distance to the rest of its
    cluster. Stops when the medoid set no longer changes.
    """

    def __init__(self,
                 n_clusters: int,
                 random_state: Optional[int] = None,
                 init: Literal['build', 'k-medoids++', 'random'] = 'build',
                 max_iter: int = 300):
        """
        Initialize clusterer.

        Args:
            n_clusters: Number of clusters k
            random_state: Seed for 'k-medoids++' and 'random' initialization
            init: Medoid initialization ('build' is the greedy PAM BUILD step
                and uses no randomness)
            max_iter: Iteration cap; reaching it emits NonConvergenceWarning
        """
        if n_clusters < 1:
            raise ValueError("n_clusters must be at least 1")
        if max_iter < 1:
            raise ValueError("max_iter must be positive")
        if init not in ('build', 'k-medoids++', 'random'):
            raise ValueError(f"Unknown init: {init}")
        self.n_clusters = n_clusters
        self.random_state = random_state
        self.init = init
        self.max_iter = max_iter
        self.model: Optional[KMedoids] = None
        self.result_: Optional[PartitionResult] = None
        self.labels_: Optional[np.ndarray] = None

    def fit(self, X: Union[pd.DataFrame, np.ndarray]) -> PartitionResult:
        """
        Fit k-medoids.

        Args:
            X: Standardized metrics (n_institutions, n_features); a DataFrame
               index is used as institution names

        Returns:
            PartitionResult
        """
        if isinstance(X, pd.DataFrame):
            names = [str(i) for i in X.index]
            columns = list(X.columns)
            values = X.to_numpy(dtype=float)
        else:
            values = np.asarray(X, dtype=float)
            names = [str(i) for i in range(values.shape[0])]
            columns = [f"x{j}" for j in range(values.shape[1])]

        n = values.shape[0]
        if n < self.n_clusters:
            raise ValueError(
                f"Cannot form {self.n_clusters} clusters from {n} institutions"
            )
        if not np.all(np.isfinite(values)):
            raise ValueError("Input contains NaN or infinite values")

        self.model = KMedoids(
            n_clusters=self.n_clusters,
            metric='euclidean',
            method='alternate',
            init=self.init,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            self.model.fit(values)

        converged = True
        for w in caught:
            if issubclass(w.category, ConvergenceWarning):
                converged = False
            else:
                warnings.warn(w.message, w.category)
        if not converged:
            warnings.warn(
                f"k-medoids did not converge within {self.max_iter} iterations",
                NonConvergenceWarning,
            )

        D = squareform(pdist(values, metric='euclidean')) if n > 1 else np.zeros((1, 1))

        # clusters numbered by medoid row; ties go to the lowest-row medoid
        medoids = np.sort(self.model.medoid_indices_)
        labels = np.argmin(D[:, medoids], axis=1)
        labels[medoids] = np.arange(len(medoids))
        n_iter = int(getattr(self.model, 'n_iter_', 0)) + 1

        self.labels_ = labels + 1
        self.result_ = self._build_result(D, values, names, columns, medoids, labels,
                                          n_iter, converged)
        return self.result_

    def fit_predict(self, X: Union[pd.DataFrame, np.ndarray]) -> np.ndarray:
        """Fit and return labels in 1..k for each row."""
        self.fit(X)
        return self.labels_

    def _build_result(self, D, values, names, columns, medoids, labels,
                      n_iter, converged) -> PartitionResult:
        k = len(medoids)
        to_medoid = D[np.arange(len(labels)), medoids[labels]]

        info_rows = []
        for c in range(k):
            inside = labels == c
            within = D[np.ix_(inside, inside)]
            between = D[np.ix_(inside, ~inside)]
            info_rows.append({
                'cluster': c + 1,
                'size': int(inside.sum()),
                'max_diss': float(to_medoid[inside].max()),
                'av_diss': float(to_medoid[inside].mean()),
                'diameter': float(within.max()),
                'separation': float(between.min()) if between.size else float('nan'),
                'medoid': names[medoids[c]],
            })
        cluster_info = pd.DataFrame(info_rows).set_index('cluster')

        if 2 <= k <= len(labels) - 1:
            sil = silhouette_samples(D, labels, metric='precomputed')
            avg_sil = float(sil.mean())
        else:
            sil = np.full(len(labels), np.nan)
            avg_sil = float('nan')

        medoid_names = [names[m] for m in medoids]
        coordinates = pd.DataFrame(values[medoids], index=medoid_names, columns=columns)
        coordinates.insert(0, 'cluster', np.arange(1, k + 1))

        return PartitionResult(
            assignment=pd.Series(labels + 1, index=names, name='cluster'),
            medoids=medoid_names,
            medoid_coordinates=coordinates,
            cluster_info=cluster_info,
            silhouette=pd.Series(sil, index=names, name='silhouette'),
            average_silhouette=avg_sil,
            objective=float(to_medoid.sum()),
            n_iter=n_iter,
            converged=converged,
        )

    def get_cluster_labels(self) -> np.ndarray:
        """Get cluster labels."""
        if self.labels_ is None:
            raise ValueError("Clusterer not fitted. Call fit() first.")
        return self.labels_

    def get_cluster_sizes(self) -> dict:
        """Get the size of each cluster."""
        if self.labels_ is None:
            raise ValueError("Clusterer not fitted. Call fit() first.")

        unique, counts = np.unique(self.labels_, return_counts=True)
        return {int(u): int(c) for u, c in zip(unique, counts)}

    def get_medoids(self) -> List[str]:
        """Names of the medoid institutions, ordered by cluster label."""
        if self.result_ is None:
            raise ValueError("Clusterer not fitted. Call fit() first.")
        return self.result_.medoids
