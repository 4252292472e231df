"""
Agglomerative hierarchical clustering with average linkage (UPGMA).

The merge tree is exploratory output: it is meant to be rendered as a
dendrogram or inspected, and the pipeline never cuts it into labels.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import List, Optional, Union
from scipy.cluster.hierarchy import cophenet, fcluster, leaves_list
from scipy.spatial.distance import squareform


@dataclass(frozen=True)
class Merge:
    """One agglomeration step, using scipy linkage cluster ids."""
    cluster_a: int
    cluster_b: int
    height: float
    size: int


class MergeTree:
    """
    Ordered merge sequence over n labelled leaves.

    Leaves are ids 0..n-1; the cluster formed at step i has id n + i,
    so the tree converts directly to a scipy linkage matrix.
    """

    def __init__(self, merges: List[Merge], labels: List[str]):
        self.merges = merges
        self.labels = list(labels)

    @property
    def n_leaves(self) -> int:
        return len(self.labels)

    @property
    def heights(self) -> np.ndarray:
        return np.array([m.height for m in self.merges], dtype=float)

    def __len__(self):
        return len(self.merges)

    def to_linkage_matrix(self) -> np.ndarray:
        """(n-1, 4) array accepted by scipy.cluster.hierarchy.dendrogram."""
        return np.array(
            [[m.cluster_a, m.cluster_b, m.height, m.size] for m in self.merges],
            dtype=float,
        ).reshape(-1, 4)

    def _describe(self, cluster_id: int) -> str:
        if cluster_id < self.n_leaves:
            return self.labels[cluster_id]
        return f"merge_{cluster_id - self.n_leaves + 1}"

    def to_frame(self) -> pd.DataFrame:
        """Merge sequence as a table, with leaf names where available."""
        return pd.DataFrame({
            'step': range(1, len(self.merges) + 1),
            'cluster_a': [m.cluster_a for m in self.merges],
            'cluster_b': [m.cluster_b for m in self.merges],
            'member_a': [self._describe(m.cluster_a) for m in self.merges],
            'member_b': [self._describe(m.cluster_b) for m in self.merges],
            'height': [m.height for m in self.merges],
            'size': [m.size for m in self.merges],
        })

    def leaf_order(self) -> List[str]:
        """Leaf labels in dendrogram left-to-right order."""
        return [self.labels[i] for i in leaves_list(self.to_linkage_matrix())]

    def cut(self, height: float) -> pd.Series:
        """Flat cluster labels obtained by cutting the tree at a height."""
        labels = fcluster(self.to_linkage_matrix(), t=height, criterion='distance')
        return pd.Series(labels, index=self.labels, name='cluster')

    def cophenetic_correlation(self, distances: Union[pd.DataFrame, np.ndarray]) -> float:
        """Correlation between cophenetic and original distances."""
        if isinstance(distances, pd.DataFrame):
            distances = distances.to_numpy()
        distances = np.asarray(distances, dtype=float)
        if distances.ndim == 2:
            distances = squareform(distances, checks=False)
        c, _ = cophenet(self.to_linkage_matrix(), distances)
        return float(c)


class HierarchicalClusterer:
    """
    Average linkage agglomeration over a square distance matrix.

    Ties between equal average distances are resolved deterministically:
    every active cluster lives in the slot of its lowest original index and
    the first minimal (slot_a, slot_b) pair in row-major order is merged.
    """

    def __init__(self):
        self.tree_: Optional[MergeTree] = None

    def fit(self, distances: pd.DataFrame) -> MergeTree:
        """
        Build the full merge tree.

        Args:
            distances: Square symmetric distance matrix labelled by institution

        Returns:
            MergeTree with n-1 merges
        """
        D = np.array(distances.to_numpy(), dtype=float)
        n = D.shape[0]
        if D.ndim != 2 or D.shape[1] != n:
            raise ValueError(f"Distance matrix must be square, got shape {D.shape}")
        if n < 2:
            raise ValueError("Hierarchical clustering needs at least 2 institutions")
        if not np.allclose(D, D.T):
            raise ValueError("Distance matrix is not symmetric")

        sizes = np.ones(n, dtype=np.int64)
        cluster_ids = np.arange(n)
        active = np.ones(n, dtype=bool)

        # only the strict upper triangle is searched
        work = D.copy()
        work[np.tril_indices(n)] = np.inf

        merges = []
        for step in range(n - 1):
            flat = int(np.argmin(work))
            a, b = divmod(flat, n)
            height = float(work[a, b])

            id_a, id_b = int(cluster_ids[a]), int(cluster_ids[b])
            merges.append(Merge(
                cluster_a=min(id_a, id_b),
                cluster_b=max(id_a, id_b),
                height=height,
                size=int(sizes[a] + sizes[b]),
            ))

            # Lance-Williams update for average linkage
            others = active.copy()
            others[[a, b]] = False
            updated = (sizes[a] * D[a, others] + sizes[b] * D[b, others]) / (sizes[a] + sizes[b])
            D[a, others] = updated
            D[others, a] = updated

            sizes[a] += sizes[b]
            cluster_ids[a] = n + step
            active[b] = False

            idx = np.where(others)[0]
            work[a, idx[idx > a]] = updated[idx > a]
            work[idx[idx < a], a] = updated[idx < a]
            work[b, :] = np.inf
            work[:, b] = np.inf

        self.tree_ = MergeTree(merges, [str(label) for label in distances.index])
        return self.tree_

    def get_tree(self) -> MergeTree:
        if self.tree_ is None:
            raise ValueError("Clusterer not fitted. Call fit() first.")
        return self.tree_
