"""
Choice of the number of clusters by majority vote of internal validity indices.

For every candidate k a seeded KMeans partition is scored with:
- silhouette (higher is better)
- Calinski-Harabasz (higher is better)
- Davies-Bouldin (lower is better)
- elbow: knee of the inertia curve
- Hartigan: largest drop between H(k-1) and H(k)

Each index casts one vote; the most voted k wins when it is unique.
"""

import warnings
from dataclasses import dataclass, field
from typing import Dict

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans
from sklearn.metrics import silhouette_score, davies_bouldin_score, calinski_harabasz_score

from .exceptions import SelectionAmbiguityWarning


FALLBACK_INDEX = "silhouette"


def knee_point(inertia: pd.Series) -> int:
    """
    Elbow of an inertia curve indexed by k.

    Both axes are rescaled to [0, 1]; the k farthest from the chord joining
    the first and last points is the knee.
    """
    if len(inertia) < 3:
        raise ValueError("knee_point needs at least three values of k")

    curve = inertia.sort_index()
    ks = curve.index.to_numpy(dtype=float)
    ys = curve.to_numpy(dtype=float)
    ks = (ks - ks[0]) / (ks[-1] - ks[0])
    span = ys.max() - ys.min()
    ys = (ys - ys.min()) / span if span > 0 else np.zeros_like(ys)

    dx, dy = ks[-1] - ks[0], ys[-1] - ys[0]
    # perpendicular distance to the chord
    offset = np.abs(dx * (ys - ys[0]) - dy * (ks - ks[0])) / np.hypot(dx, dy)
    return int(curve.index[int(np.argmax(offset))])


def hartigan_index(inertia: Dict[int, float], n_samples: int) -> Dict[int, float]:
    """H(k) = (W_k / W_{k+1} - 1) * (n - k - 1) for every k with W_{k+1} known."""
    out = {}
    for k, w_k in inertia.items():
        w_next = inertia.get(k + 1)
        if w_next is None:
            continue
        if w_next <= 0:
            out[k] = np.inf
        else:
            out[k] = (w_k / w_next - 1.0) * (n_samples - k - 1)
    return out


@dataclass
class SelectionResult:
    """Outcome of the cluster count vote."""
    k: int
    votes: Dict[str, int]
    scores: pd.DataFrame
    ambiguous: bool = False
    decision_rule: str = "majority vote"
    vote_counts: Dict[int, int] = field(default_factory=dict)


class ClusterCountSelector:
    """
    Pick k in [min_k, max_k] for a standardized metrics subset.

    All randomness comes from random_state, passed to every KMeans fit.
    """

    def __init__(self, min_k: int = 2, max_k: int = 15,
                 random_state: int = 1234, n_init: int = 10):
        if min_k < 2:
            raise ValueError("min_k must be at least 2")
        if max_k < min_k:
            raise ValueError(f"max_k ({max_k}) must be >= min_k ({min_k})")
        self.min_k = min_k
        self.max_k = max_k
        self.random_state = random_state
        self.n_init = n_init
        self.result_: SelectionResult = None

    def _fit_kmeans(self, X: np.ndarray, k: int) -> KMeans:
        km = KMeans(n_clusters=k, n_init=self.n_init, random_state=self.random_state)
        km.fit(X)
        return km

    def evaluate(self, X: np.ndarray) -> pd.DataFrame:
        """
        Score every candidate k.

        Returns:
            DataFrame indexed by k with inertia, silhouette, calinski_harabasz,
            davies_bouldin, hartigan and hartigan_drop columns
        """
        n = X.shape[0]
        max_k = min(self.max_k, n - 1)
        if max_k < self.min_k:
            raise ValueError(
                f"Not enough institutions ({n}) to evaluate k >= {self.min_k}"
            )
        k_values = list(range(self.min_k, max_k + 1))

        # Hartigan needs inertia one step outside the range on both sides
        inertia: Dict[int, float] = {}
        rows = []
        for k in range(self.min_k - 1, max_k + 2):
            if k > n:
                break
            km = self._fit_kmeans(X, k)
            inertia[k] = float(km.inertia_)
            if k not in k_values:
                continue
            labels = km.labels_
            if len(np.unique(labels)) < 2:
                # duplicated points can collapse a partition
                sil, ch, dbi = -1.0, 0.0, np.inf
            else:
                sil = float(silhouette_score(X, labels))
                ch = float(calinski_harabasz_score(X, labels))
                dbi = float(davies_bouldin_score(X, labels))
            rows.append({
                "k": k,
                "inertia": inertia[k],
                "silhouette": sil,
                "calinski_harabasz": ch,
                "davies_bouldin": dbi,
            })

        scores = pd.DataFrame(rows).set_index("k")
        hartigan = hartigan_index(inertia, n)
        scores["hartigan"] = [hartigan.get(k, np.nan) for k in scores.index]
        scores["hartigan_drop"] = [
            hartigan.get(k - 1, np.nan) - hartigan.get(k, np.nan) for k in scores.index
        ]
        return scores

    @staticmethod
    def _votes(scores: pd.DataFrame) -> Dict[str, int]:
        k_values = list(scores.index)
        votes = {
            "silhouette": int(scores["silhouette"].idxmax()),
            "calinski_harabasz": int(scores["calinski_harabasz"].idxmax()),
            "davies_bouldin": int(scores["davies_bouldin"].idxmin()),
        }
        if len(k_values) >= 3:
            votes["elbow"] = knee_point(scores["inertia"])

        drops = scores["hartigan_drop"]
        drops = drops[np.isfinite(drops)]
        if len(drops):
            votes["hartigan"] = int(drops.idxmax())
        return votes

    def select(self, X) -> SelectionResult:
        """
        Run the vote and return the chosen k.

        Without a unique winner the k with the best silhouette is used and a
        SelectionAmbiguityWarning is emitted.
        """
        X = np.asarray(X, dtype=float)
        scores = self.evaluate(X)
        votes = self._votes(scores)

        counts = pd.Series(list(votes.values())).value_counts()
        vote_counts = {int(k): int(c) for k, c in counts.items()}
        top = counts.max()
        leaders = sorted(int(k) for k, c in counts.items() if c == top)

        if len(leaders) == 1:
            result = SelectionResult(
                k=leaders[0],
                votes=votes,
                scores=scores,
                ambiguous=False,
                decision_rule=f"majority vote ({top}/{len(votes)} indices)",
                vote_counts=vote_counts,
            )
        else:
            k_best = int(scores[FALLBACK_INDEX].idxmax())
            warnings.warn(
                f"No majority for the number of clusters (tied: {leaders}); "
                f"falling back to best {FALLBACK_INDEX} k={k_best}",
                SelectionAmbiguityWarning,
            )
            result = SelectionResult(
                k=k_best,
                votes=votes,
                scores=scores,
                ambiguous=True,
                decision_rule=f"fallback: max {FALLBACK_INDEX} (tie between {leaders})",
                vote_counts=vote_counts,
            )

        self.result_ = result
        return result
