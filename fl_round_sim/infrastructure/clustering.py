"""Infrastructure: k-means over client update vectors."""

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from fl_round_sim.rng import Xorshift32

NORM_FLOOR = 1e-12

_METRIC_ALIASES = {
    "cosine": "cosine",
    "l2": "l2",
    "euclidean": "l2",
}


def normalize_metric(metric: str) -> str:
    """Map a metric name to ``cosine`` or ``l2``."""
    key = metric.lower()
    if key not in _METRIC_ALIASES:
        available = ", ".join(_METRIC_ALIASES.keys())
        raise ValueError(f"Unknown similarity metric: {metric}. Available: {available}")
    return _METRIC_ALIASES[key]


def _normalize_rows(data: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(data, axis=1, keepdims=True)
    return data / np.maximum(norms, NORM_FLOOR)


@dataclass
class KMeansResult:
    """Assignments per input vector and the learned centroids."""

    assignments: np.ndarray
    centroids: List[np.ndarray]


def kmeans(
    vectors: Sequence[np.ndarray],
    k: int,
    metric: str = "cosine",
    max_iterations: int = 20,
    seed: int = 42,
) -> KMeansResult:
    """Lloyd's k-means with seeded initialisation.

    Args:
        vectors: Non-empty sequence of equal-length vectors (not mutated).
        k: Requested number of clusters, clamped to ``[1, len(vectors)]``.
        metric: ``cosine`` (unit-normalised data, ``1 - cos`` distance,
            re-normalised centroids) or ``l2``/``euclidean`` (squared L2,
            plain means).
        max_iterations: Upper bound on assign/update iterations.
        seed: Seed of the shuffle choosing the initial centroids.

    Returns:
        ``KMeansResult``. Clusters that lose all points keep their previous
        centroid.
    """
    metric = normalize_metric(metric)
    if len(vectors) == 0:
        raise ValueError("Cannot cluster an empty set of vectors")

    data = np.stack([np.asarray(v, dtype=np.float64) for v in vectors])
    if metric == "cosine":
        data = _normalize_rows(data)

    n = len(data)
    k = max(1, min(int(k), n))

    order = Xorshift32(seed).permutation(n)
    centroids = data[order[:k]].copy()
    assignments = np.zeros(n, dtype=np.int64)

    for _ in range(max_iterations):
        if metric == "cosine":
            scores = 1.0 - np.clip(data @ centroids.T, -1.0, 1.0)
        else:
            diff = data[:, None, :] - centroids[None, :, :]
            scores = np.einsum("ijk,ijk->ij", diff, diff)
        best = np.argmin(scores, axis=1)
        changed = bool(np.any(best != assignments))
        assignments = best

        for c in range(k):
            members = data[assignments == c]
            if len(members) == 0:
                continue
            centroid = members.mean(axis=0)
            if metric == "cosine":
                centroid = centroid / max(np.linalg.norm(centroid), NORM_FLOOR)
            centroids[c] = centroid

        if not changed:
            break

    return KMeansResult(
        assignments=assignments.astype(np.int64),
        centroids=[c.copy() for c in centroids],
    )
