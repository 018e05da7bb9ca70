"""Clustering strategies for the round simulator.

Clients are partitioned into K groups, each trained toward its own model.
Assignments are refreshed by k-means over the most recent per-client update
vectors:

- StaticClustering: cluster once, at the first due round after warm-up
- DynamicClustering: re-cluster every ``recluster_every`` rounds after warm-up
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from flwr.common import NDArrays

from fl_round_sim.domain.aggregation import (
    aggregate_weighted,
    compute_param_distance,
    copy_weights,
    flatten_params,
    num_parameters,
)
from fl_round_sim.infrastructure.clustering import kmeans, normalize_metric

logger = logging.getLogger(__name__)


class ClusteringMode(Enum):
    """Clustering strategy modes."""

    STATIC = "static"  # Cluster once after warm-up
    DYNAMIC = "dynamic"  # Re-cluster at fixed intervals


@dataclass
class ClusteringMetrics:
    """Metrics for clustering analysis."""

    cluster_sizes: Dict[int, int] = field(default_factory=dict)
    cluster_diversity: float = 0.0
    clients_with_signal: int = 0
    reclustering_triggered: bool = False


class ClusterState:
    """Per-cluster models, client assignments and last client deltas.

    Args:
        base_weights: Weights every cluster model starts from.
        n_clusters: Number of cluster models K (at least 1).
        num_clients: Size of the client population.
    """

    def __init__(self, base_weights: NDArrays, n_clusters: int, num_clients: int):
        self.n_clusters = max(1, int(n_clusters))
        self.num_params = num_parameters(base_weights)
        self.cluster_weights: List[NDArrays] = [
            copy_weights(base_weights) for _ in range(self.n_clusters)
        ]
        self.assignments = np.zeros(num_clients, dtype=np.int64)
        self.last_deltas: List[Optional[np.ndarray]] = [None] * num_clients
        self.rounds_since_recluster = 0
        self.reclustering_count = 0

    @property
    def num_clients(self) -> int:
        return len(self.assignments)

    def matches(self, base_weights: NDArrays, n_clusters: int, num_clients: int) -> bool:
        """Whether this state is still valid for the given topology."""
        return (
            self.n_clusters == max(1, int(n_clusters))
            and self.num_params == num_parameters(base_weights)
            and self.num_clients == num_clients
        )

    def cluster_of(self, client_id: int) -> int:
        return int(min(self.n_clusters - 1, max(0, self.assignments[client_id])))

    def record_delta(self, client_id: int, delta: NDArrays) -> None:
        self.last_deltas[client_id] = flatten_params(delta).astype(np.float64)

    def usable_delta(self, client_id: int) -> Optional[np.ndarray]:
        vector = self.last_deltas[client_id]
        if vector is None or len(vector) != self.num_params:
            return None
        if not np.all(np.isfinite(vector)):
            return None
        return vector

    def cluster_sizes(self) -> Dict[int, int]:
        counts = np.bincount(
            np.clip(self.assignments, 0, self.n_clusters - 1),
            minlength=self.n_clusters,
        )
        return {c: int(counts[c]) for c in range(self.n_clusters)}

    def size_weighted_average(self) -> NDArrays:
        """Average of the cluster models weighted by assigned client counts."""
        sizes = self.cluster_sizes()
        weights = [float(sizes[c]) for c in range(self.n_clusters)]
        if sum(weights) <= 0:
            return copy_weights(self.cluster_weights[0])
        return aggregate_weighted(self.cluster_weights, weights)

    def diversity(self) -> float:
        """Mean pairwise Euclidean distance between cluster models."""
        if self.n_clusters < 2:
            return 0.0
        total_dist = 0.0
        count = 0
        for i in range(self.n_clusters):
            for j in range(i + 1, self.n_clusters):
                total_dist += compute_param_distance(
                    self.cluster_weights[i], self.cluster_weights[j]
                )
                count += 1
        return total_dist / count if count > 0 else 0.0


class ClusteringStrategy(ABC):
    """Abstract base class for reclustering policies."""

    def __init__(
        self,
        n_clusters: int = 2,
        recluster_every: int = 5,
        warmup_rounds: int = 1,
        metric: str = "cosine",
        max_iterations: int = 20,
        seed: int = 42,
    ):
        self.n_clusters = max(1, int(n_clusters))
        self.recluster_every = max(1, int(recluster_every))
        self.warmup_rounds = max(0, int(warmup_rounds))
        self.metric = normalize_metric(metric)
        self.max_iterations = max_iterations
        self.seed = seed

    @property
    @abstractmethod
    def mode(self) -> ClusteringMode:
        """Return the clustering mode."""
        pass

    @abstractmethod
    def should_recluster(self, state: ClusterState, server_round: int) -> bool:
        """Determine if re-clustering should be performed after ``server_round``."""
        pass

    def _is_due(self, state: ClusterState, server_round: int) -> bool:
        return (
            state.rounds_since_recluster >= self.recluster_every
            # The round about to start already counts toward warm-up
            and server_round + 1 >= self.warmup_rounds
        )

    def cluster_clients(self, state: ClusterState, server_round: int) -> ClusteringMetrics:
        """Reassign clients by k-means over their last usable deltas.

        Clients without a usable delta keep their previous assignment. When
        no client has one, the round is skipped but the counter still resets.
        """
        metrics = ClusteringMetrics()

        owners = []
        vectors = []
        for client_id in range(state.num_clients):
            vector = state.usable_delta(client_id)
            if vector is not None:
                owners.append(client_id)
                vectors.append(vector)

        state.rounds_since_recluster = 0
        metrics.clients_with_signal = len(owners)
        if not owners:
            logger.warning(
                "Round %d: no client deltas available, skipping reclustering",
                server_round,
            )
            metrics.cluster_sizes = state.cluster_sizes()
            return metrics

        k = min(state.n_clusters, len(owners))
        result = kmeans(
            vectors,
            k,
            metric=self.metric,
            max_iterations=self.max_iterations,
            seed=self.seed,
        )

        new_assignments = state.assignments.copy()
        for client_id, label in zip(owners, result.assignments):
            new_assignments[client_id] = int(label)
        state.assignments = np.clip(new_assignments, 0, state.n_clusters - 1)
        state.reclustering_count += 1

        metrics.cluster_sizes = state.cluster_sizes()
        metrics.cluster_diversity = state.diversity()
        metrics.reclustering_triggered = True

        logger.info(
            "Round %d: reclustered %d clients into %d clusters (%s)",
            server_round,
            len(owners),
            state.n_clusters,
            ", ".join(f"{c}:{n}" for c, n in metrics.cluster_sizes.items()),
        )
        return metrics

    def maybe_recluster(
        self, state: ClusterState, server_round: int
    ) -> Optional[ClusteringMetrics]:
        """Advance the round counter and recluster when due."""
        state.rounds_since_recluster += 1
        if not self.should_recluster(state, server_round):
            return None
        return self.cluster_clients(state, server_round)


class StaticClustering(ClusteringStrategy):
    """Static clustering - clusters defined once, after warm-up."""

    @property
    def mode(self) -> ClusteringMode:
        return ClusteringMode.STATIC

    def should_recluster(self, state: ClusterState, server_round: int) -> bool:
        """Only cluster at the first due round."""
        return state.reclustering_count == 0 and self._is_due(state, server_round)


class DynamicClustering(ClusteringStrategy):
    """Dynamic clustering - re-cluster at fixed intervals."""

    @property
    def mode(self) -> ClusteringMode:
        return ClusteringMode.DYNAMIC

    def should_recluster(self, state: ClusterState, server_round: int) -> bool:
        """Re-cluster every ``recluster_every`` rounds once warm-up is over."""
        return self._is_due(state, server_round)


def create_clustering_strategy(
    mode: str,
    n_clusters: int = 2,
    interval: int = 5,
    warmup_rounds: int = 1,
    metric: str = "cosine",
    **kwargs,
) -> ClusteringStrategy:
    """Factory function to create clustering strategy.

    Args:
        mode: Clustering mode ('static', 'dynamic')
        n_clusters: Number of clusters
        interval: Rounds between reclustering events
        warmup_rounds: Completed rounds required before the first event
        metric: Distance metric ('cosine', 'l2')
        **kwargs: ``max_iterations`` and ``seed`` for k-means

    Returns:
        ClusteringStrategy instance
    """
    mode_lower = mode.lower()
    common = dict(
        n_clusters=n_clusters,
        recluster_every=interval,
        warmup_rounds=warmup_rounds,
        metric=metric,
        max_iterations=kwargs.get("max_iterations", 20),
        seed=kwargs.get("seed", 42),
    )

    if mode_lower == "static":
        return StaticClustering(**common)
    elif mode_lower == "dynamic":
        return DynamicClustering(**common)
    else:
        raise ValueError(f"Unknown clustering mode: {mode}")
