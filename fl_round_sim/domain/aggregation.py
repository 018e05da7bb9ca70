"""Domain aggregation: weight algebra, mean-of-deltas and the strategy contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from flwr.common import NDArrays


def check_same_shape(a: NDArrays, b: NDArrays) -> None:
    """Raise ``ValueError`` unless ``a`` and ``b`` have identical group shapes."""
    if len(a) != len(b):
        raise ValueError(f"Weight group count mismatch: {len(a)} vs {len(b)}")
    for i, (x, y) in enumerate(zip(a, b)):
        if np.shape(x) != np.shape(y):
            raise ValueError(
                f"Weight group {i} shape mismatch: {np.shape(x)} vs {np.shape(y)}"
            )


def copy_weights(weights: NDArrays) -> NDArrays:
    """Return an owned copy of ``weights``."""
    return [np.array(w, copy=True) for w in weights]


def diff_weights(new: NDArrays, old: NDArrays) -> NDArrays:
    """Elementwise ``new - old``."""
    check_same_shape(new, old)
    return [n - o for n, o in zip(new, old)]


def add_scaled(a: NDArrays, b: NDArrays, scale: float) -> NDArrays:
    """Elementwise ``a + scale * b``."""
    check_same_shape(a, b)
    return [x + scale * y for x, y in zip(a, b)]


def zeros_like(weights: NDArrays) -> NDArrays:
    """Zero-filled weights matching the shape of ``weights``."""
    return [np.zeros_like(w) for w in weights]


def flatten_params(params: NDArrays) -> np.ndarray:
    """Flatten model parameters into a single vector.

    Args:
        params: List of numpy arrays representing model parameters.

    Returns:
        Single flattened numpy array.
    """
    return np.concatenate([np.ravel(p) for p in params])


def unflatten_params(vector: np.ndarray, like: NDArrays) -> NDArrays:
    """Split a flat vector back into groups shaped like ``like``."""
    out = []
    offset = 0
    for p in like:
        size = int(np.size(p))
        out.append(np.reshape(vector[offset : offset + size], np.shape(p)).copy())
        offset += size
    if offset != len(vector):
        raise ValueError(f"Vector length {len(vector)} does not match {offset} parameters")
    return out


def num_parameters(params: NDArrays) -> int:
    return int(sum(np.size(p) for p in params))


def compute_param_distance(params1: NDArrays, params2: NDArrays) -> float:
    """Compute Euclidean distance between two sets of model parameters."""
    check_same_shape(params1, params2)
    vec1 = flatten_params(params1)
    vec2 = flatten_params(params2)
    return float(np.linalg.norm(vec1 - vec2))


def aggregate_weighted(params_list: List[NDArrays], weights: List[float]) -> NDArrays:
    """Aggregate model parameters using weighted averaging.

    Args:
        params_list: List of model parameters from different sources.
        weights: Weight for each entry.

    Returns:
        Aggregated parameters.
    """
    if not params_list:
        raise ValueError("Cannot aggregate empty parameter list")

    total_weight = sum(weights)
    normalized_weights = [w / total_weight for w in weights]

    aggregated = [np.zeros_like(p, dtype=np.float64) for p in params_list[0]]
    for params, weight in zip(params_list, normalized_weights):
        check_same_shape(params, aggregated)
        for i, p in enumerate(params):
            aggregated[i] += p * weight

    return aggregated


@dataclass
class Delta:
    """A client's update for one round.

    Attributes:
        client_id: Client that produced the update.
        delta: Trained weights minus starting weights.
        weight: Participation weight (example count).
        loss: Diagnostic client loss after training, if known.
    """

    client_id: int
    delta: NDArrays
    weight: float
    loss: Optional[float] = None


def aggregate_deltas(deltas: Sequence[Delta], weighted: bool) -> NDArrays:
    """Mean of client deltas.

    Args:
        deltas: Non-empty batch of deltas sharing one shape.
        weighted: Weight each delta by its participation weight; otherwise
            take the plain arithmetic mean.

    Returns:
        The averaged delta.
    """
    if not deltas:
        raise ValueError("Cannot aggregate an empty batch of deltas")

    base = zeros_like(deltas[0].delta)
    total = 0.0
    for d in deltas:
        check_same_shape(d.delta, base)
        w = float(d.weight) if weighted else 1.0
        total += w
        for i, group in enumerate(d.delta):
            base[i] = base[i] + w * group

    return [b / total for b in base]


class AggregationStrategy(ABC):
    """Abstract base class for server update / local correction rules.

    Each strategy is selected once per run and implements the same
    two-operation contract: a correction added to every local gradient and
    a rule turning the aggregated delta into new server weights.
    """

    supports_clustering: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the strategy name."""
        pass

    @abstractmethod
    def local_correction(
        self,
        grads: NDArrays,
        weights: NDArrays,
        anchor: NDArrays,
        client_id: int,
    ) -> NDArrays:
        """Return the corrected gradient for one local step.

        Args:
            grads: Loss gradient at ``weights``.
            weights: Current local weights.
            anchor: Weights the client started the round from.
            client_id: Client being trained.
        """
        pass

    @abstractmethod
    def server_update(self, weights: NDArrays, aggregate: NDArrays) -> NDArrays:
        """Apply the aggregated delta to the server weights.

        Args:
            weights: Current server (or cluster) weights.
            aggregate: Mean of client deltas.

        Returns:
            New server weights.
        """
        pass

    def begin_round(self, weights: NDArrays, num_clients: int) -> None:
        """Prepare per-round state before any client trains."""

    def after_local_training(
        self,
        client_id: int,
        anchor: NDArrays,
        trained: NDArrays,
        weight: float,
        local_epochs: int,
        learning_rate: float,
    ) -> None:
        """Observe a client's trained weights."""

    def end_round(self, weighted: bool) -> None:
        """Finalise per-round state after the server update."""

    def reset(self) -> None:
        """Drop all state tied to the client topology."""
