"""Infrastructure: Concrete aggregation strategies."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

import numpy as np

from flwr.common import NDArrays

from fl_round_sim.domain.aggregation import (
    AggregationStrategy,
    Delta,
    add_scaled,
    aggregate_deltas,
    check_same_shape,
    flatten_params,
    num_parameters,
    unflatten_params,
)
from fl_round_sim.optimizers import ServerAdam

logger = logging.getLogger(__name__)

# Registry of available strategies
_STRATEGY_REGISTRY: Dict[str, Type[AggregationStrategy]] = {}


def register_strategy(name: str):
    """Decorator to register a strategy class."""

    def decorator(cls: Type[AggregationStrategy]) -> Type[AggregationStrategy]:
        _STRATEGY_REGISTRY[name.lower()] = cls
        return cls

    return decorator


def get_strategy_class(name: str) -> Type[AggregationStrategy]:
    """Get a strategy class by name.

    Args:
        name: Strategy name (case-insensitive).

    Returns:
        Strategy class.

    Raises:
        ValueError: If strategy name is not found.
    """
    name_lower = name.lower()
    if name_lower not in _STRATEGY_REGISTRY:
        available = ", ".join(_STRATEGY_REGISTRY.keys())
        raise ValueError(f"Unknown algorithm: {name}. Available: {available}")
    return _STRATEGY_REGISTRY[name_lower]


def list_available_strategies() -> list[str]:
    """List all available strategy names."""
    return list(_STRATEGY_REGISTRY.keys())


@register_strategy("fedavg")
class FedAvg(AggregationStrategy):
    """Federated averaging: no local correction, ``w <- w + mean(delta)``."""

    supports_clustering = True

    @property
    def name(self) -> str:
        return "fedavg"

    def local_correction(
        self,
        grads: NDArrays,
        weights: NDArrays,
        anchor: NDArrays,
        client_id: int,
    ) -> NDArrays:
        return grads

    def server_update(self, weights: NDArrays, aggregate: NDArrays) -> NDArrays:
        return add_scaled(weights, aggregate, 1.0)


@register_strategy("fedprox")
class FedProx(FedAvg):
    """FedAvg with the proximal term ``mu * (w - w0)`` added to local gradients."""

    def __init__(self, mu: float = 0.01):
        self.mu = mu

    @property
    def name(self) -> str:
        return "fedprox"

    def local_correction(
        self,
        grads: NDArrays,
        weights: NDArrays,
        anchor: NDArrays,
        client_id: int,
    ) -> NDArrays:
        if not self.mu or self.mu <= 0:
            return grads
        check_same_shape(weights, anchor)
        return [g + self.mu * (w - w0) for g, w, w0 in zip(grads, weights, anchor)]


@register_strategy("fedadam")
class FedAdam(FedAvg):
    """Server-side Adam on the negated aggregated delta."""

    supports_clustering = False

    def __init__(
        self,
        server_lr: float = 0.01,
        beta1: float = 0.9,
        beta2: float = 0.999,
        eps: float = 1e-8,
    ):
        self.optimizer = ServerAdam(lr=server_lr, beta1=beta1, beta2=beta2, eps=eps)

    @property
    def name(self) -> str:
        return "fedadam"

    def server_update(self, weights: NDArrays, aggregate: NDArrays) -> NDArrays:
        grad = [-a for a in aggregate]
        return self.optimizer.step(weights, grad)

    def reset(self) -> None:
        self.optimizer.reset()


@register_strategy("scaffold")
class Scaffold(FedAvg):
    """Control-variate correction (SCAFFOLD family).

    Local gradients receive ``c - c_i``. After training, client ``i``
    contributes ``delta_c_i = -c + (w0 - w_after) / (E * lr)``, which is added
    to ``c_i`` and averaged into ``c``. The weight update itself stays the
    plain mean of deltas.
    """

    supports_clustering = False

    def __init__(self):
        self.c_global: Optional[np.ndarray] = None
        self.c_locals: List[np.ndarray] = []
        self._control_deltas: List[Delta] = []
        self._corrections: Dict[int, NDArrays] = {}

    @property
    def name(self) -> str:
        return "scaffold"

    def reset(self) -> None:
        self.c_global = None
        self.c_locals = []
        self._control_deltas = []
        self._corrections = {}

    def begin_round(self, weights: NDArrays, num_clients: int) -> None:
        size = num_parameters(weights)
        if self.c_global is None or len(self.c_global) != size:
            logger.debug("Allocating control variates for %d parameters", size)
            self.c_global = np.zeros(size, dtype=np.float64)
            self.c_locals = []
        if len(self.c_locals) != num_clients:
            self.c_locals = [np.zeros(size, dtype=np.float64) for _ in range(num_clients)]
        self._control_deltas = []
        self._corrections = {}

    def local_correction(
        self,
        grads: NDArrays,
        weights: NDArrays,
        anchor: NDArrays,
        client_id: int,
    ) -> NDArrays:
        if self.c_global is None:
            return grads
        if client_id not in self._corrections:
            c_i = self._client_control(client_id)
            self._corrections[client_id] = unflatten_params(self.c_global - c_i, grads)
        correction = self._corrections[client_id]
        return [g + c for g, c in zip(grads, correction)]

    def after_local_training(
        self,
        client_id: int,
        anchor: NDArrays,
        trained: NDArrays,
        weight: float,
        local_epochs: int,
        learning_rate: float,
    ) -> None:
        if self.c_global is None or not 0 <= client_id < len(self.c_locals):
            return
        denom = max(1, local_epochs) * max(1e-8, learning_rate)
        step = (flatten_params(anchor) - flatten_params(trained)) / denom
        delta_c = -self.c_global + step
        self.c_locals[client_id] = self.c_locals[client_id] + delta_c
        self._corrections.pop(client_id, None)
        self._control_deltas.append(Delta(client_id=client_id, delta=[delta_c], weight=weight))

    def end_round(self, weighted: bool) -> None:
        if self.c_global is None or not self._control_deltas:
            return
        mean_delta = aggregate_deltas(self._control_deltas, weighted)
        self.c_global = self.c_global + mean_delta[0]
        self._control_deltas = []
        self._corrections = {}

    def _client_control(self, client_id: int) -> np.ndarray:
        if 0 <= client_id < len(self.c_locals):
            return self.c_locals[client_id]
        return np.zeros_like(self.c_global)


def create_strategy(name: str, **kwargs) -> AggregationStrategy:
    """Create a strategy by name, passing only the arguments it accepts."""
    import inspect

    strategy_cls = get_strategy_class(name)
    sig = inspect.signature(strategy_cls.__init__)
    valid_params = set(sig.parameters.keys()) - {"self"}
    filtered_kwargs = {k: v for k, v in kwargs.items() if k in valid_params}
    return strategy_cls(**filtered_kwargs)
