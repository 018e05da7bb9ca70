"""Domain model abstraction: the external collaborator driven by the simulator."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from flwr.common import NDArrays

from fl_round_sim.domain.dataset import ClientRecord

GradientCorrection = Callable[[NDArrays, NDArrays], NDArrays]


@dataclass
class LocalTrainingConfig:
    """Per-client settings handed to ``Model.local_train_one_epoch``.

    Attributes:
        learning_rate: Client SGD learning rate.
        anchor: Weights the client started the round from (the cluster's
            weights under clustering). Proximal and control-variate terms
            are measured against it.
        correction: Optional ``(grads, weights) -> grads`` applied at every
            local step, supplied by the aggregation strategy.
    """

    learning_rate: float
    anchor: NDArrays
    correction: Optional[GradientCorrection] = None

    def correct(self, grads: NDArrays, weights: NDArrays) -> NDArrays:
        if self.correction is None:
            return grads
        return self.correction(grads, weights)


class Model(ABC):
    """Abstract trainable model seen through a flat weight representation.

    The simulator treats the model as a single stateful object shared by all
    logical clients: it always snapshots weights before delegating and
    restores them explicitly, never relying on state it did not set.
    """

    @abstractmethod
    def clone_weights(self) -> NDArrays:
        """Return an owned copy of the current trainable parameters."""
        pass

    @abstractmethod
    def set_weights(self, weights: NDArrays) -> None:
        """Overwrite the model parameters with a copy of ``weights``."""
        pass

    @abstractmethod
    def local_train_one_epoch(
        self,
        weights: NDArrays,
        client: ClientRecord,
        config: LocalTrainingConfig,
    ) -> NDArrays:
        """Run exactly one epoch over ``client``'s batches.

        Args:
            weights: Starting weights for this epoch.
            client: The client whose batches are visited.
            config: Learning rate, round anchor and gradient correction.

        Returns:
            The weights after the epoch.
        """
        pass

    @abstractmethod
    def eval_global(self) -> Dict[str, float]:
        """Evaluate the current weights on the held-out split.

        Returns:
            Dictionary with ``accuracy`` and ``loss``.
        """
        pass

    def client_loss(self, client: ClientRecord) -> Optional[float]:
        """Mean training loss of the current weights on ``client``.

        Returns ``None`` when the model does not report client losses.
        """
        return None
