"""Round metrics and reporting for the round simulator."""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from flwr.common import NDArrays

logger = logging.getLogger(__name__)

BYTES_PER_FLOAT = 4

RoundCallback = Callable[["RoundMetrics", NDArrays], None]
HistogramCallback = Callable[[List[np.ndarray]], None]


def estimate_comm_bytes(num_params: int, participants: int, models_transmitted: int) -> int:
    """Estimated traffic: uploads from participants plus model downloads."""
    return BYTES_PER_FLOAT * num_params * (participants + models_transmitted)


def convergence_rate(previous_loss: Optional[float], current_loss: Optional[float]) -> Optional[float]:
    """Relative loss decrease between rounds, floored at zero."""
    if previous_loss is None or current_loss is None:
        return None
    if not (math.isfinite(previous_loss) and math.isfinite(current_loss)):
        return None
    return max(0.0, (previous_loss - current_loss) / max(previous_loss, 1e-12))


@dataclass
class LossSpread:
    """Max/mean/min/std of client losses in one round."""

    max: float
    mean: float
    min: float
    std: float

    @classmethod
    def from_losses(cls, losses: Sequence[float]) -> Optional["LossSpread"]:
        values = np.asarray([l for l in losses if l is not None], dtype=np.float64)
        if values.size == 0:
            return None
        return cls(
            max=float(values.max()),
            mean=float(values.mean()),
            min=float(values.min()),
            std=float(values.std()),
        )


@dataclass
class RoundMetrics:
    """Everything the simulator reports about one round."""

    round: int
    selected: int
    participating: int
    participation_rate: float
    client_participation_rate: float
    global_accuracy: float
    global_loss: float
    comm_bytes: int
    client_loss: Optional[LossSpread] = None
    convergence_rate: Optional[float] = None
    privacy_budget: float = 0.0
    reclustered: bool = False
    cluster_sizes: Dict[int, int] = field(default_factory=dict)
    cluster_diversity: float = 0.0

    def to_scalars(self) -> Dict[str, float]:
        """Flatten to a name -> float mapping suitable for metric loggers."""
        scalars = {
            "participating": float(self.participating),
            "participation_rate": float(self.participation_rate),
            "client_participation_rate": float(self.client_participation_rate),
            "global_accuracy": float(self.global_accuracy),
            "global_loss": float(self.global_loss),
            "comm_bytes": float(self.comm_bytes),
            "privacy_budget": float(self.privacy_budget),
        }
        if self.client_loss is not None:
            for key, value in asdict(self.client_loss).items():
                scalars[f"client_loss_{key}"] = float(value)
        if self.convergence_rate is not None:
            scalars["convergence_rate"] = float(self.convergence_rate)
        if self.cluster_sizes:
            for cluster_id, size in self.cluster_sizes.items():
                scalars[f"cluster_{cluster_id}_size"] = float(size)
            scalars["cluster_diversity"] = float(self.cluster_diversity)
        return scalars


class MetricsHistory:
    """Accumulated round metrics of one simulation."""

    def __init__(self):
        self.rounds: List[RoundMetrics] = []

    def __len__(self) -> int:
        return len(self.rounds)

    def append(self, metrics: RoundMetrics) -> None:
        self.rounds.append(metrics)

    @property
    def last(self) -> Optional[RoundMetrics]:
        return self.rounds[-1] if self.rounds else None

    def series(self, name: str) -> List[Optional[float]]:
        return [getattr(m, name) for m in self.rounds]

    def summary(self) -> Dict[str, float]:
        """Final accuracy/loss, total traffic and reclustering count."""
        if not self.rounds:
            return {}
        last = self.rounds[-1]
        return {
            "rounds": float(len(self.rounds)),
            "final_accuracy": float(last.global_accuracy),
            "final_loss": float(last.global_loss),
            "best_accuracy": float(max(m.global_accuracy for m in self.rounds)),
            "total_comm_bytes": float(sum(m.comm_bytes for m in self.rounds)),
            "mean_participating": float(np.mean([m.participating for m in self.rounds])),
            "total_reclusterings": float(sum(1 for m in self.rounds if m.reclustered)),
            "privacy_budget": float(last.privacy_budget),
        }


class MlflowReporter:
    """Round callback logging metrics to the active MLflow run."""

    def __call__(self, metrics: RoundMetrics, weights: NDArrays) -> None:
        import mlflow

        if mlflow.active_run() is None:
            return
        mlflow.log_metrics(metrics.to_scalars(), step=metrics.round)


def format_bytes(n: float) -> str:
    """Human-readable byte count."""
    if n < 1024:
        return f"{int(n)} B"
    if n < 1024 * 1024:
        return f"{n / 1024:.1f} KB"
    if n < 1024 * 1024 * 1024:
        return f"{n / 1024 / 1024:.1f} MB"
    return f"{n / 1024 / 1024 / 1024:.2f} GB"
