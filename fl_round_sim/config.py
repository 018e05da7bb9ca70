"""Simulation configuration read from a Flower run config."""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from fl_round_sim.clustering import ClusteringMode
from fl_round_sim.infrastructure.clustering import normalize_metric
from fl_round_sim.infrastructure.datasets import get_dataset_class
from fl_round_sim.infrastructure.models import get_model_class
from fl_round_sim.infrastructure.strategies import get_strategy_class
from fl_round_sim.partitioning import PartitionSignature

logger = logging.getLogger(__name__)

MAX_DROPOUT = 0.9


@dataclass
class SimulationConfig:
    """All knobs of one simulation run.

    Field names mirror the kebab-case keys of ``[tool.flwr.app.config]``
    (``num-clients`` -> ``num_clients``).
    """

    # Algorithm
    algorithm: str = "fedavg"
    mu: float = 0.01
    server_lr: float = 0.01
    beta1: float = 0.9
    beta2: float = 0.999
    eps: float = 1e-8

    # Population and local training
    num_clients: int = 20
    client_fraction: float = 0.5
    local_epochs: int = 1
    batch_size: int = 16
    client_lr: float = 0.1
    weighted_aggregation: bool = True
    client_dropout: float = 0.0

    # Partitioning
    iid_alpha: float = 1.0
    balance: float = 1.0

    # Differential privacy
    dp_clip_norm: float = 0.0
    dp_noise_mult: float = 0.0
    dp_client_level: bool = True

    # Clustering
    clustering_enabled: bool = False
    num_clusters: int = 2
    recluster_every: int = 5
    warmup_rounds: int = 1
    similarity_metric: str = "cosine"
    clustering_mode: str = "dynamic"

    # Run
    num_server_rounds: int = 20
    seed: Optional[int] = 42
    dataset: str = "blobs"
    model: str = "softmax"
    num_samples: int = 1000
    test_fraction: float = 0.2

    # Tracking
    mlflow_experiment_name: Optional[str] = None
    mlflow_run_name: Optional[str] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check registry names and clamp numeric options into range.

        Raises:
            ValueError: On an unknown algorithm, metric, clustering mode,
                dataset or model name.
        """
        get_strategy_class(self.algorithm)
        get_dataset_class(self.dataset)
        get_model_class(self.model)
        self.algorithm = self.algorithm.lower()
        self.dataset = self.dataset.lower()
        self.model = self.model.lower()
        self.similarity_metric = normalize_metric(self.similarity_metric)
        self.clustering_mode = ClusteringMode(self.clustering_mode.lower()).value

        dropout = min(MAX_DROPOUT, max(0.0, float(self.client_dropout)))
        if dropout != self.client_dropout:
            logger.warning(
                "client-dropout %s clamped to %s", self.client_dropout, dropout
            )
        self.client_dropout = dropout

        self.num_clients = max(1, int(self.num_clients))
        self.client_fraction = min(1.0, max(0.0, float(self.client_fraction)))
        self.local_epochs = max(1, int(self.local_epochs))
        self.batch_size = max(1, int(self.batch_size))
        self.balance = min(1.0, max(0.0, float(self.balance)))
        self.num_clusters = max(1, int(self.num_clusters))
        self.recluster_every = max(1, int(self.recluster_every))
        self.warmup_rounds = max(0, int(self.warmup_rounds))
        self.num_server_rounds = max(0, int(self.num_server_rounds))
        self.num_samples = max(1, int(self.num_samples))
        self.test_fraction = min(0.9, max(0.0, float(self.test_fraction)))

    @classmethod
    def from_run_config(cls, run_config: Mapping[str, Any]) -> "SimulationConfig":
        """Build a config from kebab-case keys, keeping defaults for missing ones.

        A negative ``seed`` selects unseeded (true) randomness.
        """
        values: Dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            key = name.replace("_", "-")
            if key in run_config:
                values[name] = run_config[key]

        unknown = set(run_config) - {n.replace("_", "-") for n in cls.__dataclass_fields__}
        if unknown:
            logger.debug("Ignoring run config keys: %s", ", ".join(sorted(unknown)))

        seed = values.get("seed")
        if seed is not None:
            values["seed"] = None if int(seed) < 0 else int(seed)
        for name in ("mlflow_experiment_name", "mlflow_run_name"):
            if values.get(name) == "":
                values[name] = None
        return cls(**values)

    def partition_signature(self) -> PartitionSignature:
        return PartitionSignature(
            seed=self.seed,
            num_clients=self.num_clients,
            batch_size=self.batch_size,
            alpha=self.iid_alpha,
            balance=self.balance,
            problem=self.dataset,
        )

    def strategy_kwargs(self) -> Dict[str, Any]:
        return {
            "mu": self.mu,
            "server_lr": self.server_lr,
            "beta1": self.beta1,
            "beta2": self.beta2,
            "eps": self.eps,
        }

    def to_params(self) -> Dict[str, Any]:
        """Flat parameter dict for experiment trackers."""
        return {k: ("none" if v is None else v) for k, v in asdict(self).items()}
