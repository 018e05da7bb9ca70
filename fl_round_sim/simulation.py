"""Round orchestrator of the federated-learning simulator.

Each call to :meth:`Simulation.step` runs one round::

    SAMPLE -> LOCAL_TRAIN -> SANITIZE -> AGGREGATE -> SERVER_UPDATE
           -> EVALUATE -> (RECLUSTER)

Clients are trained sequentially against one shared model collaborator. The
orchestrator snapshots the starting weights before every delegation and sets
the weights it needs explicitly; it never relies on state left behind by a
previous client.
"""

import logging
import math
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np

from flwr.common import NDArrays

from fl_round_sim.clustering import (
    ClusteringStrategy,
    ClusterState,
    create_clustering_strategy,
)
from fl_round_sim.config import SimulationConfig
from fl_round_sim.domain.aggregation import (
    AggregationStrategy,
    Delta,
    aggregate_deltas,
    copy_weights,
    diff_weights,
    num_parameters,
)
from fl_round_sim.domain.dataset import ClientRecord, Dataset
from fl_round_sim.domain.model import LocalTrainingConfig, Model
from fl_round_sim.factory import create_dataset, create_model
from fl_round_sim.infrastructure.strategies import create_strategy
from fl_round_sim.metrics import (
    HistogramCallback,
    LossSpread,
    MetricsHistory,
    RoundCallback,
    RoundMetrics,
    convergence_rate,
    estimate_comm_bytes,
)
from fl_round_sim.partitioning import PartitionSignature, needs_repartition, partition
from fl_round_sim.privacy import DPSanitizer
from fl_round_sim.rng import RandomSource, create_rng

logger = logging.getLogger(__name__)

# Offset keeping the sampling stream apart from the partitioning stream
SAMPLING_SEED_OFFSET = 1


class Simulation:
    """Drives repeated rounds of federated training over simulated clients.

    Args:
        model: Shared trainable collaborator.
        clients: Client population, indexed by ``client_id``.
        config: Simulation settings.
        strategy: Aggregation strategy; built from ``config.algorithm``
            when omitted.
        clustering: Reclustering policy; built from the config when
            clustering is enabled and none is given.
        rng: Random source for sampling, dropout and DP noise.
        on_round_end: Called with ``(metrics, weights)`` after every round.
        on_client_histograms: Called with the per-client class histograms
            whenever the client population is (re)set.
        partition_signature: Parameters that produced ``clients``, if known.
    """

    def __init__(
        self,
        model: Model,
        clients: Sequence[ClientRecord],
        config: SimulationConfig,
        strategy: Optional[AggregationStrategy] = None,
        clustering: Optional[ClusteringStrategy] = None,
        rng: Optional[RandomSource] = None,
        on_round_end: Optional[RoundCallback] = None,
        on_client_histograms: Optional[HistogramCallback] = None,
        partition_signature: Optional[PartitionSignature] = None,
    ):
        self.model = model
        self.config = config
        self.rng = rng or create_rng(
            None if config.seed is None else config.seed + SAMPLING_SEED_OFFSET
        )
        self.strategy = strategy or create_strategy(
            config.algorithm, **config.strategy_kwargs()
        )
        if clustering is None and config.clustering_enabled:
            clustering = create_clustering_strategy(
                mode=config.clustering_mode,
                n_clusters=config.num_clusters,
                interval=config.recluster_every,
                warmup_rounds=config.warmup_rounds,
                metric=config.similarity_metric,
            )
        self.clustering = clustering
        self.sanitizer = DPSanitizer(
            clip_norm=config.dp_clip_norm,
            noise_multiplier=config.dp_noise_mult,
            client_level=config.dp_client_level,
            rng=self.rng,
        )
        self.on_round_end = on_round_end
        self.on_client_histograms = on_client_histograms

        self.history = MetricsHistory()
        self.round = 0
        self.global_weights: NDArrays = model.clone_weights()
        self.cluster_state: Optional[ClusterState] = None
        self.clients: List[ClientRecord] = []
        self._previous_loss: Optional[float] = None
        self.set_clients(clients)
        self.partition_signature = partition_signature

    # ------------------------------------------------------------------
    # Topology

    def set_clients(self, clients: Sequence[ClientRecord]) -> None:
        """Install a new client population, resetting topology-bound state."""
        self.clients = list(clients)
        self.strategy.reset()
        self.cluster_state = None
        logger.info("Client population set to %d clients", len(self.clients))
        if self.on_client_histograms is not None:
            self.on_client_histograms(
                [c.class_histogram for c in self.clients if c.class_histogram is not None]
            )

    def set_algorithm(self, name: str) -> None:
        """Switch to a fresh strategy; optimizer moments and control variates start over."""
        self.strategy = create_strategy(name, **self.config.strategy_kwargs())
        self.config.algorithm = self.strategy.name
        self.cluster_state = None

    def repartition(self, dataset: Dataset) -> bool:
        """Re-partition ``dataset`` if the partitioning parameters changed.

        Returns:
            True when a new client population was installed.
        """
        signature = self.config.partition_signature()
        if not needs_repartition(self.partition_signature, signature):
            return False
        logger.info("Partitioning %s for %d clients", dataset.name, self.config.num_clients)
        self.set_clients(partition_dataset(dataset, self.config))
        self.partition_signature = signature
        return True

    @property
    def population(self) -> int:
        return len(self.clients)

    @property
    def clustered(self) -> bool:
        """Whether rounds train one model per cluster."""
        return (
            self.clustering is not None
            and self.config.clustering_enabled
            and self.clustering.n_clusters > 1
            and self.strategy.supports_clustering
        )

    def _ensure_cluster_state(self) -> ClusterState:
        n_clusters = self.clustering.n_clusters
        state = self.cluster_state
        if state is None or not state.matches(self.global_weights, n_clusters, self.population):
            logger.debug("Building cluster state for %d clusters", n_clusters)
            state = ClusterState(self.global_weights, n_clusters, self.population)
            self.cluster_state = state
        return state

    # ------------------------------------------------------------------
    # Round phases

    def _sample(self) -> tuple:
        """Shuffle-and-take ``k`` clients, then apply dropout."""
        order = self.rng.permutation(self.population)
        k = math.floor(self.config.client_fraction * self.population + 0.5)
        selected = order[: max(1, k)]
        dropout = self.config.client_dropout
        survivors = [cid for cid in selected if self.rng.uniform() > dropout]
        if not survivors and selected:
            logger.warning(
                "Round %d: every sampled client dropped out, forcing client %d",
                self.round + 1,
                selected[0],
            )
            survivors = [selected[0]]
        return selected, survivors

    def _train_client(
        self, client_id: int, client: ClientRecord, start: NDArrays, weight: float
    ) -> tuple:
        """Run the local epochs of one client from ``start``.

        ``weight`` is the client's participation weight, shared by its weight
        delta and its control-variate delta.

        Returns:
            ``(trained_weights, client_loss)``.
        """
        anchor = copy_weights(start)
        strategy = self.strategy

        def correction(grads: NDArrays, weights: NDArrays) -> NDArrays:
            return strategy.local_correction(grads, weights, anchor, client_id)

        train_config = LocalTrainingConfig(
            learning_rate=self.config.client_lr,
            anchor=anchor,
            correction=correction,
        )

        self.model.set_weights(anchor)
        local = copy_weights(anchor)
        for _ in range(self.config.local_epochs):
            local = self.model.local_train_one_epoch(local, client, train_config)
        self.model.set_weights(local)
        loss = self.model.client_loss(client)

        strategy.after_local_training(
            client_id,
            anchor,
            local,
            weight,
            self.config.local_epochs,
            self.config.client_lr,
        )
        return local, loss

    def _aggregate(self, deltas: List[Delta]) -> NDArrays:
        aggregate = aggregate_deltas(deltas, self.config.weighted_aggregation)
        return self.sanitizer.sanitize_aggregate(aggregate)

    def _evaluate(self, weights: NDArrays) -> Dict[str, float]:
        self.model.set_weights(weights)
        return self.model.eval_global()

    # ------------------------------------------------------------------
    # Driver

    def step(self) -> RoundMetrics:
        """Run one full round and return its metrics."""
        if not self.clients:
            raise ValueError("Cannot run a round without clients")

        clustered = self.clustered
        state = self._ensure_cluster_state() if clustered else None
        self.strategy.begin_round(self.global_weights, self.population)

        selected, survivors = self._sample()

        buckets: Dict[int, List[Delta]] = {}
        losses = []
        for client_id in survivors:
            client = self.clients[client_id]
            bucket = state.cluster_of(client_id) if clustered else 0
            start = state.cluster_weights[bucket] if clustered else self.global_weights

            # Empty shards still count as one participant in a weighted mean
            weight = float(max(1, client.num_examples))

            trained, loss = self._train_client(client_id, client, start, weight)
            delta = diff_weights(trained, start)
            delta = self.sanitizer.sanitize_client(delta)
            if clustered:
                state.record_delta(client_id, delta)

            buckets.setdefault(bucket, []).append(
                Delta(client_id=client_id, delta=delta, weight=weight, loss=loss)
            )
            if loss is not None:
                losses.append(loss)
            logger.debug("Client %d trained (loss=%s)", client_id, loss)

        if clustered:
            for cluster_id, deltas in sorted(buckets.items()):
                aggregate = self._aggregate(deltas)
                state.cluster_weights[cluster_id] = self.strategy.server_update(
                    state.cluster_weights[cluster_id], aggregate
                )
            self.global_weights = state.size_weighted_average()
        else:
            aggregate = self._aggregate(buckets[0])
            self.global_weights = self.strategy.server_update(self.global_weights, aggregate)
        self.strategy.end_round(self.config.weighted_aggregation)

        evaluation = self._evaluate(self.global_weights)
        self.round += 1

        models_transmitted = state.n_clusters if clustered else 1
        spread = LossSpread.from_losses(losses)
        current_loss = spread.mean if spread is not None else evaluation.get("loss")
        metrics = RoundMetrics(
            round=self.round,
            selected=len(selected),
            participating=len(survivors),
            participation_rate=len(survivors) / max(1, len(selected)),
            client_participation_rate=len(selected) / max(1, self.population),
            global_accuracy=float(evaluation.get("accuracy", float("nan"))),
            global_loss=float(evaluation.get("loss", float("nan"))),
            comm_bytes=estimate_comm_bytes(
                num_parameters(self.global_weights), len(survivors), models_transmitted
            ),
            client_loss=spread,
            convergence_rate=convergence_rate(self._previous_loss, current_loss),
            privacy_budget=self.sanitizer.privacy_budget,
        )
        self._previous_loss = current_loss

        if clustered:
            outcome = self.clustering.maybe_recluster(state, self.round)
            metrics.reclustered = outcome is not None and outcome.reclustering_triggered
            metrics.cluster_sizes = state.cluster_sizes()
            metrics.cluster_diversity = state.diversity()

        self.history.append(metrics)
        logger.info(
            "Round %d: %d/%d clients, accuracy=%.4f, loss=%.4f",
            metrics.round,
            metrics.participating,
            metrics.selected,
            metrics.global_accuracy,
            metrics.global_loss,
        )
        if self.on_round_end is not None:
            self.on_round_end(metrics, copy_weights(self.global_weights))
        return metrics

    def iter_rounds(self, num_rounds: Optional[int] = None) -> Iterator[RoundMetrics]:
        """Yield each round's metrics once the round is fully applied.

        The caller stops the simulation by not pulling further rounds.
        """
        if num_rounds is None:
            num_rounds = self.config.num_server_rounds
        for _ in range(num_rounds):
            yield self.step()

    def run(self, num_rounds: Optional[int] = None) -> MetricsHistory:
        """Run ``num_rounds`` rounds headlessly and return the history."""
        for _ in self.iter_rounds(num_rounds):
            pass
        return self.history


def partition_dataset(
    dataset: Dataset, config: SimulationConfig
) -> List[ClientRecord]:
    """Partition a dataset's training split according to ``config``."""
    split = dataset.load()
    return partition(
        split.X_train,
        split.y_train,
        num_classes=split.num_classes,
        num_clients=config.num_clients,
        batch_size=config.batch_size,
        alpha=config.iid_alpha,
        balance=config.balance,
        seed=config.seed,
    )


def run_simulation(
    config: SimulationConfig,
    dataset: Optional[Dataset] = None,
    model: Optional[Model] = None,
    on_round_end: Optional[RoundCallback] = None,
    on_client_histograms: Optional[HistogramCallback] = None,
) -> Simulation:
    """Build everything from ``config`` and run ``num_server_rounds`` rounds.

    Returns:
        The finished simulation (its ``history`` holds the round metrics).
    """
    if dataset is None:
        dataset = create_dataset(
            config.dataset,
            num_samples=config.num_samples,
            seed=config.seed,
            test_fraction=config.test_fraction,
        )
    if model is None:
        model = create_model(config.model, dataset, seed=config.seed)

    clients = partition_dataset(dataset, config)
    sizes = np.array([c.num_examples for c in clients])
    logger.info(
        "Partitioned %d examples: min=%d max=%d per client",
        int(sizes.sum()),
        int(sizes.min()) if len(sizes) else 0,
        int(sizes.max()) if len(sizes) else 0,
    )

    simulation = Simulation(
        model=model,
        clients=clients,
        config=config,
        on_round_end=on_round_end,
        on_client_histograms=on_client_histograms,
        partition_signature=config.partition_signature(),
    )
    simulation.run(config.num_server_rounds)
    return simulation
