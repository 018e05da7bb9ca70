"""fl_round_sim: A federated-learning round simulator built as a Flower app.

This module provides a model-agnostic round orchestrator with interchangeable
aggregation strategies, differential privacy and client clustering, using
Domain-Driven Design principles.
"""

from fl_round_sim.domain import (
    AggregationStrategy,
    ClientRecord,
    Dataset,
    Model,
)
from fl_round_sim.config import SimulationConfig
from fl_round_sim.factory import (
    create_dataset,
    create_model,
    create_model_for_config,
)
from fl_round_sim.infrastructure.datasets import list_available_datasets
from fl_round_sim.infrastructure.models import list_available_models
from fl_round_sim.infrastructure.strategies import (
    create_strategy,
    list_available_strategies,
)
from fl_round_sim.partitioning import partition
from fl_round_sim.simulation import Simulation, run_simulation

__all__ = [
    # Domain abstractions
    "Model",
    "Dataset",
    "ClientRecord",
    "AggregationStrategy",
    # Configuration and orchestration
    "SimulationConfig",
    "Simulation",
    "run_simulation",
    "partition",
    # Factory functions
    "create_model",
    "create_dataset",
    "create_model_for_config",
    "create_strategy",
    # Registry functions
    "list_available_models",
    "list_available_datasets",
    "list_available_strategies",
]
