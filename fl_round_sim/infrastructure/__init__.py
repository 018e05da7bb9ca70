"""Infrastructure layer: Concrete implementations of domain abstractions."""

from fl_round_sim.infrastructure.models import (
    SoftmaxRegressionModel,
    get_model_class,
    list_available_models,
)
from fl_round_sim.infrastructure.datasets import (
    BlobsDataset,
    CircleDataset,
    FashionMNISTDataset,
    GaussDataset,
    MNISTDataset,
    SpiralDataset,
    XorDataset,
    get_dataset_class,
    list_available_datasets,
)
from fl_round_sim.infrastructure.strategies import (
    FedAdam,
    FedAvg,
    FedProx,
    Scaffold,
    create_strategy,
    get_strategy_class,
    list_available_strategies,
)
from fl_round_sim.infrastructure.clustering import (
    KMeansResult,
    kmeans,
)

__all__ = [
    # Models
    "SoftmaxRegressionModel",
    "get_model_class",
    "list_available_models",
    # Datasets
    "BlobsDataset",
    "CircleDataset",
    "FashionMNISTDataset",
    "GaussDataset",
    "MNISTDataset",
    "SpiralDataset",
    "XorDataset",
    "get_dataset_class",
    "list_available_datasets",
    # Strategies
    "FedAdam",
    "FedAvg",
    "FedProx",
    "Scaffold",
    "create_strategy",
    "get_strategy_class",
    "list_available_strategies",
    # Clustering
    "KMeansResult",
    "kmeans",
]
