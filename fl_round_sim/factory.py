"""Factory module for creating models and datasets from configuration."""

import inspect
from typing import Optional

from fl_round_sim.domain.dataset import Dataset
from fl_round_sim.domain.model import Model
from fl_round_sim.infrastructure.datasets import get_dataset_class
from fl_round_sim.infrastructure.models import get_model_class


def _filter_kwargs(cls, kwargs: dict) -> dict:
    """Keep only the keyword arguments ``cls.__init__`` accepts."""
    sig = inspect.signature(cls.__init__)
    valid_params = set(sig.parameters.keys()) - {"self"}
    return {k: v for k, v in kwargs.items() if k in valid_params}


def create_dataset(
    name: str,
    num_samples: int = 1000,
    seed: Optional[int] = None,
    test_fraction: float = 0.2,
) -> Dataset:
    """Create a dataset by name.

    Args:
        name: Dataset name (e.g., 'circle', 'blobs', 'mnist').
        num_samples: Number of examples to generate or keep.
        seed: Seed for generation and the train/test split.
        test_fraction: Fraction held out for global evaluation.

    Returns:
        Configured dataset instance.
    """
    dataset_cls = get_dataset_class(name)
    kwargs = {
        "num_samples": num_samples,
        "seed": seed,
        "test_fraction": test_fraction,
    }
    return dataset_cls(**_filter_kwargs(dataset_cls, kwargs))


def create_model(
    name: str,
    dataset: Dataset,
    seed: Optional[int] = None,
) -> Model:
    """Create a model configured for a specific dataset.

    The dataset's held-out split becomes the model's global evaluation set.

    Args:
        name: Model name (e.g., 'softmax').
        dataset: Dataset the model will be trained on.
        seed: Seed for weight initialisation.

    Returns:
        Configured model instance.
    """
    model_cls = get_model_class(name)
    split = dataset.load()

    kwargs = {
        "input_size": dataset.input_size,
        "num_classes": dataset.num_classes,
        "eval_data": (split.X_test, split.y_test),
        "seed": seed,
    }
    return model_cls(**_filter_kwargs(model_cls, kwargs))


def create_model_for_config(
    model_name: str,
    dataset_name: str,
    num_samples: int = 1000,
    seed: Optional[int] = None,
    test_fraction: float = 0.2,
) -> tuple[Model, Dataset]:
    """Create both model and dataset from configuration.

    Returns:
        Tuple of (model, dataset).
    """
    dataset = create_dataset(
        dataset_name,
        num_samples=num_samples,
        seed=seed,
        test_fraction=test_fraction,
    )
    model = create_model(model_name, dataset, seed=seed)
    return model, dataset

