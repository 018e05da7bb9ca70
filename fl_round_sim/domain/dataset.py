"""Domain dataset abstractions for the round simulator."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import numpy as np


@dataclass(frozen=True)
class Batch:
    """A mini-batch of parallel feature rows and integer labels."""

    features: np.ndarray
    labels: np.ndarray

    def __len__(self) -> int:
        return len(self.labels)


@dataclass(frozen=True)
class ClientRecord:
    """A simulated client's private shard.

    Attributes:
        client_id: Index of the client in the population.
        batches: Ordered mini-batches of the shard.
        num_examples: Number of examples across all batches.
        class_histogram: Per-class example counts (diagnostic only).
    """

    client_id: int
    batches: List[Batch]
    num_examples: int
    class_histogram: Optional[np.ndarray] = None

    @property
    def is_empty(self) -> bool:
        return self.num_examples == 0

    def iter_examples(self):
        """Yield ``(features, labels)`` for every batch."""
        for batch in self.batches:
            yield batch.features, batch.labels


@dataclass
class DatasetSplit:
    """Centralised train and held-out arrays of a dataset."""

    X_train: np.ndarray
    y_train: np.ndarray
    X_test: np.ndarray
    y_test: np.ndarray
    num_classes: int

    @property
    def num_train_samples(self) -> int:
        return len(self.X_train)

    @property
    def num_test_samples(self) -> int:
        return len(self.X_test)

    @property
    def num_features(self) -> int:
        return int(np.prod(self.X_train.shape[1:]))


class Dataset(ABC):
    """Abstract base class for datasets fed to the partitioner.

    The simulator partitions the centralised training split itself, so a
    dataset only needs to provide its train and held-out arrays.
    """

    def __init__(self, seed: Optional[int] = None, test_fraction: float = 0.2):
        self._seed = seed
        self._test_fraction = test_fraction
        self._split: Optional[DatasetSplit] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the dataset name."""
        pass

    @property
    @abstractmethod
    def num_classes(self) -> int:
        """Return the number of classes in the dataset."""
        pass

    @property
    @abstractmethod
    def input_shape(self) -> tuple:
        """Return the shape of a single input sample (excluding batch dimension)."""
        pass

    @property
    def input_size(self) -> int:
        """Return the flattened input size."""
        size = 1
        for dim in self.input_shape:
            size *= dim
        return size

    @abstractmethod
    def _load(self) -> DatasetSplit:
        """Build the train/test split."""
        pass

    def load(self) -> DatasetSplit:
        """Return the cached train/test split, building it on first use."""
        if self._split is None:
            self._split = self._load()
        return self._split

    def get_class_labels(self) -> Optional[list[str]]:
        """Return human-readable class labels if available."""
        return None
