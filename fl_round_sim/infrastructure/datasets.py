"""Infrastructure: Concrete dataset implementations."""

from __future__ import annotations

from abc import abstractmethod
from typing import Dict, Optional, Type

import numpy as np
from flwr_datasets import FederatedDataset
from flwr_datasets.partitioner import IidPartitioner
from sklearn.datasets import make_blobs, make_circles
from sklearn.model_selection import train_test_split

from fl_round_sim.domain.dataset import Dataset, DatasetSplit


# Registry of available datasets
_DATASET_REGISTRY: Dict[str, Type[Dataset]] = {}


def register_dataset(name: str):
    """Decorator to register a dataset class."""

    def decorator(cls: Type[Dataset]) -> Type[Dataset]:
        _DATASET_REGISTRY[name.lower()] = cls
        return cls

    return decorator


def get_dataset_class(name: str) -> Type[Dataset]:
    """Get a dataset class by name.

    Args:
        name: Dataset name (case-insensitive).

    Returns:
        Dataset class.

    Raises:
        ValueError: If dataset name is not found.
    """
    name_lower = name.lower()
    if name_lower not in _DATASET_REGISTRY:
        available = ", ".join(_DATASET_REGISTRY.keys())
        raise ValueError(f"Unknown dataset: {name}. Available: {available}")
    return _DATASET_REGISTRY[name_lower]


def list_available_datasets() -> list[str]:
    """List all available dataset names."""
    return list(_DATASET_REGISTRY.keys())


class SyntheticDataset(Dataset):
    """Base class for generated 2-D playground problems.

    Subclasses implement ``_generate`` returning features and labels; the
    base class shuffles and splits them into train and held-out parts.
    """

    def __init__(
        self,
        num_samples: int = 1000,
        noise: float = 0.1,
        seed: Optional[int] = None,
        test_fraction: float = 0.2,
    ):
        super().__init__(seed=seed, test_fraction=test_fraction)
        self._num_samples = num_samples
        self._noise = noise

    @property
    def num_classes(self) -> int:
        return 2

    @property
    def input_shape(self) -> tuple:
        return (2,)

    @abstractmethod
    def _generate(self, generator: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
        """Return features and integer labels."""
        pass

    def _load(self) -> DatasetSplit:
        generator = np.random.default_rng(self._seed)
        X, y = self._generate(generator)
        X = np.asarray(X, dtype=np.float32)
        y = np.asarray(y, dtype=np.int64)

        if self._test_fraction <= 0:
            return DatasetSplit(X, y, X[:0], y[:0], self.num_classes)

        X_train, X_test, y_train, y_test = train_test_split(
            X,
            y,
            test_size=self._test_fraction,
            random_state=self._seed,
        )
        return DatasetSplit(X_train, y_train, X_test, y_test, self.num_classes)


@register_dataset("circle")
class CircleDataset(SyntheticDataset):
    """A disc of one class surrounded by a ring of the other."""

    @property
    def name(self) -> str:
        return "circle"

    def _generate(self, generator):
        return make_circles(
            n_samples=self._num_samples,
            noise=self._noise,
            factor=0.5,
            random_state=int(generator.integers(2**31)),
        )


@register_dataset("xor")
class XorDataset(SyntheticDataset):
    """Quadrant XOR: the label is the sign agreement of both coordinates."""

    @property
    def name(self) -> str:
        return "xor"

    def _generate(self, generator):
        X = generator.uniform(-1.0, 1.0, size=(self._num_samples, 2))
        # Keep points off the axes so the quadrant is well defined
        X += np.sign(X) * 0.05
        y = (X[:, 0] * X[:, 1] > 0).astype(np.int64)
        X += generator.normal(0.0, self._noise, size=X.shape)
        return X, y


@register_dataset("gauss")
class GaussDataset(SyntheticDataset):
    """Two isotropic Gaussian clouds."""

    @property
    def name(self) -> str:
        return "gauss"

    def _generate(self, generator):
        return make_blobs(
            n_samples=self._num_samples,
            centers=[(1.0, 1.0), (-1.0, -1.0)],
            cluster_std=0.5 + self._noise,
            random_state=int(generator.integers(2**31)),
        )


@register_dataset("spiral")
class SpiralDataset(SyntheticDataset):
    """Two interleaved spirals."""

    @property
    def name(self) -> str:
        return "spiral"

    def _generate(self, generator):
        n = self._num_samples // 2
        radius = np.linspace(0.0, 1.0, n)
        features = []
        labels = []
        for label, delta in ((0, 0.0), (1, np.pi)):
            theta = 1.75 * radius * 2 * np.pi + delta
            points = np.stack([radius * np.sin(theta), radius * np.cos(theta)], axis=1)
            points += generator.normal(0.0, self._noise * 0.1, size=points.shape)
            features.append(points)
            labels.append(np.full(n, label))
        return np.concatenate(features), np.concatenate(labels)


@register_dataset("blobs")
class BlobsDataset(SyntheticDataset):
    """Multi-class Gaussian blobs in a configurable number of dimensions."""

    def __init__(
        self,
        num_samples: int = 1000,
        noise: float = 0.1,
        seed: Optional[int] = None,
        test_fraction: float = 0.2,
        n_classes: int = 4,
        n_features: int = 2,
    ):
        super().__init__(num_samples, noise, seed, test_fraction)
        self._n_classes = n_classes
        self._n_features = n_features

    @property
    def name(self) -> str:
        return "blobs"

    @property
    def num_classes(self) -> int:
        return self._n_classes

    @property
    def input_shape(self) -> tuple:
        return (self._n_features,)

    def _generate(self, generator):
        return make_blobs(
            n_samples=self._num_samples,
            n_features=self._n_features,
            centers=self._n_classes,
            cluster_std=1.0 + self._noise,
            random_state=int(generator.integers(2**31)),
        )


class BaseImageDataset(Dataset):
    """Base class for Hugging Face image datasets loaded with FederatedDataset.

    The whole train split is fetched as a single partition and subsampled;
    the simulator's own partitioner then shards it across clients.
    """

    def __init__(
        self,
        dataset_name: str,
        image_key: str = "image",
        label_key: str = "label",
        num_samples: int = 5000,
        seed: Optional[int] = None,
        test_fraction: float = 0.2,
    ):
        """Initialize the image dataset.

        Args:
            dataset_name: HuggingFace dataset name.
            image_key: Key for image data in the dataset.
            label_key: Key for labels in the dataset.
            num_samples: Number of examples kept from the train split.
            seed: Seed for subsampling and the train/test split.
            test_fraction: Fraction held out for global evaluation.
        """
        super().__init__(seed=seed, test_fraction=test_fraction)
        self._dataset_name = dataset_name
        self._image_key = image_key
        self._label_key = label_key
        self._num_samples = num_samples
        self._fds: Optional[FederatedDataset] = None

    def _ensure_initialized(self) -> None:
        """Ensure the federated dataset is initialized."""
        if self._fds is None:
            self._fds = FederatedDataset(
                dataset=self._dataset_name,
                partitioners={"train": IidPartitioner(num_partitions=1)},
            )

    def _extract_features(self, data) -> tuple[np.ndarray, np.ndarray]:
        """Flatten images into ``[0, 1]`` feature rows."""
        X = np.array([np.array(img).flatten() for img in data[self._image_key]])
        y = np.array(data[self._label_key], dtype=np.int64)
        X = X.astype(np.float32) / 255.0
        return X, y

    def _load(self) -> DatasetSplit:
        self._ensure_initialized()
        data = self._fds.load_partition(0, "train")

        seed = 42 if self._seed is None else self._seed
        if self._num_samples < len(data):
            data = data.shuffle(seed=seed).select(range(self._num_samples))
        if self._test_fraction <= 0:
            X, y = self._extract_features(data)
            return DatasetSplit(X, y, X[:0], y[:0], self.num_classes)
        split = data.train_test_split(test_size=self._test_fraction, seed=seed)

        X_train, y_train = self._extract_features(split["train"])
        X_test, y_test = self._extract_features(split["test"])
        return DatasetSplit(X_train, y_train, X_test, y_test, self.num_classes)


@register_dataset("mnist")
class MNISTDataset(BaseImageDataset):
    """MNIST handwritten digits."""

    def __init__(
        self,
        num_samples: int = 5000,
        seed: Optional[int] = None,
        test_fraction: float = 0.2,
    ):
        super().__init__(
            dataset_name="ylecun/mnist",
            image_key="image",
            label_key="label",
            num_samples=num_samples,
            seed=seed,
            test_fraction=test_fraction,
        )

    @property
    def name(self) -> str:
        return "mnist"

    @property
    def num_classes(self) -> int:
        return 10

    @property
    def input_shape(self) -> tuple:
        return (28, 28, 1)

    def get_class_labels(self) -> list[str]:
        return [str(i) for i in range(10)]


@register_dataset("fashion-mnist")
class FashionMNISTDataset(BaseImageDataset):
    """Fashion-MNIST clothing images."""

    def __init__(
        self,
        num_samples: int = 5000,
        seed: Optional[int] = None,
        test_fraction: float = 0.2,
    ):
        super().__init__(
            dataset_name="zalando-datasets/fashion_mnist",
            image_key="image",
            label_key="label",
            num_samples=num_samples,
            seed=seed,
            test_fraction=test_fraction,
        )

    @property
    def name(self) -> str:
        return "fashion-mnist"

    @property
    def num_classes(self) -> int:
        return 10

    @property
    def input_shape(self) -> tuple:
        return (28, 28, 1)

    def get_class_labels(self) -> list[str]:
        return [
            "T-shirt/top",
            "Trouser",
            "Pullover",
            "Dress",
            "Coat",
            "Sandal",
            "Shirt",
            "Sneaker",
            "Bag",
            "Ankle boot",
        ]
