"""Infrastructure: Concrete model implementations."""

from __future__ import annotations

from typing import Dict, Optional, Tuple, Type

import joblib
import numpy as np
from sklearn.metrics import accuracy_score, log_loss

from flwr.common import NDArrays

from fl_round_sim.domain.dataset import ClientRecord
from fl_round_sim.domain.model import LocalTrainingConfig, Model


# Registry of available models
_MODEL_REGISTRY: Dict[str, Type[Model]] = {}


def register_model(name: str):
    """Decorator to register a model class."""

    def decorator(cls: Type[Model]) -> Type[Model]:
        _MODEL_REGISTRY[name.lower()] = cls
        return cls

    return decorator


def get_model_class(name: str) -> Type[Model]:
    """Get a model class by name.

    Args:
        name: Model name (case-insensitive).

    Returns:
        Model class.

    Raises:
        ValueError: If model name is not found.
    """
    name_lower = name.lower()
    if name_lower not in _MODEL_REGISTRY:
        available = ", ".join(_MODEL_REGISTRY.keys())
        raise ValueError(f"Unknown model: {name}. Available: {available}")
    return _MODEL_REGISTRY[name_lower]


def list_available_models() -> list[str]:
    """List all available model names."""
    return list(_MODEL_REGISTRY.keys())


def softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - logits.max(axis=1, keepdims=True)
    exp = np.exp(shifted)
    return exp / exp.sum(axis=1, keepdims=True)


@register_model("softmax")
class SoftmaxRegressionModel(Model):
    """Multinomial logistic regression trained with mini-batch SGD in numpy.

    Parameters are ``[W, b]`` with ``W`` of shape ``(input_size,
    num_classes)``. The strategy's gradient correction is applied before
    every SGD step.
    """

    def __init__(
        self,
        input_size: int,
        num_classes: int,
        eval_data: Optional[Tuple[np.ndarray, np.ndarray]] = None,
        seed: Optional[int] = None,
        init_scale: float = 0.01,
    ):
        """Initialize the model.

        Args:
            input_size: Number of input features.
            num_classes: Number of output classes.
            eval_data: Held-out ``(X, y)`` used by ``eval_global``.
            seed: Seed for the weight initialisation.
            init_scale: Std of the initial weights.
        """
        self._input_size = input_size
        self._num_classes = num_classes
        self._eval_data = eval_data

        generator = np.random.default_rng(seed)
        self._weights: NDArrays = [
            (generator.standard_normal((input_size, num_classes)) * init_scale).astype(
                np.float64
            ),
            np.zeros(num_classes, dtype=np.float64),
        ]

    def clone_weights(self) -> NDArrays:
        return [w.copy() for w in self._weights]

    def set_weights(self, weights: NDArrays) -> None:
        self._weights = [np.array(w, dtype=np.float64, copy=True) for w in weights]

    def predict_proba(self, X: np.ndarray, weights: Optional[NDArrays] = None) -> np.ndarray:
        W, b = weights if weights is not None else self._weights
        X = np.asarray(X, dtype=np.float64).reshape(len(X), -1)
        return softmax(X @ W + b)

    def gradients(self, weights: NDArrays, X: np.ndarray, y: np.ndarray) -> NDArrays:
        """Cross-entropy gradient of one batch."""
        X = np.asarray(X, dtype=np.float64).reshape(len(X), -1)
        probs = self.predict_proba(X, weights)
        targets = np.zeros_like(probs)
        targets[np.arange(len(y)), np.asarray(y, dtype=np.int64)] = 1.0
        error = (probs - targets) / len(y)
        return [X.T @ error, error.sum(axis=0)]

    def local_train_one_epoch(
        self,
        weights: NDArrays,
        client: ClientRecord,
        config: LocalTrainingConfig,
    ) -> NDArrays:
        local = [np.array(w, dtype=np.float64, copy=True) for w in weights]
        for X, y in client.iter_examples():
            if len(y) == 0:
                continue
            grads = config.correct(self.gradients(local, X, y), local)
            local = [w - config.learning_rate * g for w, g in zip(local, grads)]
        self._weights = local
        return [w.copy() for w in local]

    def _metrics(self, X: np.ndarray, y: np.ndarray) -> Dict[str, float]:
        if len(y) == 0:
            return {"accuracy": float("nan"), "loss": float("nan")}
        probs = self.predict_proba(X)
        labels = np.arange(self._num_classes)
        return {
            "accuracy": float(accuracy_score(y, probs.argmax(axis=1))),
            "loss": float(log_loss(y, probs, labels=labels)),
        }

    def eval_global(self) -> Dict[str, float]:
        if self._eval_data is None:
            return {"accuracy": float("nan"), "loss": float("nan")}
        X, y = self._eval_data
        return self._metrics(X, y)

    def client_loss(self, client: ClientRecord) -> Optional[float]:
        if client.is_empty:
            return None
        X = np.concatenate([b.features for b in client.batches])
        y = np.concatenate([b.labels for b in client.batches])
        return self._metrics(X, y)["loss"]

    @property
    def num_classes(self) -> int:
        return self._num_classes

    @property
    def input_shape(self) -> tuple:
        return (self._input_size,)

    def save(self, path: str) -> None:
        """Save the current weights to disk."""
        joblib.dump(self.clone_weights(), path)

    @classmethod
    def load(cls, path: str) -> "SoftmaxRegressionModel":
        """Load a model from weights saved with ``save``."""
        weights = joblib.load(path)
        input_size, num_classes = weights[0].shape
        model = cls(input_size=input_size, num_classes=num_classes)
        model.set_weights(weights)
        return model
