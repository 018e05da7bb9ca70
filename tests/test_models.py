"""
Unit tests for the numpy softmax-regression model and dataset factory.
"""

import os
import tempfile
import unittest

import numpy as np

from fl_round_sim.domain.dataset import Batch, ClientRecord
from fl_round_sim.domain.model import LocalTrainingConfig
from fl_round_sim.factory import create_dataset, create_model
from fl_round_sim.infrastructure.datasets import list_available_datasets
from fl_round_sim.infrastructure.models import SoftmaxRegressionModel, get_model_class


def _two_blobs(n=100, seed=0):
    generator = np.random.default_rng(seed)
    X = np.concatenate(
        [generator.normal(-2.0, 0.5, size=(n, 2)), generator.normal(2.0, 0.5, size=(n, 2))]
    )
    y = np.concatenate([np.zeros(n, dtype=np.int64), np.ones(n, dtype=np.int64)])
    order = generator.permutation(len(y))
    return X[order], y[order]


def _client(X, y, batch_size=10):
    batches = [
        Batch(X[i : i + batch_size], y[i : i + batch_size]) for i in range(0, len(y), batch_size)
    ]
    return ClientRecord(client_id=0, batches=batches, num_examples=len(y))


class TestSoftmaxRegression(unittest.TestCase):
    """Test suite for SoftmaxRegressionModel."""

    def setUp(self):
        self.X, self.y = _two_blobs()
        self.model = SoftmaxRegressionModel(2, 2, eval_data=(self.X, self.y), seed=0)
        self.client = _client(self.X, self.y)

    def _config(self, weights, correction=None):
        return LocalTrainingConfig(learning_rate=0.5, anchor=weights, correction=correction)

    def test_weight_shapes(self):
        weights = self.model.clone_weights()
        self.assertEqual([w.shape for w in weights], [(2, 2), (2,)])
        self.assertEqual(self.model.input_shape, (2,))

    def test_training_reduces_loss(self):
        before = self.model.eval_global()
        weights = self.model.clone_weights()
        for _ in range(5):
            weights = self.model.local_train_one_epoch(weights, self.client, self._config(weights))
        self.model.set_weights(weights)
        after = self.model.eval_global()
        self.assertLess(after["loss"], before["loss"])
        self.assertGreater(after["accuracy"], 0.9)

    def test_epoch_does_not_mutate_input(self):
        weights = self.model.clone_weights()
        snapshot = [w.copy() for w in weights]
        self.model.local_train_one_epoch(weights, self.client, self._config(weights))
        for w, s in zip(weights, snapshot):
            np.testing.assert_array_equal(w, s)

    def test_correction_is_applied(self):
        weights = self.model.clone_weights()
        zero = lambda grads, w: [np.zeros_like(g) for g in grads]
        out = self.model.local_train_one_epoch(weights, self.client, self._config(weights, zero))
        for w, o in zip(weights, out):
            np.testing.assert_allclose(w, o)

    def test_gradients_match_finite_differences(self):
        weights = self.model.clone_weights()
        X, y = self.X[:8], self.y[:8]
        grads = self.model.gradients(weights, X, y)

        def loss(ws):
            probs = self.model.predict_proba(X, ws)
            return -np.mean(np.log(probs[np.arange(len(y)), y]))

        eps = 1e-6
        bumped = [w.copy() for w in weights]
        bumped[0][0, 1] += eps
        numeric = (loss(bumped) - loss(weights)) / eps
        self.assertAlmostEqual(grads[0][0, 1], numeric, places=4)

    def test_client_loss(self):
        self.assertIsInstance(self.model.client_loss(self.client), float)
        empty = ClientRecord(client_id=1, batches=[], num_examples=0)
        self.assertIsNone(self.model.client_loss(empty))

    def test_no_eval_data(self):
        model = SoftmaxRegressionModel(2, 2)
        self.assertTrue(np.isnan(model.eval_global()["accuracy"]))

    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "model.pkl")
            self.model.save(path)
            loaded = SoftmaxRegressionModel.load(path)
        for a, b in zip(self.model.clone_weights(), loaded.clone_weights()):
            np.testing.assert_array_equal(a, b)

    def test_registry(self):
        self.assertIs(get_model_class("Softmax"), SoftmaxRegressionModel)
        with self.assertRaises(ValueError):
            get_model_class("mlp")


class TestFactory(unittest.TestCase):
    """Test suite for dataset and model creation."""

    def test_synthetic_datasets(self):
        for name in ("circle", "xor", "gauss", "spiral", "blobs"):
            self.assertIn(name, list_available_datasets())
            dataset = create_dataset(name, num_samples=100, seed=0)
            split = dataset.load()
            self.assertEqual(split.num_train_samples + split.num_test_samples, 100)
            self.assertTrue(set(np.unique(split.y_train)) <= set(range(dataset.num_classes)))

    def test_no_test_split(self):
        split = create_dataset("gauss", num_samples=50, seed=0, test_fraction=0.0).load()
        self.assertEqual(split.num_test_samples, 0)
        self.assertEqual(split.num_train_samples, 50)

    def test_model_for_dataset(self):
        dataset = create_dataset("blobs", num_samples=100, seed=0)
        model = create_model("softmax", dataset, seed=0)
        self.assertEqual(model.num_classes, 4)
        self.assertEqual(model.input_shape, (2,))
        metrics = model.eval_global()
        self.assertTrue(0.0 <= metrics["accuracy"] <= 1.0)

    def test_unknown_dataset(self):
        with self.assertRaises(ValueError):
            create_dataset("cifar100")


if __name__ == "__main__":
    unittest.main()
