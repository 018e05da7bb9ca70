"""
Unit tests for non-IID client partitioning.
"""

import unittest

import numpy as np

from fl_round_sim.partitioning import PartitionSignature, needs_repartition, partition


def _labelled_data(per_class, num_classes):
    labels = np.repeat(np.arange(num_classes), per_class)
    # Feature column 0 carries the label so batch alignment can be checked
    features = np.stack([labels.astype(np.float64), np.arange(len(labels), dtype=np.float64)], axis=1)
    return features, labels


class TestPartition(unittest.TestCase):
    """Test suite for partition()."""

    def setUp(self):
        self.features, self.labels = _labelled_data(50, 4)

    def _run(self, **kwargs):
        params = dict(
            num_classes=4, num_clients=10, batch_size=8, alpha=0.5, balance=1.0, seed=1
        )
        params.update(kwargs)
        return partition(self.features, self.labels, **params)

    def test_examples_conserved(self):
        clients = self._run()
        self.assertEqual(sum(c.num_examples for c in clients), 200)
        ids = np.concatenate([b.features[:, 1] for c in clients for b in c.batches])
        self.assertEqual(len(np.unique(ids)), 200)

    def test_every_client_has_data(self):
        for balance in (1.0, 0.5, 0.0):
            clients = self._run(balance=balance, seed=3)
            self.assertTrue(all(c.num_examples >= 1 for c in clients))
            self.assertEqual(sum(c.num_examples for c in clients), 200)

    def test_balanced_sizes(self):
        sizes = [c.num_examples for c in self._run()]
        self.assertLessEqual(max(sizes) - min(sizes), 1)

    def test_batches(self):
        for client in self._run(batch_size=7):
            lengths = [len(b) for b in client.batches]
            self.assertEqual(sum(lengths), client.num_examples)
            self.assertTrue(all(0 < n <= 7 for n in lengths))
            self.assertTrue(all(n == 7 for n in lengths[:-1]))
            for batch in client.batches:
                np.testing.assert_array_equal(batch.features[:, 0], batch.labels)

    def test_histograms(self):
        for client in self._run():
            self.assertEqual(int(client.class_histogram.sum()), client.num_examples)
            self.assertEqual(len(client.class_histogram), 4)

    def test_client_ids(self):
        self.assertEqual([c.client_id for c in self._run()], list(range(10)))

    def test_reproducible_with_seed(self):
        first = self._run(seed=7, balance=0.3)
        second = self._run(seed=7, balance=0.3)
        for a, b in zip(first, second):
            self.assertEqual(a.num_examples, b.num_examples)
            for x, y in zip(a.batches, b.batches):
                np.testing.assert_array_equal(x.features, y.features)

    def test_unseeded_still_valid(self):
        clients = self._run(seed=None)
        self.assertEqual(sum(c.num_examples for c in clients), 200)

    def test_fewer_examples_than_clients(self):
        clients = partition(
            self.features[:3], self.labels[:3], num_classes=4, num_clients=5,
            batch_size=2, alpha=1.0, seed=0,
        )
        self.assertEqual(len(clients), 5)
        self.assertEqual(sum(c.num_examples for c in clients), 3)
        self.assertEqual(sum(1 for c in clients if not c.is_empty), 3)

    def test_no_clients(self):
        self.assertEqual(self._run(num_clients=0), [])

    def test_small_alpha_concentrates_classes(self):
        features, labels = _labelled_data(100, 10)

        def concentration(alpha):
            clients = partition(
                features, labels, num_classes=10, num_clients=10,
                batch_size=16, alpha=alpha, seed=5,
            )
            return np.mean([c.class_histogram.max() / c.num_examples for c in clients])

        self.assertGreater(concentration(0.05), concentration(100.0))


class TestPartitionSignature(unittest.TestCase):
    """Test suite for repartition detection."""

    def setUp(self):
        self.signature = PartitionSignature(
            seed=1, num_clients=10, batch_size=8, alpha=0.5, balance=1.0, problem="blobs"
        )

    def test_first_partition_needed(self):
        self.assertTrue(needs_repartition(None, self.signature))

    def test_same_parameters(self):
        same = PartitionSignature(1, 10, 8, 0.5, 1.0, "blobs")
        self.assertFalse(needs_repartition(self.signature, same))

    def test_changed_parameters(self):
        self.assertTrue(
            needs_repartition(self.signature, PartitionSignature(2, 10, 8, 0.5, 1.0, "blobs"))
        )
        self.assertTrue(
            needs_repartition(self.signature, PartitionSignature(1, 10, 8, 0.5, 1.0, "circle"))
        )


if __name__ == "__main__":
    unittest.main()
