"""
Unit tests for round metrics and their aggregation.
"""

import unittest
from unittest import mock

import numpy as np

from fl_round_sim.metrics import (
    LossSpread,
    MetricsHistory,
    MlflowReporter,
    RoundMetrics,
    convergence_rate,
    estimate_comm_bytes,
    format_bytes,
)


def _metrics(round_, accuracy, **kwargs):
    params = dict(
        round=round_,
        selected=4,
        participating=3,
        participation_rate=0.75,
        client_participation_rate=0.5,
        global_accuracy=accuracy,
        global_loss=1.0 - accuracy,
        comm_bytes=100,
    )
    params.update(kwargs)
    return RoundMetrics(**params)


class TestScalars(unittest.TestCase):
    """Test suite for the scalar helpers."""

    def test_comm_bytes(self):
        self.assertEqual(estimate_comm_bytes(10, 3, 1), 160)
        self.assertEqual(estimate_comm_bytes(10, 3, 2), 200)

    def test_convergence_rate(self):
        self.assertIsNone(convergence_rate(None, 1.0))
        self.assertIsNone(convergence_rate(1.0, float("nan")))
        self.assertAlmostEqual(convergence_rate(2.0, 1.5), 0.25)
        self.assertEqual(convergence_rate(1.0, 2.0), 0.0)

    def test_loss_spread(self):
        spread = LossSpread.from_losses([1.0, None, 3.0])
        self.assertEqual(spread.max, 3.0)
        self.assertEqual(spread.min, 1.0)
        self.assertEqual(spread.mean, 2.0)
        self.assertEqual(spread.std, 1.0)
        self.assertIsNone(LossSpread.from_losses([None]))

    def test_format_bytes(self):
        self.assertEqual(format_bytes(512), "512 B")
        self.assertEqual(format_bytes(2048), "2.0 KB")
        self.assertEqual(format_bytes(3 * 1024 * 1024), "3.0 MB")


class TestRoundMetrics(unittest.TestCase):
    """Test suite for RoundMetrics and MetricsHistory."""

    def test_to_scalars(self):
        metrics = _metrics(
            1,
            0.8,
            client_loss=LossSpread(2.0, 1.0, 0.5, 0.1),
            convergence_rate=0.2,
            cluster_sizes={0: 3, 1: 1},
            cluster_diversity=0.4,
        )
        scalars = metrics.to_scalars()
        self.assertEqual(scalars["client_loss_mean"], 1.0)
        self.assertEqual(scalars["convergence_rate"], 0.2)
        self.assertEqual(scalars["cluster_1_size"], 1.0)
        self.assertEqual(scalars["cluster_diversity"], 0.4)
        self.assertTrue(all(isinstance(v, float) for v in scalars.values()))

    def test_optional_scalars_omitted(self):
        scalars = _metrics(1, 0.8).to_scalars()
        self.assertNotIn("convergence_rate", scalars)
        self.assertNotIn("client_loss_mean", scalars)
        self.assertNotIn("cluster_diversity", scalars)

    def test_history_summary(self):
        history = MetricsHistory()
        self.assertEqual(history.summary(), {})
        self.assertIsNone(history.last)

        history.append(_metrics(1, 0.6))
        history.append(_metrics(2, 0.9, reclustered=True))
        history.append(_metrics(3, 0.7, privacy_budget=12.0))

        summary = history.summary()
        self.assertEqual(summary["rounds"], 3.0)
        self.assertEqual(summary["final_accuracy"], 0.7)
        self.assertEqual(summary["best_accuracy"], 0.9)
        self.assertEqual(summary["total_comm_bytes"], 300.0)
        self.assertEqual(summary["total_reclusterings"], 1.0)
        self.assertEqual(summary["privacy_budget"], 12.0)
        self.assertEqual(history.series("global_accuracy"), [0.6, 0.9, 0.7])


class TestMlflowReporter(unittest.TestCase):
    """Test suite for the MLflow round callback."""

    def test_skips_without_active_run(self):
        with mock.patch("mlflow.active_run", return_value=None), mock.patch(
            "mlflow.log_metrics"
        ) as log_metrics:
            MlflowReporter()(_metrics(1, 0.5), [np.zeros(2)])
        log_metrics.assert_not_called()

    def test_logs_with_round_step(self):
        with mock.patch("mlflow.active_run", return_value=object()), mock.patch(
            "mlflow.log_metrics"
        ) as log_metrics:
            MlflowReporter()(_metrics(4, 0.5), [np.zeros(2)])
        log_metrics.assert_called_once()
        self.assertEqual(log_metrics.call_args.kwargs["step"], 4)


if __name__ == "__main__":
    unittest.main()
