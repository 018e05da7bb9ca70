"""
Unit tests for the server-side Adam optimizer.
"""

import unittest

import numpy as np

from fl_round_sim.optimizers import ServerAdam


class TestServerAdam(unittest.TestCase):
    """Test suite for ServerAdam."""

    def setUp(self):
        self.optimizer = ServerAdam(lr=0.01)

    def test_first_step_is_lr_times_sign(self):
        out = self.optimizer.step([np.zeros(3)], [np.ones(3)])
        np.testing.assert_allclose(out[0], -0.01 * np.ones(3), atol=1e-8)
        self.assertEqual(self.optimizer.t, 1)

    def test_zero_gradient_keeps_weights(self):
        out = self.optimizer.step([np.array([1.0, 2.0])], [np.zeros(2)])
        np.testing.assert_allclose(out[0], [1.0, 2.0])

    def test_weights_not_mutated(self):
        weights = [np.array([1.0, 2.0])]
        self.optimizer.step(weights, [np.ones(2)])
        np.testing.assert_allclose(weights[0], [1.0, 2.0])

    def test_converges_on_quadratic(self):
        optimizer = ServerAdam(lr=0.02)
        weights = [np.array([1.0, -2.0, 3.0])]
        start = float(np.sum(weights[0] ** 2))
        for _ in range(400):
            weights = optimizer.step(weights, [weights[0].copy()])
        self.assertLess(float(np.sum(weights[0] ** 2)), 0.05 * start)

    def test_reset_clears_moments(self):
        self.optimizer.step([np.zeros(2)], [np.ones(2)])
        self.optimizer.reset()
        self.assertIsNone(self.optimizer.m)
        self.assertIsNone(self.optimizer.v)
        self.assertEqual(self.optimizer.t, 0)

        # After reset the first step is bias-corrected again
        out = self.optimizer.step([np.zeros(2)], [np.ones(2)])
        np.testing.assert_allclose(out[0], [-0.01, -0.01], atol=1e-8)

    def test_shape_change_raises(self):
        self.optimizer.step([np.zeros(2)], [np.ones(2)])
        with self.assertRaises(ValueError):
            self.optimizer.step([np.zeros(3)], [np.ones(3)])


if __name__ == "__main__":
    unittest.main()
