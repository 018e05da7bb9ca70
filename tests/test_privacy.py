"""
Unit tests for update clipping, Gaussian noise and the DP sanitiser.
"""

import math
import unittest

import numpy as np

from fl_round_sim.privacy import (
    DPSanitizer,
    PrivacyAccountant,
    add_gaussian_noise,
    clip_update,
    global_l2_norm,
)
from fl_round_sim.rng import RandomSource, Xorshift32


class ScriptedRandom(RandomSource):
    """Random source replaying a fixed list of uniforms."""

    def __init__(self, values):
        super().__init__()
        self._values = list(values)

    def uniform(self) -> float:
        return self._values.pop(0)


class TestClipping(unittest.TestCase):
    """Test suite for L2 clipping."""

    def test_clip_scales_to_threshold(self):
        out = clip_update([np.array([3.0, 4.0])], 2.0)
        np.testing.assert_allclose(out[0], [1.2, 1.6])

    def test_clip_uses_global_norm_across_groups(self):
        out = clip_update([np.array([3.0]), np.array([[4.0]])], 2.0)
        np.testing.assert_allclose(out[0], [1.2])
        np.testing.assert_allclose(out[1], [[1.6]])
        self.assertAlmostEqual(global_l2_norm(out), 2.0)

    def test_within_bound_is_unchanged(self):
        delta = [np.array([0.3, 0.4])]
        out = clip_update(delta, 1.0)
        np.testing.assert_allclose(out[0], [0.3, 0.4])

    def test_disabled_thresholds(self):
        delta = [np.array([30.0, 40.0])]
        for threshold in (0.0, -1.0, float("inf"), float("nan")):
            out = clip_update(delta, threshold)
            np.testing.assert_allclose(out[0], [30.0, 40.0])

    def test_input_not_mutated(self):
        delta = [np.array([3.0, 4.0])]
        clip_update(delta, 1.0)
        np.testing.assert_allclose(delta[0], [3.0, 4.0])

    def test_zero_vector(self):
        out = clip_update([np.zeros(3)], 1.0)
        np.testing.assert_allclose(out[0], np.zeros(3))


class TestGaussianNoise(unittest.TestCase):
    """Test suite for per-element noise."""

    def setUp(self):
        self.uniforms = [0.13579, 0.24680, 0.97531, 0.86420, 0.11111, 0.22222]
        self.values = [1.0, -2.0, 0.5]

    def test_noise_follows_box_muller_pairs(self):
        rng = ScriptedRandom(self.uniforms)
        out = add_gaussian_noise([np.array(self.values)], 0.1, rng)

        expected = []
        for i, x in enumerate(self.values):
            u = self.uniforms[2 * i]
            v = self.uniforms[2 * i + 1]
            expected.append(x + 0.1 * math.sqrt(-2.0 * math.log(u)) * math.cos(2 * math.pi * v))
        np.testing.assert_allclose(out[0], expected, rtol=0, atol=1e-12)

    def test_shapes_preserved(self):
        rng = Xorshift32(3)
        delta = [np.zeros((2, 3)), np.zeros(4)]
        out = add_gaussian_noise(delta, 1.0, rng)
        self.assertEqual([o.shape for o in out], [(2, 3), (4,)])

    def test_zero_std_is_noop(self):
        rng = ScriptedRandom([])
        out = add_gaussian_noise([np.array([1.0, 2.0])], 0.0, rng)
        np.testing.assert_allclose(out[0], [1.0, 2.0])

    def test_noise_std_matches(self):
        rng = Xorshift32(17)
        out = add_gaussian_noise([np.zeros(20000)], 0.5, rng)
        self.assertAlmostEqual(float(out[0].std()), 0.5, delta=0.02)
        self.assertAlmostEqual(float(out[0].mean()), 0.0, delta=0.02)


class TestSanitizer(unittest.TestCase):
    """Test suite for the clip-then-noise sanitiser and its budget."""

    def test_accountant_budget(self):
        accountant = PrivacyAccountant()
        accountant.record(0.5)
        accountant.record(2.0)
        accountant.record(0.0)
        self.assertAlmostEqual(accountant.budget, 4.0 + 0.25)

    def test_clip_only_has_no_budget(self):
        sanitizer = DPSanitizer(1.0, 0.0, True, Xorshift32(1))
        out = sanitizer.sanitize_client([np.array([3.0, 4.0])])
        np.testing.assert_allclose(out[0], [0.6, 0.8])
        self.assertEqual(sanitizer.privacy_budget, 0.0)

    def test_client_level(self):
        sanitizer = DPSanitizer(1.0, 0.5, True, Xorshift32(1))
        delta = [np.array([3.0, 4.0])]
        sanitizer.sanitize_client(delta)
        sanitizer.sanitize_client(delta)
        self.assertAlmostEqual(sanitizer.privacy_budget, 2 * 4.0)

        aggregate = sanitizer.sanitize_aggregate(delta)
        np.testing.assert_allclose(aggregate[0], [3.0, 4.0])

    def test_server_level(self):
        sanitizer = DPSanitizer(1.0, 0.0, False, Xorshift32(1))
        delta = [np.array([3.0, 4.0])]
        np.testing.assert_allclose(sanitizer.sanitize_client(delta)[0], [3.0, 4.0])
        np.testing.assert_allclose(sanitizer.sanitize_aggregate(delta)[0], [0.6, 0.8])

    def test_disabled(self):
        sanitizer = DPSanitizer(0.0, 1.0, True, Xorshift32(1))
        self.assertFalse(sanitizer.enabled)
        self.assertEqual(sanitizer.sigma, 0.0)
        out = sanitizer.sanitize_client([np.array([3.0, 4.0])])
        np.testing.assert_allclose(out[0], [3.0, 4.0])


if __name__ == "__main__":
    unittest.main()
