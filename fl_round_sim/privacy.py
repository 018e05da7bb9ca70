"""Differential-privacy sanitisation of model updates.

Updates are clipped to a global L2 norm and perturbed with Gaussian noise,
either per client before aggregation or once on the aggregate. The
``PrivacyAccountant`` is a simplified proxy (sum of ``1/sigma**2`` over
noisy releases), not a calibrated DP accountant.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from flwr.common import NDArrays

from fl_round_sim.domain.aggregation import flatten_params
from fl_round_sim.rng import RandomSource

logger = logging.getLogger(__name__)

NORM_FLOOR = 1e-12


def global_l2_norm(weights: NDArrays) -> float:
    """L2 norm of all groups concatenated."""
    if not weights:
        return 0.0
    return float(np.linalg.norm(flatten_params(weights)))


def clip_update(delta: NDArrays, clip_norm: float) -> NDArrays:
    """Scale ``delta`` so its global L2 norm is at most ``clip_norm``.

    Non-positive or non-finite thresholds leave the update unchanged. The
    input is never mutated.
    """
    if not math.isfinite(clip_norm) or clip_norm <= 0:
        return delta
    norm = global_l2_norm(delta) or NORM_FLOOR
    scale = min(1.0, clip_norm / norm)
    if scale == 1.0:
        return delta
    return [w * scale for w in delta]


def add_gaussian_noise(delta: NDArrays, std: float, rng: RandomSource) -> NDArrays:
    """Add independent N(0, std**2) noise to every element.

    Each element consumes two uniforms ``u, v`` from ``rng`` and receives
    ``std * sqrt(-2 ln u) * cos(2 pi v)``.
    """
    if not math.isfinite(std) or std <= 0:
        return delta

    out = []
    for w in delta:
        flat = np.ravel(np.asarray(w, dtype=np.float64))
        pairs = np.array([(rng.uniform(), rng.uniform()) for _ in range(flat.size)])
        if flat.size:
            z = np.sqrt(-2.0 * np.log(pairs[:, 0])) * np.cos(2.0 * np.pi * pairs[:, 1])
        else:
            z = np.zeros(0)
        out.append((flat + std * z).reshape(np.shape(w)).astype(np.asarray(w).dtype))
    return out


@dataclass
class PrivacyAccountant:
    """Running proxy for the privacy cost of noisy releases."""

    budget: float = 0.0

    def record(self, sigma: float) -> None:
        if sigma > 0:
            self.budget += 1.0 / (sigma * sigma)


class DPSanitizer:
    """Clip-then-noise sanitiser configured from the simulation settings.

    Args:
        clip_norm: L2 clip threshold. ``None`` or non-positive disables DP.
        noise_multiplier: Noise std as a multiple of ``clip_norm``.
        client_level: Sanitise each client delta (True) or the aggregate.
        rng: Random source used for the noise.
    """

    def __init__(
        self,
        clip_norm: float,
        noise_multiplier: float,
        client_level: bool,
        rng: RandomSource,
    ):
        self.clip_norm = clip_norm
        self.noise_multiplier = noise_multiplier
        self.client_level = client_level
        self.accountant = PrivacyAccountant()
        self._rng = rng

    @property
    def enabled(self) -> bool:
        return bool(self.clip_norm) and self.clip_norm > 0

    @property
    def sigma(self) -> float:
        if not self.enabled:
            return 0.0
        return max(0.0, self.noise_multiplier or 0.0) * self.clip_norm

    def sanitize(self, delta: NDArrays) -> NDArrays:
        """Clip and (if ``sigma > 0``) noise ``delta``, updating the budget."""
        clipped = clip_update(delta, self.clip_norm)
        sigma = self.sigma
        if sigma <= 0:
            return clipped
        self.accountant.record(sigma)
        return add_gaussian_noise(clipped, sigma, self._rng)

    def sanitize_client(self, delta: NDArrays) -> NDArrays:
        if self.enabled and self.client_level:
            return self.sanitize(delta)
        return delta

    def sanitize_aggregate(self, aggregate: NDArrays) -> NDArrays:
        if self.enabled and not self.client_level:
            logger.debug("Applying server-level DP (sigma=%.4f)", self.sigma)
            return self.sanitize(aggregate)
        return aggregate

    @property
    def privacy_budget(self) -> float:
        return self.accountant.budget
