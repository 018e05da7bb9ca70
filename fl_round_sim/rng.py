"""Reproducible random sampling for federated simulations.

Every consumer receives an explicit ``RandomSource`` so that a simulation
seeded once replays exactly:

- ``Xorshift32``: fast deterministic generator driven by a 32-bit seed.
- ``NumpyRandom``: unseeded source backed by ``numpy.random.default_rng``
  for interactive runs.

Both expose uniform, standard-normal, Gamma and symmetric-Dirichlet draws
plus an in-place Fisher-Yates shuffle.
"""

import math
from abc import ABC, abstractmethod
from typing import List, MutableSequence, Optional

import numpy as np

UINT32_MASK = 0xFFFFFFFF
GOLDEN_RATIO_SEED = 0x9E3779B1
MIN_UNIFORM = 1.0 / 4294967296.0

GAMMA_SHAPE_EPS = 1e-12
DIRICHLET_ALPHA_EPS = 1e-3


class RandomSource(ABC):
    """Base class for random sources.

    Subclasses only provide ``uniform``; all derived distributions are
    computed here so seeded and unseeded sources behave identically.
    """

    def __init__(self) -> None:
        self._gauss_spare: Optional[float] = None

    @abstractmethod
    def uniform(self) -> float:
        """Return a draw from (0, 1). Exact zero is never returned."""
        pass

    def randint(self, n: int) -> int:
        """Return an integer in ``[0, n)``."""
        return min(n - 1, int(self.uniform() * n))

    def normal(self) -> float:
        """Standard normal draw via Box-Muller, reusing the spare value."""
        if self._gauss_spare is not None:
            z = self._gauss_spare
            self._gauss_spare = None
            return z

        u1 = self.uniform()
        u2 = self.uniform()
        r = math.sqrt(-2.0 * math.log(u1))
        theta = 2.0 * math.pi * u2
        self._gauss_spare = r * math.sin(theta)
        return r * math.cos(theta)

    def gamma(self, shape: float) -> float:
        """Gamma(shape, scale=1) draw.

        Uses Marsaglia-Tsang for ``shape >= 1`` and the boosting transform
        ``Gamma(a) = Gamma(a + 1) * U**(1/a)`` below that.
        """
        if not shape > 0:
            shape = GAMMA_SHAPE_EPS
        if shape < 1:
            u = self.uniform()
            return self.gamma(shape + 1.0) * u ** (1.0 / shape)

        d = shape - 1.0 / 3.0
        c = 1.0 / math.sqrt(9.0 * d)
        while True:
            x = self.normal()
            v = 1.0 + c * x
            if v <= 0:
                continue
            v = v * v * v
            u = self.uniform()
            if u < 1.0 - 0.0331 * (x * x) * (x * x):
                return d * v
            if math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
                return d * v

    def dirichlet(self, k: int, alpha: float) -> np.ndarray:
        """Symmetric Dirichlet draw of dimension ``k``.

        Args:
            k: Number of components.
            alpha: Concentration. Non-positive values are clamped.

        Returns:
            Array of ``k`` non-negative values summing to one.
        """
        a = alpha if alpha > 0 else DIRICHLET_ALPHA_EPS
        draws = np.array([self.gamma(a) for _ in range(k)], dtype=np.float64)
        total = float(draws.sum())
        if not total > 0:
            return np.full(k, 1.0 / k)
        return draws / total

    def shuffle(self, items: MutableSequence) -> None:
        """Fisher-Yates shuffle in place."""
        for i in range(len(items) - 1, 0, -1):
            j = self.randint(i + 1)
            items[i], items[j] = items[j], items[i]

    def permutation(self, n: int) -> List[int]:
        """Return a shuffled list of ``range(n)``."""
        order = list(range(n))
        self.shuffle(order)
        return order


class Xorshift32(RandomSource):
    """Deterministic xorshift32 generator."""

    def __init__(self, seed: int):
        super().__init__()
        state = int(seed) & UINT32_MASK
        # Zero is a fixed point of xorshift.
        self._state = state or GOLDEN_RATIO_SEED

    @property
    def state(self) -> int:
        return self._state

    def next_uint32(self) -> int:
        x = self._state
        x ^= (x << 13) & UINT32_MASK
        x ^= x >> 17
        x ^= (x << 5) & UINT32_MASK
        self._state = x
        return x

    def uniform(self) -> float:
        u = self.next_uint32() / 4294967296.0
        return u if u > 0 else MIN_UNIFORM


class NumpyRandom(RandomSource):
    """Unseeded source drawing from a numpy ``Generator``."""

    def __init__(self, generator: Optional[np.random.Generator] = None):
        super().__init__()
        self._generator = generator if generator is not None else np.random.default_rng()

    def uniform(self) -> float:
        u = float(self._generator.random())
        return u if u > 0 else MIN_UNIFORM


def create_rng(seed: Optional[int] = None) -> RandomSource:
    """Create a random source.

    Args:
        seed: 32-bit seed. ``None`` selects true randomness.

    Returns:
        ``Xorshift32`` when seeded, ``NumpyRandom`` otherwise.
    """
    if seed is None:
        return NumpyRandom()
    return Xorshift32(seed)
