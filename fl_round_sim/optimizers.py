"""Server-side optimizers applied to aggregated client updates."""

from typing import Optional

import numpy as np

from flwr.common import NDArrays

from fl_round_sim.domain.aggregation import check_same_shape


class ServerAdam:
    """Adam on the server, treating the aggregated update as a gradient.

    Moment vectors are allocated lazily to the gradient's shape on the first
    step and persist across rounds until ``reset`` is called.
    """

    def __init__(
        self,
        lr: float = 0.01,
        beta1: float = 0.9,
        beta2: float = 0.999,
        eps: float = 1e-8,
    ):
        self.lr = lr
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps
        self.m: Optional[NDArrays] = None
        self.v: Optional[NDArrays] = None
        self.t = 0

    def reset(self) -> None:
        self.m = None
        self.v = None
        self.t = 0

    def step(self, weights: NDArrays, grad: NDArrays) -> NDArrays:
        """Return ``weights - lr * m_hat / (sqrt(v_hat) + eps)``.

        Args:
            weights: Current weights (not mutated).
            grad: Gradient with the same shape as ``weights``.

        Returns:
            Updated weights.
        """
        check_same_shape(weights, grad)
        if self.m is not None:
            check_same_shape(self.m, grad)

        self.t += 1
        if self.m is None:
            self.m = [np.zeros(np.shape(g), dtype=np.float64) for g in grad]
        if self.v is None:
            self.v = [np.zeros(np.shape(g), dtype=np.float64) for g in grad]

        bias1 = 1.0 - self.beta1**self.t
        bias2 = 1.0 - self.beta2**self.t

        out = []
        for i, (w, g) in enumerate(zip(weights, grad)):
            self.m[i] = self.beta1 * self.m[i] + (1.0 - self.beta1) * g
            self.v[i] = self.beta2 * self.v[i] + (1.0 - self.beta2) * g * g
            m_hat = self.m[i] / bias1
            v_hat = self.v[i] / bias2
            out.append(w - self.lr * (m_hat / (np.sqrt(v_hat) + self.eps)))
        return out
