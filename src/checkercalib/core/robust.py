from __future__ import annotations

from typing import Literal

import numpy as np

HUBER_K = 1.345
TUKEY_K = 4.685

RobustLoss = Literal["linear", "huber", "tukey"]


def robust_weights(residual_norms: np.ndarray, loss: RobustLoss) -> np.ndarray:
    """
    IRLS weights for residual norms.

    The cut-off is `k * std(residual_norms)`: the scale is taken from the current residual
    population, so callers recompute weights once per iteration.
    """
    r = np.asarray(residual_norms, dtype=np.float64).reshape(-1)
    w = np.ones_like(r)
    if loss == "linear" or r.size == 0:
        return w
    if loss not in ("huber", "tukey"):
        raise ValueError("loss must be linear|huber|tukey")

    sigma = float(np.std(r))
    if not np.isfinite(sigma) or sigma < 1e-12:
        return w

    if loss == "huber":
        c = HUBER_K * sigma
        big = r > c
        w[big] = c / r[big]
        return w

    c = TUKEY_K * sigma
    u = r / c
    w = np.where(u < 1.0, (1.0 - u * u) ** 2, 0.0)
    if not np.any(w > 0.0):
        return np.ones_like(r)
    return w
