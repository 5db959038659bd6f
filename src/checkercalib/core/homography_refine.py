from __future__ import annotations

import numpy as np

from checkercalib.config import HomographyConfig
from checkercalib.core.homography import apply_homography, normalize_homography
from checkercalib.core.robust import robust_weights


def _params_from_h(H: np.ndarray, parameterization: str) -> np.ndarray:
    h = np.asarray(H, dtype=np.float64).reshape(9).copy()
    if parameterization == "fixed_h33":
        return h[:8] / h[8]
    if parameterization == "full":
        return h
    raise ValueError("parameterization must be fixed_h33|full")


def _h_from_params(p: np.ndarray) -> np.ndarray:
    if p.size == 8:
        return np.append(p, 1.0).reshape(3, 3)
    return p.reshape(3, 3)


def homography_residuals(H: np.ndarray, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """(N,2) residuals dst - normalize(H src)."""
    return np.asarray(dst, dtype=np.float64) - apply_homography(H, src)


def homography_jacobian(H: np.ndarray, src: np.ndarray) -> np.ndarray:
    """
    Jacobian (N,2,9) of normalize(H src) with respect to the row-major entries of H.

    d(u)/dh = [x, y, 1, 0, 0, 0, -u x, -u y, -u] / w
    d(v)/dh = [0, 0, 0, x, y, 1, -v x, -v y, -v] / w
    """
    src = np.asarray(src, dtype=np.float64).reshape(-1, 2)
    x = src[:, 0]
    y = src[:, 1]
    w = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    u = (H[0, 0] * x + H[0, 1] * y + H[0, 2]) / w
    v = (H[1, 0] * x + H[1, 1] * y + H[1, 2]) / w
    ones = np.ones_like(x)
    zeros = np.zeros_like(x)
    ju = np.stack([x, y, ones, zeros, zeros, zeros, -u * x, -u * y, -u], axis=1)
    jv = np.stack([zeros, zeros, zeros, x, y, ones, -v * x, -v * y, -v], axis=1)
    return np.stack([ju, jv], axis=1) / w[:, None, None]


def refine_homography(
    H: np.ndarray,
    src: np.ndarray,
    dst: np.ndarray,
    *,
    config: HomographyConfig | None = None,
) -> tuple[np.ndarray, dict[str, float]]:
    """
    Levenberg-Marquardt bundle adjustment of dst ~ H src.

    Minimizes sum_i w_i |dst_i - normalize(H src_i)|^2 where the IRLS weights w_i come from
    `config.loss` (recomputed once per iteration from the current residual population).

    Parameterizations:
    - `fixed_h33`: the 8 entries other than H[2,2] (H[2,2] held at 1)
    - `full`: additive update of all 9 entries followed by renormalization

    Returns (H, diagnostics) with H[2,2] == 1.
    """
    config = config or HomographyConfig()
    src = np.asarray(src, dtype=np.float64).reshape(-1, 2)
    dst = np.asarray(dst, dtype=np.float64).reshape(-1, 2)
    if src.shape != dst.shape:
        raise ValueError("src and dst must have the same shape")

    H0 = normalize_homography(H)
    if H0 is None:
        raise ValueError("initial homography must be finite with H[2,2] != 0")

    p = _params_from_h(H0, config.parameterization)
    fixed = p.size == 8
    e = homography_residuals(H0, src, dst)
    initial_rms = float(np.sqrt(np.mean(np.sum(e * e, axis=1)))) if e.size else 0.0

    lam = float(config.lambda_init)
    accepted = 0
    it = 0
    for it in range(1, int(config.max_iterations) + 1):
        norms = np.linalg.norm(e, axis=1)
        w = robust_weights(norms, config.loss)
        cost = float(np.sum(w * norms**2))
        if cost < config.error_threshold:
            break

        J = homography_jacobian(_h_from_params(p), src)
        if fixed:
            J = J[:, :, :8]
        Jw = J * w[:, None, None]
        A = np.einsum("nik,nil->kl", Jw, J)
        g = np.einsum("nik,ni->k", Jw, e)

        try:
            delta = np.linalg.solve(A + lam * np.diag(np.diag(A)), g)
        except np.linalg.LinAlgError:
            lam *= 10.0
            continue

        p_new = p + delta
        if not fixed:
            if abs(p_new[8]) < 1e-12:
                lam *= 10.0
                continue
            p_new = p_new / p_new[8]
        e_new = homography_residuals(_h_from_params(p_new), src, dst)
        cost_new = float(np.sum(w * np.sum(e_new * e_new, axis=1)))
        if np.isfinite(cost_new) and cost_new < cost:
            p, e = p_new, e_new
            lam /= 10.0
            accepted += 1
        else:
            lam *= 10.0
        if lam > 1e16:
            break

    H_out = _h_from_params(p)
    H_out = H_out / H_out[2, 2]
    final_rms = float(np.sqrt(np.mean(np.sum(e * e, axis=1)))) if e.size else 0.0
    return H_out, {
        "initial_rms_px": initial_rms,
        "final_rms_px": final_rms,
        "iterations": float(it),
        "accepted_steps": float(accepted),
    }
