from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from checkercalib.errors import InsufficientData, NumericalDegeneracy


def _v(H: np.ndarray, i: int, j: int) -> np.ndarray:
    hi = H[:, i]
    hj = H[:, j]
    return np.array(
        [
            hi[0] * hj[0],
            hi[0] * hj[1] + hi[1] * hj[0],
            hi[1] * hj[1],
            hi[2] * hj[0] + hi[0] * hj[2],
            hi[2] * hj[1] + hi[1] * hj[2],
            hi[2] * hj[2],
        ],
        dtype=np.float64,
    )


def zhang_constraints(homographies: Sequence[np.ndarray]) -> np.ndarray:
    """
    Stack the 2 rows [v12^T ; (v11 - v22)^T] of every homography into V (2N,6).

    Homographies map the reference plane to the image (H ~ K [r1 r2 t]).
    """
    rows = []
    for H in homographies:
        H = np.asarray(H, dtype=np.float64).reshape(3, 3)
        H = H / np.linalg.norm(H)
        rows.append(_v(H, 0, 1))
        rows.append(_v(H, 0, 0) - _v(H, 1, 1))
    return np.stack(rows, axis=0)


def intrinsics_from_b(b: np.ndarray) -> np.ndarray:
    """
    Closed-form K from b = (B11, B12, B22, B13, B23, B33), B = lambda K^-T K^-1.

    Raises NumericalDegeneracy if B is not positive definite.
    """
    b = np.asarray(b, dtype=np.float64).reshape(6)
    if b[0] < 0.0:
        b = -b
    B11, B12, B22, B13, B23, B33 = (float(x) for x in b)

    d = B11 * B22 - B12 * B12
    if B11 <= 0.0 or d <= 0.0:
        raise NumericalDegeneracy("B is not positive definite")
    v0 = (B12 * B13 - B11 * B23) / d
    lam = B33 - (B13 * B13 + v0 * (B12 * B13 - B11 * B23)) / B11
    if lam <= 0.0:
        raise NumericalDegeneracy("B is not positive definite (lambda <= 0)")
    alpha = np.sqrt(lam / B11)
    beta = np.sqrt(lam * B11 / d)
    gamma = -B12 * alpha * alpha * beta / lam
    u0 = gamma * v0 / beta - B13 * alpha * alpha / lam

    K = np.array([[alpha, gamma, u0], [0.0, beta, v0], [0.0, 0.0, 1.0]], dtype=np.float64)
    if not np.all(np.isfinite(K)):
        raise NumericalDegeneracy("non-finite intrinsics recovered from B")
    return K


def _image_conditioning(image_size: tuple[int, int]) -> np.ndarray:
    w, h = float(image_size[0]), float(image_size[1])
    s = 2.0 / (w + h)
    return np.array([[s, 0.0, -s * (w - 1) / 2.0], [0.0, s, -s * (h - 1) / 2.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def solve_intrinsics(
    homographies: Sequence[np.ndarray],
    *,
    image_size: tuple[int, int] | None = None,
    rank_tol: float = 1e-9,
) -> np.ndarray:
    """
    Zhang's linear solve for the shared intrinsic matrix K (K[2,2] == 1).

    With `image_size` the image coordinates are first centred and scaled to about [-1,1],
    which keeps V well conditioned; K is mapped back afterwards.

    Raises InsufficientData for fewer than 3 homographies and NumericalDegeneracy when the
    null space of V is not one-dimensional (too few or too similar views) or B is not
    positive definite.
    """
    Hs = [np.asarray(H, dtype=np.float64).reshape(3, 3) for H in homographies]
    if len(Hs) < 3:
        raise InsufficientData(f"need >= 3 homographies, got {len(Hs)}")
    if not all(np.all(np.isfinite(H)) for H in Hs):
        raise NumericalDegeneracy("non-finite homography")

    T = _image_conditioning(image_size) if image_size is not None else np.eye(3)
    V = zhang_constraints([T @ H for H in Hs])
    _, sv, vt = np.linalg.svd(V)
    if sv[0] <= 0.0 or sv[4] / sv[0] < rank_tol:
        raise NumericalDegeneracy(
            f"Zhang constraints are rank deficient (singular values {np.array2string(sv, precision=3)})"
        )
    K_n = intrinsics_from_b(vt[-1])
    K = np.linalg.inv(T) @ K_n
    return K / K[2, 2]
