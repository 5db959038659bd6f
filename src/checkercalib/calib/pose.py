from __future__ import annotations

import numpy as np

from checkercalib.errors import NumericalDegeneracy


def nearest_rotation(Q: np.ndarray) -> np.ndarray:
    """Project a 3x3 matrix onto SO(3) (Frobenius-nearest proper rotation)."""
    U, _, Vt = np.linalg.svd(np.asarray(Q, dtype=np.float64).reshape(3, 3))
    R = U @ Vt
    if np.linalg.det(R) < 0.0:
        U[:, -1] *= -1.0
        R = U @ Vt
    return R


def extract_pose(K: np.ndarray, H: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Board pose (R, t) from a reference->image homography, X_cam = R [x, y, 0]^T + t.

    lambda = 1 / |K^-1 h1|, r1 = lambda K^-1 h1, r2 = lambda K^-1 h2, r3 = r1 x r2,
    t = lambda K^-1 h3. The sign of lambda puts the board in front of the camera (t_z > 0).
    """
    K = np.asarray(K, dtype=np.float64).reshape(3, 3)
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    try:
        M = np.linalg.solve(K, H)
    except np.linalg.LinAlgError as exc:
        raise NumericalDegeneracy("singular intrinsic matrix") from exc

    n1 = float(np.linalg.norm(M[:, 0]))
    if not np.isfinite(n1) or n1 < 1e-15:
        raise NumericalDegeneracy("homography has a vanishing first column")
    lam = 1.0 / n1
    if M[2, 2] * lam < 0.0:
        lam = -lam
    r1 = lam * M[:, 0]
    r2 = lam * M[:, 1]
    t = lam * M[:, 2]
    r3 = np.cross(r1, r2)
    R = nearest_rotation(np.column_stack([r1, r2, r3]))
    return R, t
