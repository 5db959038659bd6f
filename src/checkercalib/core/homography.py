from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from checkercalib.config import HomographyConfig


@dataclass(frozen=True)
class HomographyFit:
    H: np.ndarray  # (3,3), H[2,2] == 1
    inliers: np.ndarray  # (N,) bool
    diagnostics: dict[str, float]


def _as_points(pts: np.ndarray, name: str) -> np.ndarray:
    pts = np.asarray(pts, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"{name} must have shape (N,2)")
    return pts


def normalize_homography(H: np.ndarray) -> np.ndarray | None:
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    if not np.all(np.isfinite(H)) or abs(H[2, 2]) < 1e-12:
        return None
    return H / H[2, 2]


def normalization_transform(pts: np.ndarray) -> np.ndarray | None:
    """
    Conditioning transform: per-axis zero mean and unit standard deviation.
    Returns None when the points have no spread along an axis.
    """
    mean = np.mean(pts, axis=0)
    std = np.std(pts, axis=0)
    if np.any(std < 1e-12):
        return None
    return np.array(
        [[1.0 / std[0], 0.0, -mean[0] / std[0]], [0.0, 1.0 / std[1], -mean[1] / std[1]], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )


def apply_homography(H: np.ndarray, pts: np.ndarray) -> np.ndarray:
    pts = np.asarray(pts, dtype=np.float64)
    flat = pts.reshape(-1, 2)
    xyw = flat @ H[:, :2].T + H[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        out = xyw[:, :2] / xyw[:, 2:3]
    return out.reshape(pts.shape)


def dlt_homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray | None:
    """
    Direct Linear Transform: H with dst ~ H src, from N >= 4 correspondences.

    Both point sets are conditioned first; the homography is the right singular vector of the
    2N x 9 constraint matrix for the smallest singular value. Returns None for degenerate
    configurations (e.g. three collinear points among four).
    """
    src = _as_points(src, "src")
    dst = _as_points(dst, "dst")
    if src.shape != dst.shape:
        raise ValueError("src and dst must have the same shape")
    if src.shape[0] < 4:
        raise ValueError("need >= 4 correspondences")

    Ts = normalization_transform(src)
    Td = normalization_transform(dst)
    if Ts is None or Td is None:
        return None
    s = src @ Ts[:2, :2].T + Ts[:2, 2]
    d = dst @ Td[:2, :2].T + Td[:2, 2]

    n = s.shape[0]
    x, y = s[:, 0], s[:, 1]
    u, v = d[:, 0], d[:, 1]
    zeros = np.zeros(n)
    ones = np.ones(n)
    A = np.empty((2 * n, 9), dtype=np.float64)
    A[0::2] = np.stack([-x, -y, -ones, zeros, zeros, zeros, u * x, u * y, u], axis=1)
    A[1::2] = np.stack([zeros, zeros, zeros, -x, -y, -ones, v * x, v * y, v], axis=1)

    _, sv, vt = np.linalg.svd(A)
    # 8 independent constraints are required; sv has min(2N, 9) entries.
    if sv[0] <= 0.0 or sv[7] / sv[0] < 1e-10:
        return None
    Hn = vt[-1].reshape(3, 3)
    H = np.linalg.inv(Td) @ Hn @ Ts
    return normalize_homography(H)


def transfer_errors(H: np.ndarray, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """
    Symmetric transfer error per correspondence: |H src - dst| + |H^-1 dst - src|.
    """
    src = _as_points(src, "src")
    dst = _as_points(dst, "dst")
    try:
        H_inv = np.linalg.inv(H)
    except np.linalg.LinAlgError:
        return np.full((src.shape[0],), np.inf)
    fwd = np.linalg.norm(apply_homography(H, src) - dst, axis=1)
    bwd = np.linalg.norm(apply_homography(H_inv, dst) - src, axis=1)
    err = fwd + bwd
    return np.where(np.isfinite(err), err, np.inf)


def homography_inliers(H: np.ndarray, src: np.ndarray, dst: np.ndarray, threshold: float) -> np.ndarray:
    return transfer_errors(H, src, dst) < float(threshold)


def ransac_homography(
    src: np.ndarray,
    dst: np.ndarray,
    *,
    rng: np.random.Generator,
    config: HomographyConfig | None = None,
) -> HomographyFit | None:
    """
    Robust dst ~ H src.

    Each of `config.ransac_iterations` draws fits a DLT to 4 distinct random correspondences
    and scores it by the number of symmetric-transfer inliers. The largest inlier set is
    refitted by DLT and then refined by Levenberg-Marquardt. Returns None when no draw yields
    at least 4 inliers.
    """
    from checkercalib.core.homography_refine import refine_homography

    config = config or HomographyConfig()
    src = _as_points(src, "src")
    dst = _as_points(dst, "dst")
    if src.shape != dst.shape:
        raise ValueError("src and dst must have the same shape")
    n = src.shape[0]
    if n < 4:
        return None

    thr = config.inlier_threshold
    best_mask: np.ndarray | None = None
    best_H: np.ndarray | None = None
    best_count = 0
    draws = 0
    for _ in range(int(config.ransac_iterations)):
        draws += 1
        idx = rng.choice(n, size=4, replace=False)
        H = dlt_homography(src[idx], dst[idx])
        if H is None:
            continue
        mask = homography_inliers(H, src, dst, thr)
        count = int(np.count_nonzero(mask))
        if count > best_count:
            best_count, best_mask, best_H = count, mask, H
            if count == n:
                break

    if best_mask is None or best_H is None or best_count < 4:
        return None

    H0 = dlt_homography(src[best_mask], dst[best_mask])
    if H0 is None:
        H0 = best_H
    H, diag = refine_homography(H0, src[best_mask], dst[best_mask], config=config)
    inliers = homography_inliers(H, src, dst, thr)
    if int(np.count_nonzero(inliers)) < best_count:
        # Keep the consensus set the model was refined on.
        inliers = best_mask

    diagnostics = dict(diag)
    diagnostics.update(
        {
            "ransac_draws": float(draws),
            "inliers": float(np.count_nonzero(inliers)),
            "correspondences": float(n),
        }
    )
    return HomographyFit(H=H, inliers=inliers, diagnostics=diagnostics)
