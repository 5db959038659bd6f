from __future__ import annotations

import math

import numpy as np

from checkercalib.config import DetectionConfig
from checkercalib.core.geometry import LineSegment, fit_line_tls, in_bounds
from checkercalib.core.quad import Contour, Quad


def fit_ransac_line(
    pts: np.ndarray,
    *,
    rng: np.random.Generator,
    iterations: int = 100,
    threshold: float = 1.0,
    min_inliers: int = 2,
    min_seed_separation: float = 1.0,
) -> tuple[LineSegment, np.ndarray] | None:
    """
    RANSAC line through a 2D point set.

    Seeds are pairs of distinct points at least `min_seed_separation` apart; inliers lie within
    `threshold` of the seed line. The best consensus set is refitted by total least squares and
    its inliers collected once more. Returns (line, inlier_mask) or None if no line gathers
    `min_inliers` points.
    """
    pts = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    n = pts.shape[0]
    if n < max(2, int(min_inliers)):
        return None

    pairs = rng.integers(0, n, size=(int(iterations), 2))
    a = pts[pairs[:, 0]]
    b = pts[pairs[:, 1]]
    d = b - a
    length = np.hypot(d[:, 0], d[:, 1])
    valid = length >= float(min_seed_separation)
    if not np.any(valid):
        return None
    a, d, length = a[valid], d[valid], length[valid]

    normal = np.stack([-d[:, 1], d[:, 0]], axis=1) / length[:, None]
    dist = np.abs(np.einsum("kj,knj->kn", normal, pts[None, :, :] - a[:, None, :]))
    inl = dist <= float(threshold)
    counts = np.count_nonzero(inl, axis=1)
    best = int(np.argmax(counts))
    if int(counts[best]) < int(min_inliers):
        return None

    mask = inl[best]
    line = fit_line_tls(pts[mask])
    refined = line.distance(pts) <= float(threshold)
    if int(np.count_nonzero(refined)) >= int(min_inliers):
        return line, refined
    return LineSegment(a[best].copy(), a[best] + d[best]), mask


def fit_quad_lines(
    contour: Contour,
    *,
    rng: np.random.Generator,
    config: DetectionConfig | None = None,
) -> list[LineSegment]:
    """
    Repeatedly extracts RANSAC lines from the contour points not yet assigned to a line,
    up to `config.max_lines` lines.

    The inlier floor is `min_line_inlier_fraction` of the points still unassigned, so it shrinks
    as sides are removed, but never drops below `min_line_points`.
    """
    config = config or DetectionConfig()
    pts = np.asarray(contour.points, dtype=np.float64).reshape(-1, 2)

    lines: list[LineSegment] = []
    remaining = pts
    while len(lines) < config.max_lines:
        min_inliers = max(
            2,
            int(config.min_line_points),
            int(math.ceil(remaining.shape[0] * config.min_line_inlier_fraction)),
        )
        if remaining.shape[0] < min_inliers:
            break
        fit = fit_ransac_line(
            remaining,
            rng=rng,
            iterations=config.line_ransac_iterations,
            threshold=config.line_inlier_threshold,
            min_inliers=min_inliers,
            min_seed_separation=config.min_corner_separation,
        )
        if fit is None:
            break
        line, mask = fit
        lines.append(line)
        remaining = remaining[~mask]
    return lines


def _corner_ok(p: np.ndarray | None, pts: np.ndarray, image_size: tuple[int, int], eps: float) -> bool:
    if p is None or not np.all(np.isfinite(p)):
        return False
    if not in_bounds(p, int(image_size[0]), int(image_size[1])):
        return False
    # Near-parallel lines intersect far away from the blob.
    return float(np.min(np.hypot(pts[:, 0] - p[0], pts[:, 1] - p[1]))) <= eps


def fit_quad(
    contour: Contour,
    image_size: tuple[int, int],
    *,
    rng: np.random.Generator,
    config: DetectionConfig | None = None,
) -> Quad | None:
    """
    Fit a 4-sided polygon to one contour, or return None.

    Corners are chained by a hand-shake over the 4 fitted lines: starting from line 0, each step
    intersects the current line with the first unused line whose intersection is a plausible
    corner, and the last corner closes the loop back onto line 0. The resulting corners are
    sequential around the quad.
    """
    config = config or DetectionConfig()
    pts = np.asarray(contour.points, dtype=np.float64).reshape(-1, 2)
    if pts.shape[0] < max(4, config.min_contour_points):
        return None

    lines = fit_quad_lines(contour, rng=rng, config=config)
    if len(lines) != 4:
        return None

    eps = float(config.corner_contour_eps)
    corners: list[np.ndarray] = []
    current = 0
    unused = [1, 2, 3]
    for _ in range(3):
        for cand in unused:
            p = lines[current].intersect(lines[cand])
            if _corner_ok(p, pts, image_size, eps):
                corners.append(p)
                unused.remove(cand)
                current = cand
                break
        else:
            return None

    closing = lines[current].intersect(lines[0])
    if not _corner_ok(closing, pts, image_size, eps):
        return None
    corners.append(closing)

    quad_pts = np.stack(corners, axis=0)
    for i in range(4):
        for j in range(i + 1, 4):
            if float(np.linalg.norm(quad_pts[i] - quad_pts[j])) < config.min_corner_separation:
                return None
    return Quad.from_corners(quad_pts)
