from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class LineSegment:
    """
    Two points defining an infinite 2D line.

    Only the line through `p0` and `p1` matters; the segment extent is never used.
    """

    p0: np.ndarray  # (2,)
    p1: np.ndarray  # (2,)

    def homogeneous(self) -> np.ndarray:
        """Line coefficients (a,b,c) with a*x + b*y + c = 0 and (a,b) of unit norm."""
        l = np.cross(np.array([self.p0[0], self.p0[1], 1.0]), np.array([self.p1[0], self.p1[1], 1.0]))
        n = float(np.hypot(l[0], l[1]))
        if n < 1e-12:
            raise ValueError("degenerate line: both points coincide")
        return l / n

    def signed_distance(self, pts: np.ndarray) -> np.ndarray:
        pts = np.asarray(pts, dtype=np.float64)
        a, b, c = self.homogeneous()
        return a * pts[..., 0] + b * pts[..., 1] + c

    def distance(self, pts: np.ndarray) -> np.ndarray:
        return np.abs(self.signed_distance(pts))

    def intersect(self, other: LineSegment) -> np.ndarray | None:
        """Intersection point of both infinite lines, or None when they are (nearly) parallel."""
        x = np.cross(self.homogeneous(), other.homogeneous())
        if abs(x[2]) < 1e-12:
            return None
        return np.array([x[0] / x[2], x[1] / x[2]], dtype=np.float64)


def signed_distance_to_line(pts: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Signed perpendicular distance from `pts` (...,2) to the line through a and b."""
    return LineSegment(np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)).signed_distance(pts)


def fit_line_tls(pts: np.ndarray) -> LineSegment:
    """
    Total least-squares line through a point set (centroid + principal direction).
    """
    pts = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    if pts.shape[0] < 2:
        raise ValueError("need >= 2 points to fit a line")
    c = np.mean(pts, axis=0)
    _, _, vt = np.linalg.svd(pts - c, full_matrices=False)
    return LineSegment(c, c + vt[0])


def longest_diagonal(corners: np.ndarray) -> float:
    corners = np.asarray(corners, dtype=np.float64).reshape(4, 2)
    return float(max(np.linalg.norm(corners[0] - corners[2]), np.linalg.norm(corners[1] - corners[3])))


def diagonal_intersection(corners: np.ndarray) -> np.ndarray | None:
    """
    Intersection of the two diagonals of a quadrilateral with sequentially ordered corners.

    Unlike the corner mean this point is projectively invariant: the image of a square's
    centre is the intersection of the imaged diagonals.
    """
    corners = np.asarray(corners, dtype=np.float64).reshape(4, 2)
    return LineSegment(corners[0], corners[2]).intersect(LineSegment(corners[1], corners[3]))


def same_side(line: LineSegment, p: np.ndarray, ref: np.ndarray) -> bool:
    """True if `p` and `ref` lie strictly on the same side of `line`."""
    return float(line.signed_distance(p)) * float(line.signed_distance(ref)) > 0.0


def in_bounds(p: np.ndarray, width: int, height: int) -> bool:
    return bool(0.0 <= p[0] <= width - 1 and 0.0 <= p[1] <= height - 1)


def skew(w: np.ndarray) -> np.ndarray:
    w = np.asarray(w, dtype=np.float64).reshape(3)
    return np.array([[0.0, -w[2], w[1]], [w[2], 0.0, -w[0]], [-w[1], w[0], 0.0]], dtype=np.float64)
