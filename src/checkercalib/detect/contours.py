from __future__ import annotations

from typing import Literal

import numpy as np

from checkercalib.core.quad import Contour

_EIGHT = np.ones((3, 3), dtype=bool)
_CROSS = np.array([[0, 1, 0], [1, 1, 1], [0, 1, 0]], dtype=bool)


def binarize(gray: np.ndarray, threshold: int | Literal["mean"] = 127) -> np.ndarray:
    """
    Global threshold. Returns a bool mask where True marks dark (foreground) pixels.

    `threshold="mean"` uses the mean image intensity.
    """
    gray = np.asarray(gray)
    if gray.ndim != 2:
        raise ValueError("expected a 2D grayscale image")
    t = float(np.mean(gray)) if threshold == "mean" else float(threshold)
    return gray < t


def erode_cross(mask: np.ndarray) -> np.ndarray:
    """4-neighbour (cross) erosion; separates dark squares that touch at a corner."""
    from scipy import ndimage  # type: ignore

    return ndimage.binary_erosion(np.asarray(mask, dtype=bool), structure=_CROSS)


def find_contours(mask: np.ndarray, *, min_points: int = 5) -> list[Contour]:
    """
    Boundary pixels of every 8-connected foreground blob.

    A boundary pixel is a foreground pixel with at least one background 8-neighbour. Blobs
    touching the image border and blobs with fewer than `min_points` boundary pixels are
    dropped. Points within a contour are in raster order.
    """
    from scipy import ndimage  # type: ignore

    mask = np.asarray(mask, dtype=bool)
    labels, n = ndimage.label(mask, structure=_EIGHT)
    if n == 0:
        return []

    border = np.unique(np.concatenate([labels[0, :], labels[-1, :], labels[:, 0], labels[:, -1]]))
    touches_border = np.zeros(n + 1, dtype=bool)
    touches_border[border] = True

    interior = ndimage.binary_erosion(mask, structure=_EIGHT, border_value=0)
    boundary = mask & ~interior
    ys, xs = np.nonzero(boundary)
    lab = labels[ys, xs]
    order = np.argsort(lab, kind="stable")
    ys, xs, lab = ys[order], xs[order], lab[order]
    ids, starts, counts = np.unique(lab, return_index=True, return_counts=True)

    contours: list[Contour] = []
    for label_id, start, count in zip(ids.tolist(), starts.tolist(), counts.tolist()):
        if touches_border[label_id] or count < min_points:
            continue
        pts = np.stack([xs[start : start + count], ys[start : start + count]], axis=1).astype(np.int64)
        contours.append(Contour(start=(int(pts[0, 0]), int(pts[0, 1])), points=pts))
    return contours
