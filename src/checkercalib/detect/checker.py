from __future__ import annotations

import numpy as np

from checkercalib.config import BoardSpec, DetectionConfig
from checkercalib.core.quad import Quad
from checkercalib.detect.contours import binarize, erode_cross, find_contours
from checkercalib.detect.corner_graph import QuadGraph, link_quad_corners
from checkercalib.detect.quad_fit import fit_quad


def detect_checker_quads(
    gray: np.ndarray,
    *,
    rng: np.random.Generator,
    board: BoardSpec | None = None,
    config: DetectionConfig | None = None,
) -> tuple[QuadGraph | None, dict[str, int]]:
    """
    Detect and link the dark checker squares of one grayscale image.

    Returns (graph, diagnostics). The graph is the largest linked component; it is None when
    fewer than `config.min_quads` (default: the board's quad count) quads are found.
    """
    board = board or BoardSpec()
    config = config or DetectionConfig()
    gray = np.asarray(gray)
    h, w = gray.shape[:2]

    mask = binarize(gray, config.threshold)
    if config.erode:
        mask = erode_cross(mask)
    contours = find_contours(mask, min_points=config.min_contour_points)

    quads: list[Quad] = []
    for contour in contours:
        quad = fit_quad(contour, (w, h), rng=rng, config=config)
        if quad is None or quad.size < config.min_quad_size:
            continue
        quad.id = len(quads)
        quads.append(quad)

    min_quads = int(config.min_quads) if config.min_quads is not None else board.total_quads
    diagnostics = {"contours": len(contours), "quads": len(quads), "min_quads": min_quads, "linked": 0}
    if len(quads) < min_quads:
        return None, diagnostics

    graph = link_quad_corners(quads, config=config).largest_component()
    diagnostics["linked"] = len(graph)
    if len(graph) < min_quads:
        return None, diagnostics
    return graph, diagnostics
