from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from checkercalib.config import BoardSpec, HomographyConfig
from checkercalib.core.homography import apply_homography, dlt_homography
from checkercalib.core.quad import Quad
from checkercalib.detect.corner_graph import QuadGraph


@dataclass(frozen=True)
class CornerMatch:
    H_img_to_ref: np.ndarray  # (3,3)
    error: float
    numbers: dict[int, int]  # quad id -> reference number
    errors_by_rotation: tuple[float, ...]


def sort_clockwise(quads: list[Quad]) -> list[Quad]:
    """
    Sort quads clockwise on screen (y down), by angle around their common centroid.

    Sets `angle_to_centre` on each quad.
    """
    c = np.mean(np.stack([q.centre for q in quads], axis=0), axis=0)
    for q in quads:
        q.angle_to_centre = math.atan2(float(c[1] - q.centre[1]), float(q.centre[0] - c[0]))
    return sorted(quads, key=lambda q: q.angle_to_centre, reverse=True)


def _single_neighbour(graph: QuadGraph, quad: Quad) -> Quad | None:
    nbs = graph.neighbours(quad)
    return nbs[0] if len(nbs) == 1 else None


def match_checker_corners(
    graph: QuadGraph,
    reference: QuadGraph,
    board: BoardSpec | None = None,
    *,
    config: HomographyConfig | None = None,
) -> CornerMatch | None:
    """
    Match the 4 degree-1 quads of an image to the reference's extreme quads.

    Image corners are sorted clockwise and each of the 4 cyclic rotations is paired with the
    reference extremes [TL, TR, BR, BL]. Every candidate image->reference homography (DLT on the
    4 quad centres) is scored by the summed transfer error of the 4 centres, plus that of their
    single linked neighbours when `config.score_neighbours` is set. The best rotation is kept
    if its error is at most `config.max_correspondence_error`. The graph is not modified: the
    matched numbers are returned for `number_quads` to write.

    Note: a 4-point DLT fits its own points exactly, so the neighbour term is what
    discriminates the rotations.
    """
    board = board or BoardSpec()
    config = config or HomographyConfig()

    corners = graph.corner_quads()
    if len(corners) != 4:
        return None
    ref_by_number = reference.by_number()
    tl, tr, bl, br = board.corner_numbers()
    ref_order = [tl, tr, br, bl]
    if any(n not in ref_by_number for n in ref_order):
        raise ValueError("reference graph is not numbered")

    ref_quads = [ref_by_number[n] for n in ref_order]
    ref_pts = np.stack([q.diagonal_centre() for q in ref_quads], axis=0)
    ref_nbs = [_single_neighbour(reference, q) for q in ref_quads]

    img_sorted = sort_clockwise(corners)
    img_nbs_all = [_single_neighbour(graph, q) for q in img_sorted]

    best: tuple[float, int, np.ndarray] | None = None
    errors: list[float] = []
    for rot in range(4):
        seq = img_sorted[rot:] + img_sorted[:rot]
        nbs = img_nbs_all[rot:] + img_nbs_all[:rot]
        img_pts = np.stack([q.diagonal_centre() for q in seq], axis=0)
        H = dlt_homography(img_pts, ref_pts)
        if H is None:
            errors.append(float("inf"))
            continue
        err = float(np.sum(np.linalg.norm(apply_homography(H, img_pts) - ref_pts, axis=1)))
        if config.score_neighbours:
            for nb_img, nb_ref in zip(nbs, ref_nbs):
                if nb_img is None or nb_ref is None:
                    err = float("inf")
                    break
                err += float(np.linalg.norm(apply_homography(H, nb_img.diagonal_centre()) - nb_ref.diagonal_centre()))
        if not np.isfinite(err):
            err = float("inf")
        errors.append(err)
        if best is None or err < best[0]:
            best = (err, rot, H)

    if best is None or best[0] > config.max_correspondence_error:
        return None

    err, rot, H = best
    seq = img_sorted[rot:] + img_sorted[:rot]
    numbers = {q.id: n for q, n in zip(seq, ref_order)}
    return CornerMatch(H_img_to_ref=H, error=err, numbers=numbers, errors_by_rotation=tuple(errors))
