from __future__ import annotations

import numpy as np

from checkercalib.config import BoardSpec
from checkercalib.core.geometry import longest_diagonal, signed_distance_to_line
from checkercalib.core.homography import apply_homography
from checkercalib.core.quad import Quad
from checkercalib.detect.corner_graph import QuadGraph


def _next_anchor(graph: QuadGraph, anchor: Quad, pos: dict[int, np.ndarray], side: str) -> Quad | None:
    below = [nb for nb in graph.neighbours(anchor) if pos[nb.id][1] > pos[anchor.id][1]]
    if not below:
        return None
    if side == "left":
        return min(below, key=lambda q: pos[q.id][0])
    return max(below, key=lambda q: pos[q.id][0])


def number_quads(graph: QuadGraph, board: BoardSpec, H_img_to_ref: np.ndarray, extremes: dict[int, int]) -> bool:
    """
    Assign row-major numbers 1..board.total_quads to every quad of the graph.

    `extremes` maps the ids of the 4 extreme quads to their board numbers (see
    `match_checker_corners`). Quad centres and corners are mapped to the reference plane with
    `H_img_to_ref` (copies only). Row by row, the quads within half a diagonal of the line
    through the row's two anchors are sorted by x and numbered from the row's first number; the
    next row's anchors are the linked neighbours below the current ones (leftmost and
    rightmost).

    Numbers, the extremes included, are written only when the whole board was numbered
    consistently; otherwise the graph is left untouched and False is returned.
    """
    tl, tr, bl, br = board.corner_numbers()
    if sorted(extremes.values()) != sorted((tl, tr, bl, br)) or any(qid not in graph for qid in extremes):
        return False
    by_number = {n: graph.get(qid) for qid, n in extremes.items()}

    H = np.asarray(H_img_to_ref, dtype=np.float64)
    pos: dict[int, np.ndarray] = {}
    diag: dict[int, float] = {}
    for q in graph:
        pos[q.id] = apply_homography(H, q.centre)
        diag[q.id] = longest_diagonal(apply_homography(H, q.points))
        if not (np.all(np.isfinite(pos[q.id])) and np.isfinite(diag[q.id])):
            return False

    left: Quad | None = by_number[tl]
    right: Quad | None = by_number[tr]
    assigned: dict[int, int] = {}
    for row in range(board.num_rows):
        if left is None or right is None:
            return False
        n = board.row_length(row)
        if n == 1:
            if left is not right:
                return False
            members = [left]
        else:
            if left is right:
                return False
            tol = 0.5 * max(diag[left.id], diag[right.id])
            members = [
                q
                for q in graph
                if abs(float(signed_distance_to_line(pos[q.id], pos[left.id], pos[right.id]))) <= tol
            ]
            members.sort(key=lambda q: pos[q.id][0])
        if len(members) != n or members[0] is not left or members[-1] is not right:
            return False

        start = board.row_start(row)
        for k, q in enumerate(members):
            if q.id in assigned:
                return False
            assigned[q.id] = start + k

        if row + 1 < board.num_rows:
            left = _next_anchor(graph, left, pos, "left")
            right = _next_anchor(graph, right, pos, "right")

    if len(assigned) != board.total_quads or len(graph) != board.total_quads:
        return False
    # The sweep must land on the extreme quads found by the corner correspondence.
    if any(assigned.get(qid) != n for qid, n in extremes.items()):
        return False

    for q in graph:
        q.number = assigned[q.id]
    return True


def number_reference(graph: QuadGraph, board: BoardSpec) -> bool:
    """
    Number a fronto-parallel reference pattern: extreme quads are identified by position,
    then `number_quads` runs with the identity homography.
    """
    corners = graph.corner_quads()
    if len(corners) != 4:
        return False
    tl, tr, bl, br = board.corner_numbers()
    s = {q.id: float(q.centre[0] + q.centre[1]) for q in corners}
    d = {q.id: float(q.centre[0] - q.centre[1]) for q in corners}
    picks = {
        tl: min(corners, key=lambda q: s[q.id]),
        br: max(corners, key=lambda q: s[q.id]),
        tr: max(corners, key=lambda q: d[q.id]),
        bl: min(corners, key=lambda q: d[q.id]),
    }
    if len({q.id for q in picks.values()}) != 4:
        return False
    return number_quads(graph, board, np.eye(3), {q.id: number for number, q in picks.items()})
