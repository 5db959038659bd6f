from __future__ import annotations

from collections.abc import Iterable, Iterator

import numpy as np

from checkercalib.config import DetectionConfig
from checkercalib.core.geometry import LineSegment, same_side
from checkercalib.core.quad import Quad


class QuadGraph:
    """
    Arena of quads with corner-link edges.

    Nodes are quads (looked up by id through an index map); each edge is stored in the
    `associated_corners` slots of both endpoints.
    """

    def __init__(self, quads: Iterable[Quad]) -> None:
        self.quads: list[Quad] = list(quads)
        self._index: dict[int, int] = {}
        for i, q in enumerate(self.quads):
            if q.id in self._index:
                raise ValueError(f"duplicate quad id: {q.id}")
            self._index[q.id] = i

    def __len__(self) -> int:
        return len(self.quads)

    def __iter__(self) -> Iterator[Quad]:
        return iter(self.quads)

    def __contains__(self, quad_id: int) -> bool:
        return quad_id in self._index

    def get(self, quad_id: int) -> Quad:
        return self.quads[self._index[quad_id]]

    def degree(self, quad: Quad) -> int:
        return quad.num_linked_corners

    def link(self, a: Quad, corner_a: int, b: Quad, corner_b: int) -> None:
        if a is b:
            raise ValueError("cannot link a quad to itself")
        if a.associated_corners[corner_a] is not None or b.associated_corners[corner_b] is not None:
            raise ValueError("corner already linked")
        a.associated_corners[corner_a] = (b.id, corner_b)
        b.associated_corners[corner_b] = (a.id, corner_a)
        a.num_linked_corners += 1
        b.num_linked_corners += 1

    def neighbours(self, quad: Quad) -> list[Quad]:
        return [self.get(qid) for qid in quad.linked_ids() if qid in self._index]

    def corner_quads(self) -> list[Quad]:
        """Quads of degree 1 (the board's extreme squares)."""
        return [q for q in self.quads if q.num_linked_corners == 1]

    def by_number(self) -> dict[int, Quad]:
        return {q.number: q for q in self.quads if q.number > 0}

    def is_symmetric(self) -> bool:
        for q in self.quads:
            for i, link in enumerate(q.associated_corners):
                if link is None:
                    continue
                other_id, j = link
                if other_id not in self._index:
                    return False
                if self.get(other_id).associated_corners[j] != (q.id, i):
                    return False
        return True

    def components(self) -> list[list[Quad]]:
        seen: set[int] = set()
        out: list[list[Quad]] = []
        for q in self.quads:
            if q.id in seen:
                continue
            comp: list[Quad] = []
            stack = [q]
            seen.add(q.id)
            while stack:
                cur = stack.pop()
                comp.append(cur)
                for nb in self.neighbours(cur):
                    if nb.id not in seen:
                        seen.add(nb.id)
                        stack.append(nb)
            out.append(comp)
        return out

    def largest_component(self) -> QuadGraph:
        comps = self.components()
        if not comps:
            return QuadGraph([])
        best = max(comps, key=len)
        keep = {q.id for q in best}
        return QuadGraph(q for q in self.quads if q.id in keep)


def _linked_to(a: Quad, b: Quad) -> bool:
    return b.id in a.linked_ids()


def point_between_centres(p: np.ndarray, a: Quad, b: Quad) -> bool:
    """
    True if `p` lies in the region enclosed by the axis lines of both quads.

    Each quad contributes two axis lines, from its centre through the midpoints of sides
    (0,1) and (1,2). The point must be on the same side of all four lines as the midpoint
    between both centres, which is where the shared corner of two diagonal neighbours lies.
    """
    mid = 0.5 * (a.centre + b.centre)
    for q in (a, b):
        for i, j in ((0, 1), (1, 2)):
            side_mid = 0.5 * (q.points[i] + q.points[j])
            if float(np.linalg.norm(side_mid - q.centre)) < 1e-12:
                return False
            if not same_side(LineSegment(q.centre, side_mid), p, mid):
                return False
    return True


def _nearest_corner(p: np.ndarray, candidates: list[Quad]) -> tuple[Quad, int, float]:
    dists = np.stack([np.linalg.norm(q.points - p, axis=1) for q in candidates], axis=0)
    k, c = np.unravel_index(int(np.argmin(dists)), dists.shape)
    return candidates[int(k)], int(c), float(dists[k, c])


def link_quad_corners(quads: Iterable[Quad], *, config: DetectionConfig | None = None) -> QuadGraph:
    """
    Link shared corners of diagonally adjacent checker squares.

    For each quad q1, the candidates are the later quads with centres closer than
    `link_distance_factor * diag(q1)`. Each free corner of q1 is matched to the nearest corner
    over all candidates. A match is accepted when both points lie between the two centres
    (`point_between_centres`), the points are at most `corner_match_factor * diag(q1)` apart,
    and neither corner is already linked (first match wins). Accepted corners are replaced by
    their average in both quads.
    """
    config = config or DetectionConfig()
    graph = QuadGraph(quads)
    qs = graph.quads
    for i, q1 in enumerate(qs):
        if q1.num_linked_corners >= 4:
            continue
        diag1 = q1.longest_diagonal
        candidates = [
            q2
            for q2 in qs[i + 1 :]
            if q2.num_linked_corners < 4
            and float(np.linalg.norm(q1.centre - q2.centre)) < config.link_distance_factor * diag1
        ]
        if not candidates:
            continue

        for c1 in q1.free_corners():
            p1 = q1.points[c1]
            q2, c2, dist = _nearest_corner(p1, candidates)
            # Two squares share at most one corner.
            if q2.associated_corners[c2] is not None or _linked_to(q1, q2):
                continue
            if dist > config.corner_match_factor * diag1:
                continue
            p2 = q2.points[c2]
            if not (point_between_centres(p1, q1, q2) and point_between_centres(p2, q1, q2)):
                continue

            shared = 0.5 * (p1 + p2)
            q1.points[c1] = shared
            q2.points[c2] = shared.copy()
            graph.link(q1, c1, q2, c2)
    return graph
