from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from checkercalib.core.geometry import diagonal_intersection, longest_diagonal


@dataclass(frozen=True)
class Contour:
    """
    Boundary pixels of one dark connected blob.

    - `start`: first boundary pixel (x,y)
    - `points`: (N,2) boundary pixels (x,y), i.e. foreground pixels with a background 8-neighbour
    """

    start: tuple[int, int]
    points: np.ndarray  # (N,2)

    def __len__(self) -> int:
        return int(self.points.shape[0])


CornerLink = tuple[int, int]  # (neighbour quad id, neighbour corner index)


@dataclass(eq=False)
class Quad:
    """
    A detected checker square candidate with 4 sequentially ordered corners.

    `associated_corners[i]` records the shared-corner link of corner i, if any. Links are kept
    symmetric by `QuadGraph.link`: (B, j) at A's corner i implies (A, i) at B's corner j.
    """

    points: np.ndarray  # (4,2)
    centre: np.ndarray  # (2,)
    id: int = -1
    number: int = 0
    associated_corners: list[CornerLink | None] = field(default_factory=lambda: [None, None, None, None])
    num_linked_corners: int = 0
    size: float = 0.0
    angle_to_centre: float = 0.0

    @classmethod
    def from_corners(cls, corners: np.ndarray, quad_id: int = -1) -> Quad:
        pts = np.asarray(corners, dtype=np.float64).reshape(4, 2).copy()
        centre = np.mean(pts, axis=0)
        size = float(np.mean(np.linalg.norm(pts - centre, axis=1)))
        return cls(points=pts, centre=centre, id=int(quad_id), size=size)

    @property
    def longest_diagonal(self) -> float:
        return longest_diagonal(self.points)

    def diagonal_centre(self) -> np.ndarray:
        p = diagonal_intersection(self.points)
        return self.centre.copy() if p is None else p

    def free_corners(self) -> list[int]:
        return [i for i, link in enumerate(self.associated_corners) if link is None]

    def linked_ids(self) -> list[int]:
        return [link[0] for link in self.associated_corners if link is not None]
