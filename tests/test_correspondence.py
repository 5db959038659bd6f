import numpy as np

from checkercalib.config import BoardSpec, HomographyConfig
from checkercalib.core.quad import Quad
from checkercalib.detect.corner_graph import QuadGraph, link_quad_corners
from checkercalib.detect.correspondence import match_checker_corners, sort_clockwise
from checkercalib.detect.numbering import number_reference
from checkercalib.sim.board import board_quads


def _square_at(x, y, quad_id):
    return Quad.from_corners(np.array([[x, y], [x + 2, y], [x + 2, y + 2], [x, y + 2]], dtype=np.float64), quad_id)


def test_sort_clockwise_on_screen():
    tl, tr, br, bl = _square_at(0, 0, 0), _square_at(10, 0, 1), _square_at(10, 10, 2), _square_at(0, 10, 3)
    ordered = sort_clockwise([bl, tr, tl, br])
    ids = [q.id for q in ordered]
    start = ids.index(0)
    assert ids[start:] + ids[:start] == [0, 1, 2, 3]
    assert tr.angle_to_centre > 0.0 > br.angle_to_centre


def test_match_checker_corners_scores_rotations():
    board = BoardSpec()
    ref = link_quad_corners(board_quads(board, square=40.0, shrink=3.0, origin=(40.0, 40.0)))
    assert number_reference(ref, board)

    H = np.array([[0.9, -0.2, 60.0], [0.15, 0.95, 30.0], [2e-4, -1e-4, 1.0]])
    graph = link_quad_corners(board_quads(board, square=20.0, shrink=1.5, H=H))
    match = match_checker_corners(graph, ref, board)

    assert match is not None
    assert match.error < 1.0
    errs = sorted(match.errors_by_rotation)
    # Two rotations fit (180 degree symmetry), the two 90 degree ones do not.
    assert errs[1] < 1.0
    assert errs[2] > HomographyConfig().max_correspondence_error
    assert sorted(match.numbers.values()) == [1, 5, 28, 32]
    assert set(match.numbers) == {q.id for q in graph.corner_quads()}
    # Matching only proposes numbers; the graph is written by the numberer.
    assert all(q.number == 0 for q in graph)


def test_match_checker_corners_needs_four_corner_quads():
    board = BoardSpec()
    ref = link_quad_corners(board_quads(board, square=40.0, shrink=3.0, origin=(40.0, 40.0)))
    assert number_reference(ref, board)
    # Without quad 1 its neighbour 6 keeps three links, leaving three degree-1 quads.
    quads = [q for q in board_quads(board, square=20.0, shrink=1.5) if q.id != 0]
    graph = link_quad_corners(quads)
    assert len(graph.corner_quads()) == 3
    assert match_checker_corners(graph, ref, board) is None
    assert match_checker_corners(QuadGraph([]), ref, board) is None
