import numpy as np
import pytest

from checkercalib.calib.zhang import intrinsics_from_b, solve_intrinsics, zhang_constraints
from checkercalib.errors import InsufficientData, NumericalDegeneracy
from checkercalib.sim.board import _rot_x, _rot_y, _rot_z, homography_from_pose

K_PX = np.array([[800.0, 0.0, 320.0], [0.0, 780.0, 240.0], [0.0, 0.0, 1.0]])
K_UNIT = np.array([[1.2, 0.01, 0.1], [0.0, 1.1, -0.05], [0.0, 0.0, 1.0]])

POSES = [
    (0.3, -0.2, 0.1),
    (-0.35, 0.25, -0.2),
    (0.2, 0.4, 0.05),
    (-0.25, -0.3, 0.3),
    (0.4, 0.1, -0.1),
]


def _homographies(K, *, depth, extent, n=len(POSES)):
    Hs = []
    for ax, ay, az in POSES[:n]:
        R = _rot_z(az) @ _rot_y(ay) @ _rot_x(ax)
        c = np.array([extent / 2.0, extent / 2.0])
        t = np.array([0.02 * depth, -0.01 * depth, depth]) - R[:, :2] @ c
        Hs.append(homography_from_pose(K, R, t))
    return Hs


def test_zhang_constraints_shape_and_true_b_in_null_space():
    Hs = _homographies(K_UNIT, depth=5.0, extent=2.0)
    V = zhang_constraints(Hs)
    assert V.shape == (2 * len(Hs), 6)
    B = np.linalg.inv(K_UNIT).T @ np.linalg.inv(K_UNIT)
    b = np.array([B[0, 0], B[0, 1], B[1, 1], B[0, 2], B[1, 2], B[2, 2]])
    assert np.max(np.abs(V @ b)) < 1e-12


def test_intrinsics_from_b_inverts_b():
    B = np.linalg.inv(K_UNIT).T @ np.linalg.inv(K_UNIT) * -3.0
    b = np.array([B[0, 0], B[0, 1], B[1, 1], B[0, 2], B[1, 2], B[2, 2]])
    assert np.allclose(intrinsics_from_b(b), K_UNIT, atol=1e-12)


def test_solve_intrinsics_unit_scale():
    K = solve_intrinsics(_homographies(K_UNIT, depth=5.0, extent=2.0, n=3))
    assert np.allclose(K, K_UNIT, atol=1e-8)


def test_solve_intrinsics_pixels_with_conditioning():
    Hs = _homographies(K_PX, depth=1000.0, extent=300.0)
    K = solve_intrinsics(Hs, image_size=(640, 480))
    assert K[2, 2] == 1.0
    assert np.allclose(K, K_PX, rtol=1e-6, atol=1e-5)


def test_solve_intrinsics_too_few_views():
    with pytest.raises(InsufficientData):
        solve_intrinsics(_homographies(K_PX, depth=1000.0, extent=300.0, n=2), image_size=(640, 480))


def test_solve_intrinsics_identical_views_are_degenerate():
    H = _homographies(K_PX, depth=1000.0, extent=300.0, n=1)[0]
    with pytest.raises(NumericalDegeneracy):
        solve_intrinsics([H, H, H], image_size=(640, 480))


def test_solve_intrinsics_non_finite_homography():
    Hs = _homographies(K_PX, depth=1000.0, extent=300.0, n=3)
    Hs[1] = np.full((3, 3), np.nan)
    with pytest.raises(NumericalDegeneracy):
        solve_intrinsics(Hs)
