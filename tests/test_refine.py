import numpy as np
import pytest

from checkercalib.calib.refine import (
    ViewObservations,
    _view_jacobians,
    intrinsics_matrix,
    intrinsics_vector,
    project_points,
    refine_calibration,
    se3_exp,
)
from checkercalib.config import BoardSpec, RefineConfig
from checkercalib.errors import NumericalDegeneracy
from checkercalib.sim.board import _rot_x, _rot_y, _rot_z, reference_quad_centres

K_TRUE = np.array([[800.0, 0.0, 320.0], [0.0, 790.0, 240.0], [0.0, 0.0, 1.0]])
ANGLES = [(0.3, -0.2, 0.1), (-0.35, 0.25, -0.2), (0.2, 0.4, 0.05), (-0.25, -0.3, 0.3), (0.4, 0.1, -0.1)]


def _scene(noise=0.0, seed=0):
    rng = np.random.default_rng(seed)
    xy = np.stack(list(reference_quad_centres(BoardSpec()).values()), axis=0)
    c = np.mean(xy, axis=0)
    views, Rs, ts = {}, {}, {}
    for i, (ax, ay, az) in enumerate(ANGLES):
        R = _rot_z(az) @ _rot_y(ay) @ _rot_x(ax)
        t = np.array([20.0 * i - 40.0, 10.0, 1000.0 + 50.0 * i]) - R[:, :2] @ c
        uv = project_points(K_TRUE, R, t, xy) + rng.normal(0.0, noise, size=xy.shape)
        views[i] = ViewObservations(uv_px=uv, xy_ref=xy)
        Rs[i] = R
        ts[i] = t
    return views, Rs, ts


def _perturb_poses(Rs, ts, rng, scale=1e-2):
    Rp, tp = {}, {}
    for i in Rs:
        dR, dt = se3_exp(rng.normal(0.0, scale, size=6) * np.array([100.0, 100.0, 100.0, 1.0, 1.0, 1.0]))
        Rp[i] = dR @ Rs[i]
        tp[i] = dR @ ts[i] + dt
    return Rp, tp


def test_intrinsics_vector_round_trip():
    K = np.array([[810.0, 1.5, 300.0], [0.0, 790.0, 250.0], [0.0, 0.0, 1.0]])
    q = intrinsics_vector(K)
    assert q.tolist() == [810.0, 790.0, 1.5, 300.0, 250.0]
    assert np.array_equal(intrinsics_matrix(q), K)


def test_se3_exp_properties():
    R, t = se3_exp(np.zeros(6))
    assert np.array_equal(R, np.eye(3))
    assert np.array_equal(t, np.zeros(3))

    R, t = se3_exp(np.array([1.0, 2.0, 3.0, 0.0, 0.0, 0.0]))
    assert np.allclose(R, np.eye(3))
    assert np.allclose(t, [1.0, 2.0, 3.0])

    R, _ = se3_exp(np.array([0.0, 0.0, 0.0, 0.0, 0.0, np.pi / 2]))
    assert np.allclose(R, _rot_z(np.pi / 2), atol=1e-12)

    for w in (np.array([0.3, -1.2, 0.7]), np.array([1e-10, 0.0, -2e-10])):
        R, _ = se3_exp(np.concatenate([np.ones(3), w]))
        assert np.allclose(R.T @ R, np.eye(3), atol=1e-12)
        assert np.linalg.det(R) == pytest.approx(1.0)


def test_view_jacobians_match_finite_differences():
    views, Rs, ts = _scene()
    obs, R, t = views[1], Rs[1], ts[1]
    K = K_TRUE.copy()
    K[0, 1] = 2.0
    res, J_k, J_p = _view_jacobians(K, R, t, obs)
    proj = lambda K_, R_, t_: project_points(K_, R_, t_, obs.xy_ref)  # noqa: E731
    assert np.allclose(res, obs.uv_px - proj(K, R, t))

    q = intrinsics_vector(K)
    for k in range(5):
        dq = np.zeros(5)
        dq[k] = 1e-4
        num = (proj(intrinsics_matrix(q + dq), R, t) - proj(intrinsics_matrix(q - dq), R, t)) / 2e-4
        assert np.allclose(J_k[:, :, k], num, atol=1e-6)

    for k in range(6):
        d = np.zeros(6)
        d[k] = 1e-6
        Rp, tp = se3_exp(d)
        Rm, tm = se3_exp(-d)
        num = (proj(K, Rp @ R, Rp @ t + tp) - proj(K, Rm @ R, Rm @ t + tm)) / 2e-6
        scale = max(1.0, float(np.max(np.abs(num))))
        assert np.max(np.abs(J_p[:, :, k] - num)) < 1e-4 * scale


def test_refine_calibration_noise_free_converges():
    rng = np.random.default_rng(1)
    views, Rs, ts = _scene()
    K0 = K_TRUE + np.array([[25.0, 0.0, -8.0], [0.0, -20.0, 6.0], [0.0, 0.0, 0.0]])
    Rp, tp = _perturb_poses(Rs, ts, rng)

    out = refine_calibration(K0, views, Rp, tp, config=RefineConfig(max_iterations=200))
    d = out.diagnostics
    assert d["final_rms_px"] <= d["initial_rms_px"]
    assert d["final_rms_px"] < 1e-4
    assert d["observations"] == 5 * 32
    assert np.allclose(out.K, K_TRUE, rtol=1e-5, atol=1e-3)
    for i in Rs:
        assert np.allclose(out.rotations[i], Rs[i], atol=1e-6)
        assert np.allclose(out.translations[i], ts[i], rtol=1e-5, atol=1e-3)


def test_refine_calibration_with_noise_does_not_increase_error():
    rng = np.random.default_rng(2)
    views, Rs, ts = _scene(noise=0.3, seed=3)
    K0 = K_TRUE + np.array([[15.0, 0.0, 5.0], [0.0, 10.0, -5.0], [0.0, 0.0, 0.0]])
    Rp, tp = _perturb_poses(Rs, ts, rng, scale=5e-3)

    out = refine_calibration(K0, views, Rp, tp)
    d = out.diagnostics
    assert d["final_rms_px"] <= d["initial_rms_px"]
    assert d["final_rms_px"] < 0.6
    assert abs(out.K[0, 0] - K_TRUE[0, 0]) / K_TRUE[0, 0] < 0.02


def test_refine_calibration_singular_normal_equations():
    xy = np.zeros((1, 2))
    obs = ViewObservations(uv_px=np.array([[321.0, 241.0]]), xy_ref=xy)
    t = np.array([0.0, 0.0, 1000.0])
    with pytest.raises(NumericalDegeneracy):
        refine_calibration(K_TRUE, {0: obs}, {0: np.eye(3)}, {0: t})


def test_refine_calibration_requires_poses():
    views, Rs, ts = _scene()
    del Rs[2]
    with pytest.raises(ValueError):
        refine_calibration(K_TRUE, views, Rs, ts)
