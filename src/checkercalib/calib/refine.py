from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from checkercalib.config import RefineConfig
from checkercalib.core.geometry import skew
from checkercalib.errors import NumericalDegeneracy


@dataclass(frozen=True)
class ViewObservations:
    """
    Observations for one image.

    - `uv_px`: observed image points (quad centres)
    - `xy_ref`: corresponding points on the reference plane (z = 0)
    """

    uv_px: np.ndarray  # (N,2)
    xy_ref: np.ndarray  # (N,2)


@dataclass(frozen=True)
class RefinementResult:
    K: np.ndarray  # (3,3)
    rotations: dict[int, np.ndarray]  # view_id -> (3,3)
    translations: dict[int, np.ndarray]  # view_id -> (3,)
    diagnostics: dict[str, float]


def intrinsics_vector(K: np.ndarray) -> np.ndarray:
    """(fx, fy, skew, cx, cy)"""
    return np.array([K[0, 0], K[1, 1], K[0, 1], K[0, 2], K[1, 2]], dtype=np.float64)


def intrinsics_matrix(q: np.ndarray) -> np.ndarray:
    fx, fy, s, cx, cy = (float(v) for v in q)
    return np.array([[fx, s, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)


def se3_exp(twist: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Exponential map of an se(3) twist (u, w) -> (R, t), u the translational part and w the
    rotation vector.

    R = I + A W + B W^2, V = I + B W + C W^2, t = V u with
    A = sin(theta)/theta, B = (1 - cos(theta))/theta^2, C = (1 - A)/theta^2.
    """
    twist = np.asarray(twist, dtype=np.float64).reshape(6)
    u = twist[:3]
    w = twist[3:]
    theta = float(np.linalg.norm(w))
    W = skew(w)
    W2 = W @ W
    if theta < 1e-8:
        t2 = theta * theta
        A = 1.0 - t2 / 6.0
        B = 0.5 - t2 / 24.0
        C = 1.0 / 6.0 - t2 / 120.0
    else:
        A = np.sin(theta) / theta
        B = (1.0 - np.cos(theta)) / (theta * theta)
        C = (1.0 - A) / (theta * theta)
    R = np.eye(3) + A * W + B * W2
    V = np.eye(3) + B * W + C * W2
    return R, V @ u


def project_points(K: np.ndarray, R: np.ndarray, t: np.ndarray, xy_ref: np.ndarray) -> np.ndarray:
    """Pinhole projection of reference-plane points (z = 0), returns (N,2) pixels."""
    xy_ref = np.asarray(xy_ref, dtype=np.float64).reshape(-1, 2)
    P = xy_ref @ R[:, :2].T + t
    uvw = P @ K.T
    return uvw[:, :2] / uvw[:, 2:3]


def reprojection_residuals(K: np.ndarray, R: np.ndarray, t: np.ndarray, obs: ViewObservations) -> np.ndarray:
    return np.asarray(obs.uv_px, dtype=np.float64) - project_points(K, R, t, obs.xy_ref)


def _view_jacobians(
    K: np.ndarray, R: np.ndarray, t: np.ndarray, obs: ViewObservations
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Residuals (N,2) and Jacobians of the projection w.r.t. the intrinsics (N,2,5) and a left
    se(3) perturbation of the pose (N,2,6).
    """
    fx, fy, s = K[0, 0], K[1, 1], K[0, 1]
    xy = np.asarray(obs.xy_ref, dtype=np.float64).reshape(-1, 2)
    P = xy @ R[:, :2].T + t
    Z = P[:, 2]
    x = P[:, 0] / Z
    y = P[:, 1] / Z
    u = fx * x + s * y + K[0, 2]
    v = fy * y + K[1, 2]
    res = np.asarray(obs.uv_px, dtype=np.float64) - np.stack([u, v], axis=1)

    n = xy.shape[0]
    J_k = np.zeros((n, 2, 5), dtype=np.float64)
    J_k[:, 0, 0] = x
    J_k[:, 0, 2] = y
    J_k[:, 0, 3] = 1.0
    J_k[:, 1, 1] = y
    J_k[:, 1, 4] = 1.0

    # d(u,v)/dP
    dP = np.zeros((n, 2, 3), dtype=np.float64)
    dP[:, 0, 0] = fx / Z
    dP[:, 0, 1] = s / Z
    dP[:, 0, 2] = -(fx * x + s * y) / Z
    dP[:, 1, 1] = fy / Z
    dP[:, 1, 2] = -fy * y / Z

    # dP/d(u,w) = [I | -[P]x]
    dxi = np.zeros((n, 3, 6), dtype=np.float64)
    dxi[:, :, :3] = np.eye(3)
    dxi[:, 0, 4] = P[:, 2]
    dxi[:, 0, 5] = -P[:, 1]
    dxi[:, 1, 3] = -P[:, 2]
    dxi[:, 1, 5] = P[:, 0]
    dxi[:, 2, 3] = P[:, 1]
    dxi[:, 2, 4] = -P[:, 0]
    J_pose = np.einsum("nij,njk->nik", dP, dxi)
    return res, J_k, J_pose


def _total_cost(
    K: np.ndarray,
    views: dict[int, ViewObservations],
    rotations: dict[int, np.ndarray],
    translations: dict[int, np.ndarray],
) -> tuple[float, int]:
    cost = 0.0
    count = 0
    for vid, obs in views.items():
        r = reprojection_residuals(K, rotations[vid], translations[vid], obs)
        cost += float(np.sum(r * r))
        count += r.shape[0]
    return cost, count


def refine_calibration(
    K: np.ndarray,
    views: dict[int, ViewObservations],
    rotations: dict[int, np.ndarray],
    translations: dict[int, np.ndarray],
    *,
    config: RefineConfig | None = None,
) -> RefinementResult:
    """
    Joint Levenberg-Marquardt refinement of the intrinsics and every view's pose.

    State: (fx, fy, skew, cx, cy) plus one 6-vector se(3) twist per view. The normal equations
    are assembled block-wise (dense 5x5 intrinsics block, 6x6 block per view, 5x6 couplings),
    damped by (1 + lambda) on the diagonal, and solved jointly. Intrinsics are updated additively
    and poses by the left exponential map: R <- exp(w) R, t <- exp(w) t + V(w) u.

    Raises NumericalDegeneracy if the damped normal equations are singular.
    """
    config = config or RefineConfig()
    ids = sorted(views)
    if not ids:
        raise ValueError("need at least one view")
    for vid in ids:
        if vid not in rotations or vid not in translations:
            raise ValueError(f"missing pose for view {vid}")

    q = intrinsics_vector(np.asarray(K, dtype=np.float64))
    Rs = {vid: np.asarray(rotations[vid], dtype=np.float64).copy() for vid in ids}
    ts = {vid: np.asarray(translations[vid], dtype=np.float64).reshape(3).copy() for vid in ids}

    Kc = intrinsics_matrix(q)
    cost, n_obs = _total_cost(Kc, views, Rs, ts)
    initial_rms = float(np.sqrt(cost / max(n_obs, 1)))

    nv = len(ids)
    dim = 5 + 6 * nv
    lam = float(config.lambda_init)
    accepted = 0
    it = 0
    for it in range(1, int(config.max_iterations) + 1):
        if cost < config.error_threshold:
            break

        A = np.zeros((dim, dim), dtype=np.float64)
        g = np.zeros((dim,), dtype=np.float64)
        for k, vid in enumerate(ids):
            res, J_k, J_p = _view_jacobians(Kc, Rs[vid], ts[vid], views[vid])
            o = 5 + 6 * k
            A[:5, :5] += np.einsum("nij,nik->jk", J_k, J_k)
            A[o : o + 6, o : o + 6] = np.einsum("nij,nik->jk", J_p, J_p)
            A_kp = np.einsum("nij,nik->jk", J_k, J_p)
            A[:5, o : o + 6] = A_kp
            A[o : o + 6, :5] = A_kp.T
            g[:5] += np.einsum("nij,ni->j", J_k, res)
            g[o : o + 6] = np.einsum("nij,ni->j", J_p, res)

        A_d = A + lam * np.diag(np.diag(A))
        try:
            delta = np.linalg.solve(A_d, g)
        except np.linalg.LinAlgError as exc:
            raise NumericalDegeneracy("singular normal equations in calibration refinement") from exc
        if not np.all(np.isfinite(delta)):
            raise NumericalDegeneracy("non-finite update in calibration refinement")

        scale = float(np.linalg.norm(q)) + sum(float(np.linalg.norm(ts[vid])) for vid in ids)
        if float(np.linalg.norm(delta)) <= config.step_tolerance * (scale + config.step_tolerance):
            break

        q_new = q + delta[:5]
        Rs_new: dict[int, np.ndarray] = {}
        ts_new: dict[int, np.ndarray] = {}
        for k, vid in enumerate(ids):
            dR, dt = se3_exp(delta[5 + 6 * k : 11 + 6 * k])
            Rs_new[vid] = dR @ Rs[vid]
            ts_new[vid] = dR @ ts[vid] + dt

        K_new = intrinsics_matrix(q_new)
        cost_new, _ = _total_cost(K_new, views, Rs_new, ts_new)
        if np.isfinite(cost_new) and cost_new < cost:
            q, Rs, ts, Kc, cost = q_new, Rs_new, ts_new, K_new, cost_new
            lam /= 10.0
            accepted += 1
        else:
            lam *= 10.0
            if lam > 1e16:
                break

    final_rms = float(np.sqrt(cost / max(n_obs, 1)))
    return RefinementResult(
        K=Kc,
        rotations=Rs,
        translations=ts,
        diagnostics={
            "initial_rms_px": initial_rms,
            "final_rms_px": final_rms,
            "iterations": float(it),
            "accepted_steps": float(accepted),
            "final_lambda": lam,
            "observations": float(n_obs),
        },
    )
