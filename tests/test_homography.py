import numpy as np
import pytest

from checkercalib.config import HomographyConfig
from checkercalib.core.homography import (
    apply_homography,
    dlt_homography,
    homography_inliers,
    ransac_homography,
    transfer_errors,
)
from checkercalib.core.homography_refine import homography_jacobian, refine_homography
from checkercalib.core.robust import robust_weights

H_TRUE = np.array([[1.2, 0.1, 30.0], [-0.05, 0.9, 40.0], [1e-4, 2e-4, 1.0]])


def _points(rng, n):
    return rng.uniform(0.0, 300.0, size=(n, 2))


def _relative_error(H):
    M = H @ np.linalg.inv(H_TRUE)
    return float(np.linalg.norm(M / M[2, 2] - np.eye(3)))


def test_dlt_recovers_exact_homography():
    rng = np.random.default_rng(0)
    src = _points(rng, 10)
    H = dlt_homography(src, apply_homography(H_TRUE, src))
    assert H is not None
    assert H[2, 2] == pytest.approx(1.0)
    assert _relative_error(H) < 1e-4


def test_dlt_rejects_degenerate_points():
    src = np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0], [3.0, 3.0]])
    assert dlt_homography(src, src + 1.0) is None
    src = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [5.0, 3.0]])
    assert dlt_homography(src, apply_homography(H_TRUE, src)) is None


def test_transfer_errors_and_inliers():
    rng = np.random.default_rng(1)
    src = _points(rng, 20)
    dst = apply_homography(H_TRUE, src)
    assert np.max(transfer_errors(H_TRUE, src, dst)) < 1e-9

    dst_bad = dst.copy()
    dst_bad[:5] += 25.0
    mask = homography_inliers(H_TRUE, src, dst_bad, 3.0)
    assert not np.any(mask[:5])
    assert np.all(mask[5:])


def test_inlier_count_does_not_drop_when_adding_correct_matches():
    rng = np.random.default_rng(2)
    src = _points(rng, 30)
    dst = apply_homography(H_TRUE, src) + rng.normal(0.0, 0.3, size=src.shape)
    dst[:8] += rng.uniform(20.0, 40.0, size=(8, 2))
    base = int(np.count_nonzero(homography_inliers(H_TRUE, src, dst, 3.0)))

    extra = _points(rng, 5)
    src2 = np.concatenate([src, extra])
    dst2 = np.concatenate([dst, apply_homography(H_TRUE, extra)])
    assert int(np.count_nonzero(homography_inliers(H_TRUE, src2, dst2, 3.0))) == base + 5


def test_ransac_homography_with_outliers():
    rng = np.random.default_rng(3)
    src = _points(rng, 40)
    dst = apply_homography(H_TRUE, src)
    outlier = np.zeros(40, dtype=bool)
    outlier[::4] = True
    dst[outlier] += rng.uniform(30.0, 60.0, size=(int(outlier.sum()), 2))

    fit = ransac_homography(src, dst, rng=rng)
    assert fit is not None
    assert np.array_equal(fit.inliers, ~outlier)
    assert _relative_error(fit.H) < 1e-6
    assert fit.diagnostics["inliers"] == 30.0
    assert fit.diagnostics["correspondences"] == 40.0


def test_ransac_homography_too_few_points():
    rng = np.random.default_rng(4)
    src = _points(rng, 3)
    assert ransac_homography(src, src, rng=rng) is None


def test_homography_jacobian_matches_finite_differences():
    rng = np.random.default_rng(5)
    src = _points(rng, 6)
    J = homography_jacobian(H_TRUE, src)
    eps = 1e-7
    for k in range(9):
        dH = np.zeros(9)
        dH[k] = eps
        Hp = H_TRUE + dH.reshape(3, 3)
        Hm = H_TRUE - dH.reshape(3, 3)
        num = (apply_homography(Hp, src) - apply_homography(Hm, src)) / (2 * eps)
        scale = max(1.0, float(np.max(np.abs(num))))
        assert np.max(np.abs(J[:, :, k] - num)) < 1e-4 * scale


@pytest.mark.parametrize("parameterization", ["fixed_h33", "full"])
def test_refine_homography_reduces_error(parameterization):
    rng = np.random.default_rng(6)
    src = _points(rng, 50)
    dst = apply_homography(H_TRUE, src) + rng.normal(0.0, 0.5, size=src.shape)
    H0 = H_TRUE * (1.0 + rng.normal(0.0, 1e-3, size=(3, 3)))
    H0 = H0 / H0[2, 2]

    H, diag = refine_homography(H0, src, dst, config=HomographyConfig(parameterization=parameterization))
    assert H[2, 2] == pytest.approx(1.0)
    assert diag["final_rms_px"] <= diag["initial_rms_px"]
    assert diag["accepted_steps"] >= 1
    # Noise level per point is 0.5 px per axis.
    assert diag["final_rms_px"] < 1.0


def test_robust_weights():
    r = np.array([0.1, 0.2, 0.15, 0.12, 50.0])
    assert np.all(robust_weights(r, "linear") == 1.0)
    w_h = robust_weights(r, "huber")
    w_t = robust_weights(r, "tukey")
    assert w_h[-1] < 1.0 and np.all(w_h[:-1] == 1.0)
    assert w_t[-1] < w_t[0]
    with pytest.raises(ValueError):
        robust_weights(r, "cauchy")


@pytest.mark.parametrize("loss", ["huber", "tukey"])
def test_robust_refinement_downweights_outliers(loss):
    rng = np.random.default_rng(7)
    src = _points(rng, 35)
    clean = apply_homography(H_TRUE, src)
    dst = clean + rng.normal(0.0, 0.2, size=src.shape)
    dst[:5] += 40.0
    H0 = dlt_homography(src, dst)
    assert H0 is not None

    H_lin, _ = refine_homography(H0, src, dst, config=HomographyConfig(loss="linear"))
    H_rob, _ = refine_homography(H0, src, dst, config=HomographyConfig(loss=loss))
    err_lin = np.linalg.norm(apply_homography(H_lin, src[5:]) - clean[5:], axis=1).mean()
    err_rob = np.linalg.norm(apply_homography(H_rob, src[5:]) - clean[5:], axis=1).mean()
    assert err_rob < err_lin
