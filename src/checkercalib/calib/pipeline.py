from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from checkercalib.calib.pose import extract_pose
from checkercalib.calib.refine import ViewObservations, refine_calibration, reprojection_residuals
from checkercalib.calib.zhang import solve_intrinsics
from checkercalib.config import BoardSpec, CalibrationConfig
from checkercalib.core.homography import ransac_homography
from checkercalib.core.image_io import load_gray_u8
from checkercalib.core.quad import Quad
from checkercalib.detect.checker import detect_checker_quads
from checkercalib.detect.corner_graph import QuadGraph
from checkercalib.detect.correspondence import match_checker_corners
from checkercalib.detect.numbering import number_quads, number_reference
from checkercalib.errors import ImageFailure, InsufficientData, ReferenceDetectionError


@dataclass(frozen=True)
class ReferencePattern:
    """Reference quads numbered 1..board.total_quads; read-only after detection."""

    graph: QuadGraph
    board: BoardSpec
    image_size: tuple[int, int]

    def points_by_number(self) -> dict[int, np.ndarray]:
        return {n: q.diagonal_centre() for n, q in self.graph.by_number().items()}


@dataclass
class ImageEstimate:
    """
    One successfully processed image. `H` maps the reference plane to the image; `R`/`t` are
    filled by pose extraction and updated by the joint refinement.
    """

    name: str
    H: np.ndarray
    quads: list[Quad]
    image_size: tuple[int, int]
    R: np.ndarray | None = None
    t: np.ndarray | None = None
    homography_diagnostics: dict[str, float] = field(default_factory=dict)
    rms_px: float = float("nan")

    def correspondences(self, reference: ReferencePattern) -> tuple[np.ndarray, np.ndarray]:
        """(xy_ref, uv_px) for every numbered quad, ordered by number."""
        ref = reference.points_by_number()
        quads = sorted((q for q in self.quads if q.number in ref), key=lambda q: q.number)
        xy = np.stack([ref[q.number] for q in quads], axis=0)
        uv = np.stack([q.diagonal_centre() for q in quads], axis=0)
        return xy, uv


@dataclass(frozen=True)
class CalibrationResult:
    K: np.ndarray
    initial_K: np.ndarray
    estimates: list[ImageEstimate]
    failures: list[ImageFailure]
    diagnostics: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "K": self.K.tolist(),
            "initial_K": self.initial_K.tolist(),
            "diagnostics": dict(self.diagnostics),
            "images": [
                {
                    "name": e.name,
                    "H": e.H.tolist(),
                    "R": None if e.R is None else e.R.tolist(),
                    "t": None if e.t is None else e.t.tolist(),
                    "rms_px": float(e.rms_px),
                    "quads": len(e.quads),
                }
                for e in self.estimates
            ],
            "failures": [{"name": f.name, "kind": f.kind, "reason": f.reason} for f in self.failures],
        }


def detect_reference(
    gray: np.ndarray,
    *,
    rng: np.random.Generator,
    config: CalibrationConfig | None = None,
) -> ReferencePattern:
    config = config or CalibrationConfig()
    graph, diag = detect_checker_quads(gray, rng=rng, board=config.board, config=config.detection)
    if graph is None:
        raise ReferenceDetectionError(
            f"found {diag['quads']} quads ({diag['linked']} linked), need {diag['min_quads']}"
        )
    if not number_reference(graph, config.board):
        raise ReferenceDetectionError("could not number the reference quads")
    h, w = np.asarray(gray).shape[:2]
    return ReferencePattern(graph=graph, board=config.board, image_size=(w, h))


def process_image(
    name: str,
    gray: np.ndarray,
    reference: ReferencePattern,
    *,
    rng: np.random.Generator,
    config: CalibrationConfig | None = None,
) -> ImageEstimate | ImageFailure:
    """
    Detection, corner correspondence, numbering and homography for one image.

    Expected failures are returned as ImageFailure, never raised.
    """
    config = config or CalibrationConfig()
    gray = np.asarray(gray)
    h, w = gray.shape[:2]

    graph, diag = detect_checker_quads(gray, rng=rng, board=config.board, config=config.detection)
    if graph is None:
        return ImageFailure(
            name, "detection", f"found {diag['quads']} quads ({diag['linked']} linked), need {diag['min_quads']}"
        )

    match = match_checker_corners(graph, reference.graph, config.board, config=config.homography)
    if match is None:
        n_corners = len(graph.corner_quads())
        return ImageFailure(name, "correspondence", f"no board corner assignment ({n_corners} degree-1 quads)")

    if not number_quads(graph, config.board, match.H_img_to_ref, match.numbers):
        return ImageFailure(name, "correspondence", "row-by-row numbering failed")

    ref = reference.points_by_number()
    quads = sorted((q for q in graph if q.number in ref), key=lambda q: q.number)
    src = np.stack([ref[q.number] for q in quads], axis=0)
    dst = np.stack([q.diagonal_centre() for q in quads], axis=0)
    fit = ransac_homography(src, dst, rng=rng, config=config.homography)
    if fit is None:
        return ImageFailure(name, "correspondence", "no homography consensus")

    return ImageEstimate(
        name=name,
        H=fit.H,
        quads=quads,
        image_size=(w, h),
        homography_diagnostics=fit.diagnostics,
    )


def calibrate(
    estimates: list[ImageEstimate],
    reference: ReferencePattern,
    *,
    config: CalibrationConfig | None = None,
    failures: Iterable[ImageFailure] = (),
) -> CalibrationResult:
    """
    Zhang initialization, pose extraction and joint refinement over all estimates.

    The estimates are updated in place (R, t, rms_px).
    """
    config = config or CalibrationConfig()
    if len(estimates) < config.min_images:
        raise InsufficientData(f"{len(estimates)} usable images, need >= {config.min_images}")

    K0 = solve_intrinsics([e.H for e in estimates], image_size=estimates[0].image_size)
    views: dict[int, ViewObservations] = {}
    rotations: dict[int, np.ndarray] = {}
    translations: dict[int, np.ndarray] = {}
    for i, e in enumerate(estimates):
        e.R, e.t = extract_pose(K0, e.H)
        xy, uv = e.correspondences(reference)
        views[i] = ViewObservations(uv_px=uv, xy_ref=xy)
        rotations[i] = e.R
        translations[i] = e.t

    refined = refine_calibration(K0, views, rotations, translations, config=config.refine)
    for i, e in enumerate(estimates):
        e.R = refined.rotations[i]
        e.t = refined.translations[i]
        r = reprojection_residuals(refined.K, e.R, e.t, views[i])
        e.rms_px = float(np.sqrt(np.mean(np.sum(r * r, axis=1))))

    return CalibrationResult(
        K=refined.K,
        initial_K=K0,
        estimates=estimates,
        failures=list(failures),
        diagnostics=refined.diagnostics,
    )


def calibrate_images(
    reference_gray: np.ndarray,
    images: Iterable[tuple[str, np.ndarray | None]],
    *,
    config: CalibrationConfig | None = None,
    seed: int = 0,
    verbose: bool = True,
) -> CalibrationResult:
    """
    Full run over in-memory images. `None` images are reported as io failures.

    Each image gets its own random stream spawned from `seed`, so results do not depend on the
    order in which the images are processed.
    """
    config = config or CalibrationConfig()
    images = list(images)
    seeds = np.random.SeedSequence(seed).spawn(len(images) + 1)
    reference = detect_reference(reference_gray, rng=np.random.default_rng(seeds[0]), config=config)
    if verbose:
        print(f"Reference: {len(reference.graph)} quads")

    estimates: list[ImageEstimate] = []
    failures: list[ImageFailure] = []
    for (name, gray), ss in zip(images, seeds[1:]):
        if gray is None:
            out: ImageEstimate | ImageFailure = ImageFailure(name, "io", "cannot read image")
        else:
            out = process_image(name, gray, reference, rng=np.random.default_rng(ss), config=config)
        if isinstance(out, ImageFailure):
            failures.append(out)
            if verbose:
                print(f"[skip] {out}")
            continue
        estimates.append(out)
        if verbose:
            rms = out.homography_diagnostics.get("final_rms_px", float("nan"))
            print(f"[ok] {name}: {len(out.quads)} quads, homography rms={rms:.3f}px")

    result = calibrate(estimates, reference, config=config, failures=failures)
    if verbose:
        d = result.diagnostics
        print(
            f"Calibrated from {len(estimates)} images ({len(failures)} skipped): "
            f"rms {d['initial_rms_px']:.4f}px -> {d['final_rms_px']:.4f}px"
        )
    return result


def _read_gray(path: Path) -> np.ndarray | None:
    try:
        return load_gray_u8(path)
    except OSError:
        return None


def calibrate_directory(
    folder: str | Path,
    num_images: int,
    *,
    config: CalibrationConfig | None = None,
    seed: int = 0,
    reference_name: str = "checkerboard.jpg",
    ext: str = ".jpg",
    verbose: bool = True,
) -> CalibrationResult:
    """
    Calibrate from `folder/1<ext> .. folder/<num_images><ext>` and the reference pattern image
    `folder/<reference_name>`.
    """
    folder = Path(folder)
    ref_path = folder / reference_name
    reference_gray = _read_gray(ref_path)
    if reference_gray is None:
        raise ReferenceDetectionError(f"cannot read reference image {ref_path}")
    if not ext.startswith("."):
        ext = "." + ext

    def _images() -> Iterable[tuple[str, np.ndarray | None]]:
        for i in range(1, int(num_images) + 1):
            p = folder / f"{i}{ext}"
            yield p.name, _read_gray(p)

    return calibrate_images(reference_gray, _images(), config=config, seed=seed, verbose=verbose)


def write_calibration_report(result: CalibrationResult, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
    return p
