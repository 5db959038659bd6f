from __future__ import annotations

import argparse
from pathlib import Path

import numpy as np

from checkercalib.calib.pipeline import CalibrationResult, calibrate_directory, write_calibration_report
from checkercalib.config import BoardSpec, CalibrationConfig, ConfigValidationError, load_calibration_config
from checkercalib.errors import InsufficientData, NumericalDegeneracy, ReferenceDetectionError
from checkercalib.sim.board import default_intrinsics, generate_dataset

EXIT_OK = 0
EXIT_INSUFFICIENT_DATA = 1
EXIT_REFERENCE_FAILED = 2
EXIT_DEGENERATE = 3
EXIT_BAD_CONFIG = 4


def _print_result(result: CalibrationResult) -> None:
    np.set_printoptions(precision=4, suppress=True)
    print("K =")
    print(result.K)
    for e in result.estimates:
        print(f"{e.name}: rms={e.rms_px:.4f}px")
        print("  R =", e.R.tolist() if e.R is not None else None)
        print("  t =", e.t.tolist() if e.t is not None else None)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="checkercalib")
    sub = parser.add_subparsers(dest="cmd", required=True)

    cal = sub.add_parser(
        "calibrate",
        help="Calibrate a camera from images 1..N of a checkerboard plus a reference pattern image.",
    )
    cal.add_argument("folder", type=Path)
    cal.add_argument("num_images", type=int)
    cal.add_argument("--config", type=Path, default=None, help="JSON calibration config.")
    cal.add_argument("--seed", type=int, default=0, help="Seed for the RANSAC random streams.")
    cal.add_argument("--reference-name", type=str, default="checkerboard.jpg")
    cal.add_argument("--ext", type=str, default=".jpg", help="Extension of the numbered images.")
    cal.add_argument("--out-json", type=Path, default=None, help="Write a JSON calibration report.")
    cal.add_argument("--quiet", action="store_true", help="Do not print per-image status lines.")

    gen = sub.add_parser("generate-dataset", help="Render a synthetic calibration folder with known intrinsics.")
    gen.add_argument("--out", type=Path, required=True)
    gen.add_argument("--num-images", type=int, default=8)
    gen.add_argument("--width", type=int, default=640)
    gen.add_argument("--height", type=int, default=480)
    gen.add_argument("--focal-px", type=float, default=800.0)
    gen.add_argument("--squares-x", type=int, default=9)
    gen.add_argument("--squares-y", type=int, default=7)
    gen.add_argument("--square-px", type=int, default=40, help="Reference pattern square size in pixels.")
    gen.add_argument("--noise-std", type=float, default=0.02, help="Additive Gaussian noise (image in [0,1]).")
    gen.add_argument("--image-format", type=str, default="jpg", choices=["jpg", "png"])
    gen.add_argument("--seed", type=int, default=0)

    args = parser.parse_args(argv)

    if args.cmd == "calibrate":
        try:
            config = load_calibration_config(args.config) if args.config is not None else CalibrationConfig()
        except ConfigValidationError as exc:
            print(f"Invalid config: {exc}")
            return EXIT_BAD_CONFIG
        try:
            result = calibrate_directory(
                args.folder,
                args.num_images,
                config=config,
                seed=args.seed,
                reference_name=args.reference_name,
                ext=args.ext,
                verbose=not args.quiet,
            )
        except ReferenceDetectionError as exc:
            print(f"Reference pattern detection failed: {exc}")
            return EXIT_REFERENCE_FAILED
        except InsufficientData as exc:
            print(f"Not enough usable images: {exc}")
            return EXIT_INSUFFICIENT_DATA
        except NumericalDegeneracy as exc:
            print(f"Calibration is numerically degenerate: {exc}")
            return EXIT_DEGENERATE

        _print_result(result)
        if args.out_json is not None:
            write_calibration_report(result, args.out_json)
            print(f"Wrote {args.out_json}")
        return EXIT_OK

    if args.cmd == "generate-dataset":
        board = BoardSpec(squares_x=args.squares_x, squares_y=args.squares_y)
        generate_dataset(
            args.out,
            board=board,
            num_images=args.num_images,
            width=args.width,
            height=args.height,
            K=default_intrinsics(args.width, args.height, args.focal_px),
            square_px=args.square_px,
            noise_std=args.noise_std,
            seed=args.seed,
            image_format=args.image_format,
        )
        print(f"Wrote {args.out}")
        return EXIT_OK

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
