from checkercalib.calib.pipeline import (
    CalibrationResult,
    ImageEstimate,
    ReferencePattern,
    calibrate,
    calibrate_directory,
    calibrate_images,
    detect_reference,
    process_image,
)
from checkercalib.calib.pose import extract_pose
from checkercalib.calib.refine import refine_calibration
from checkercalib.calib.zhang import solve_intrinsics

__all__ = [
    "CalibrationResult",
    "ImageEstimate",
    "ReferencePattern",
    "calibrate",
    "calibrate_directory",
    "calibrate_images",
    "detect_reference",
    "process_image",
    "extract_pose",
    "refine_calibration",
    "solve_intrinsics",
]
