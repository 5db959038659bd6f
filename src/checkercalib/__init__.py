from checkercalib import config
from checkercalib.calib import (
    CalibrationResult,
    ImageEstimate,
    calibrate,
    calibrate_directory,
    calibrate_images,
    extract_pose,
    refine_calibration,
    solve_intrinsics,
)
from checkercalib.config import BoardSpec, CalibrationConfig
from checkercalib.errors import (
    CalibrationError,
    ImageFailure,
    InsufficientData,
    NumericalDegeneracy,
    ReferenceDetectionError,
)

__all__ = [
    "config",
    "BoardSpec",
    "CalibrationConfig",
    "CalibrationResult",
    "ImageEstimate",
    "calibrate",
    "calibrate_directory",
    "calibrate_images",
    "extract_pose",
    "refine_calibration",
    "solve_intrinsics",
    "CalibrationError",
    "ImageFailure",
    "InsufficientData",
    "NumericalDegeneracy",
    "ReferenceDetectionError",
]
