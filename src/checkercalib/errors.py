from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


class CalibrationError(RuntimeError):
    """Fatal error: the whole calibration run is aborted."""


class NumericalDegeneracy(CalibrationError):
    """
    Ill-conditioned linear algebra: rank-deficient Zhang constraints, a non positive-definite
    B matrix, or singular refinement normal equations.
    """


class InsufficientData(CalibrationError):
    pass


class ReferenceDetectionError(CalibrationError):
    pass


FailureKind = Literal["io", "detection", "correspondence"]


@dataclass(frozen=True)
class ImageFailure:
    """
    Recoverable per-image failure. The image is skipped and the run continues.

    - `detection`: too few quads/links found in the image
    - `correspondence`: the board corners could not be matched/numbered, or no homography
    - `io`: the image file could not be read
    """

    name: str
    kind: FailureKind
    reason: str

    def __str__(self) -> str:
        return f"{self.name}: {self.kind}: {self.reason}"
