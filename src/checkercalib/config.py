from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal



class ConfigValidationError(ValueError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


@dataclass(frozen=True)
class BoardSpec:
    """
    Checkerboard geometry, counted in squares.

    Both counts must be odd so that the four board corners are black squares. Quads are the
    black squares, numbered row-major from 1: even rows hold `long_row` quads, odd rows hold
    `short_row` quads (offset by one square to the right).
    """

    squares_x: int = 9
    squares_y: int = 7

    def __post_init__(self) -> None:
        _require(self.squares_x >= 3 and self.squares_x % 2 == 1, "board.squares_x must be odd and >= 3")
        _require(self.squares_y >= 3 and self.squares_y % 2 == 1, "board.squares_y must be odd and >= 3")

    @property
    def long_row(self) -> int:
        return (self.squares_x + 1) // 2

    @property
    def short_row(self) -> int:
        return self.squares_x // 2

    @property
    def num_rows(self) -> int:
        return self.squares_y

    @property
    def num_long_rows(self) -> int:
        return (self.squares_y + 1) // 2

    def row_length(self, row: int) -> int:
        return self.long_row if row % 2 == 0 else self.short_row

    def row_start(self, row: int) -> int:
        """First quad number of `row` (rows before it alternate long/short, starting long)."""
        return 1 + ((row + 1) // 2) * self.long_row + (row // 2) * self.short_row

    @property
    def total_quads(self) -> int:
        return self.row_start(self.num_rows) - 1

    def corner_numbers(self) -> tuple[int, int, int, int]:
        """Numbers of the (top-left, top-right, bottom-left, bottom-right) extreme quads."""
        total = self.total_quads
        return 1, self.long_row, total - self.long_row + 1, total

    def number_to_square(self, number: int) -> tuple[int, int]:
        """Board square (col, row) of quad `number`."""
        if not 1 <= number <= self.total_quads:
            raise ValueError(f"quad number out of range: {number}")
        row = 0
        while self.row_start(row + 1) <= number:
            row += 1
        k = number - self.row_start(row)
        return 2 * k + (row % 2), row


@dataclass(frozen=True)
class DetectionConfig:
    threshold: int | Literal["mean"] = 127
    erode: bool = False
    min_contour_points: int = 5
    line_inlier_threshold: float = 1.0
    line_ransac_iterations: int = 100
    min_line_inlier_fraction: float = 0.2
    min_line_points: int = 4
    max_lines: int = 5
    corner_contour_eps: float = 3.0
    min_corner_separation: float = 1.0
    min_quad_size: float = 3.0
    link_distance_factor: float = 2.0
    corner_match_factor: float = 0.7
    min_quads: int | None = None


@dataclass(frozen=True)
class HomographyConfig:
    ransac_iterations: int = 500
    positional_uncertainty: float = 1.0
    inlier_multiplier: float = 3.0
    max_correspondence_error: float = 10.0
    score_neighbours: bool = True
    max_iterations: int = 50
    error_threshold: float = 1e-10
    lambda_init: float = 1e-3
    loss: Literal["linear", "huber", "tukey"] = "linear"
    parameterization: Literal["fixed_h33", "full"] = "fixed_h33"

    @property
    def inlier_threshold(self) -> float:
        return self.positional_uncertainty * self.inlier_multiplier


@dataclass(frozen=True)
class RefineConfig:
    max_iterations: int = 100
    lambda_init: float = 1.0
    error_threshold: float = 1e-12
    step_tolerance: float = 1e-12


@dataclass(frozen=True)
class CalibrationConfig:
    board: BoardSpec = field(default_factory=BoardSpec)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    homography: HomographyConfig = field(default_factory=HomographyConfig)
    refine: RefineConfig = field(default_factory=RefineConfig)
    min_images: int = 3


_CHOICES: dict[str, tuple[str, ...]] = {
    "loss": ("linear", "huber", "tukey"),
    "parameterization": ("fixed_h33", "full"),
}


def _coerce(section: str, name: str, default: Any, value: Any) -> Any:
    where = f"{section}.{name}"
    if name == "threshold":
        if value == "mean":
            return "mean"
        _require(isinstance(value, int) and not isinstance(value, bool), f"{where} must be an integer or 'mean'")
        _require(0 <= value <= 255, f"{where} must be in [0, 255]")
        return int(value)
    if name == "min_quads":
        _require(value is None or (isinstance(value, int) and not isinstance(value, bool)), f"{where} must be an integer or null")
        return value
    if isinstance(default, bool):
        _require(isinstance(value, bool), f"{where} must be a boolean")
        return value
    if isinstance(default, int):
        _require(isinstance(value, int) and not isinstance(value, bool), f"{where} must be an integer")
        return int(value)
    if isinstance(default, float):
        _require(isinstance(value, (int, float)) and not isinstance(value, bool), f"{where} must be a number")
        return float(value)
    if name in _CHOICES:
        _require(value in _CHOICES[name], f"{where} must be one of {'|'.join(_CHOICES[name])}")
        return str(value)
    raise ConfigValidationError(f"unsupported config field: {where}")


def _parse_section(cls: type, data: Any, section: str) -> Any:
    _require(isinstance(data, dict), f"{section} must be an object")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    _require(not unknown, f"unknown keys in {section}: {unknown}")
    kwargs = {}
    for name, value in data.items():
        default = getattr(cls(), name)
        kwargs[name] = _coerce(section, name, default, value)
    return cls(**kwargs)


def parse_calibration_config(data: dict[str, Any]) -> CalibrationConfig:
    _require(isinstance(data, dict), "config must be a JSON object")
    sections = {"board", "detection", "homography", "refine", "min_images"}
    unknown = sorted(set(data) - sections)
    _require(not unknown, f"unknown config keys: {unknown}")

    board = _parse_section(BoardSpec, data.get("board", {}), "board")
    detection = _parse_section(DetectionConfig, data.get("detection", {}), "detection")
    homography = _parse_section(HomographyConfig, data.get("homography", {}), "homography")
    refine = _parse_section(RefineConfig, data.get("refine", {}), "refine")

    _require(detection.line_inlier_threshold > 0.0, "detection.line_inlier_threshold must be > 0")
    _require(detection.line_ransac_iterations >= 1, "detection.line_ransac_iterations must be >= 1")
    _require(0.0 < detection.min_line_inlier_fraction <= 1.0, "detection.min_line_inlier_fraction must be in (0, 1]")
    _require(detection.min_line_points >= 2, "detection.min_line_points must be >= 2")
    _require(detection.max_lines >= 4, "detection.max_lines must be >= 4")
    _require(detection.corner_contour_eps > 0.0, "detection.corner_contour_eps must be > 0")
    _require(0.0 < detection.corner_match_factor <= 1.0, "detection.corner_match_factor must be in (0, 1]")
    _require(detection.min_quads is None or detection.min_quads >= 4, "detection.min_quads must be >= 4")

    _require(homography.ransac_iterations >= 1, "homography.ransac_iterations must be >= 1")
    _require(homography.positional_uncertainty > 0.0, "homography.positional_uncertainty must be > 0")
    _require(homography.inlier_multiplier > 0.0, "homography.inlier_multiplier must be > 0")
    _require(homography.max_correspondence_error > 0.0, "homography.max_correspondence_error must be > 0")
    _require(homography.max_iterations >= 0, "homography.max_iterations must be >= 0")
    _require(homography.lambda_init > 0.0, "homography.lambda_init must be > 0")

    _require(refine.max_iterations >= 0, "refine.max_iterations must be >= 0")
    _require(refine.lambda_init > 0.0, "refine.lambda_init must be > 0")

    min_images = data.get("min_images", 3)
    _require(isinstance(min_images, int) and not isinstance(min_images, bool), "min_images must be an integer")
    _require(min_images >= 3, "min_images must be >= 3 (Zhang's method needs three views)")

    return CalibrationConfig(
        board=board,
        detection=detection,
        homography=homography,
        refine=refine,
        min_images=int(min_images),
    )


def load_calibration_config(path: str | Path) -> CalibrationConfig:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigValidationError(f"cannot read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigValidationError(f"config file {path} is not valid JSON: {exc}") from exc
    return parse_calibration_config(data)
