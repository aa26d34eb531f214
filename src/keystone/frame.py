from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from keystone.errors import FrameValidationError

SCHEMA_VERSION = "keystone.camera.v0"

# Half diagonal of a 36x24 mm full-frame sensor.
FULL_FRAME_HALF_DIAGONAL_MM = math.hypot(36.0, 24.0) / 2.0


@dataclass(frozen=True)
class CameraFrame:
    """
    Camera constants that map pixel coordinates into the normalized plane.

    Convention: x' = x * norm_scale - center_x (same for y), so the optical axis
    passes through the origin and the shorter image edge spans 2 units.
    `normalized_in_millimeters` is the length of one normalized unit on a
    full-frame-equivalent sensor, which turns `focal_length` (mm) into
    normalized units.
    """

    focal_length: float
    normalized_in_millimeters: float
    center_x: float
    center_y: float
    norm_scale: float

    @property
    def f_normalized(self) -> float:
        return self.focal_length / self.normalized_in_millimeters

    @classmethod
    def from_image(
        cls,
        width_px: int,
        height_px: int,
        focal_length: float,
        crop_factor: float = 1.0,
        lens_center: tuple[float, float] = (0.0, 0.0),
    ) -> "CameraFrame":
        _require(width_px > 0 and height_px > 0, "image width/height must be > 0")
        _require(crop_factor > 0.0, "crop_factor must be > 0")
        size = float(min(width_px, height_px))
        aspect = float(max(width_px, height_px)) / size
        return cls(
            focal_length=float(focal_length),
            normalized_in_millimeters=FULL_FRAME_HALF_DIAGONAL_MM / math.hypot(aspect, 1.0) / float(crop_factor),
            center_x=width_px / size + float(lens_center[0]),
            center_y=height_px / size + float(lens_center[1]),
            norm_scale=2.0 / size,
        )


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise FrameValidationError(msg)


def _finite(data: dict[str, Any], key: str) -> float:
    return _finite_value(data.get(key), key)


def _finite_value(raw: Any, name: str) -> float:
    _require(raw is not None, f"{name} is required")
    _require(not isinstance(raw, bool), f"{name} must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise FrameValidationError(f"{name} must be a number") from e
    _require(math.isfinite(value), f"{name} must be finite")
    return value


def _pixel_count(data: dict[str, Any], key: str) -> int:
    value = _finite(data, key)
    _require(value.is_integer() and value > 0, f"{key} must be a positive integer")
    return int(value)


def load_camera_frame(path: Path) -> CameraFrame:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_camera_frame(data)


def parse_camera_frame(data: dict[str, Any]) -> CameraFrame:
    """
    Parse a camera description, either explicit:

      {"schema_version", "focal_length", "normalized_in_millimeters",
       "center_x", "center_y", "norm_scale"}

    or derived from the image geometry:

      {"schema_version", "focal_length", "image": {"width_px", "height_px"},
       "crop_factor": 1.0, "lens_center": [0, 0]}

    A non-positive focal length is accepted here; correction requests reject it.
    """
    _require(isinstance(data, dict), "camera description must be a JSON object")
    _require(data.get("schema_version") == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")
    focal_length = _finite(data, "focal_length")

    image = data.get("image")
    if image is not None:
        _require(isinstance(image, dict), "image must be an object")
        width_px = _pixel_count(image, "width_px")
        height_px = _pixel_count(image, "height_px")
        crop_factor = _finite(data, "crop_factor") if "crop_factor" in data else 1.0
        lens_center = data.get("lens_center", [0.0, 0.0])
        _require(
            isinstance(lens_center, (list, tuple)) and len(lens_center) == 2,
            "lens_center must be [cx, cy]",
        )
        return CameraFrame.from_image(
            width_px,
            height_px,
            focal_length,
            crop_factor=crop_factor,
            lens_center=(_finite_value(lens_center[0], "lens_center[0]"), _finite_value(lens_center[1], "lens_center[1]")),
        )

    normalized_in_mm = _finite(data, "normalized_in_millimeters")
    norm_scale = _finite(data, "norm_scale")
    _require(normalized_in_mm > 0.0, "normalized_in_millimeters must be > 0")
    _require(norm_scale > 0.0, "norm_scale must be > 0")
    return CameraFrame(
        focal_length=focal_length,
        normalized_in_millimeters=normalized_in_mm,
        center_x=_finite(data, "center_x"),
        center_y=_finite(data, "center_y"),
        norm_scale=norm_scale,
    )


def camera_frame_to_dict(frame: CameraFrame) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "focal_length": frame.focal_length,
        "normalized_in_millimeters": frame.normalized_in_millimeters,
        "center_x": frame.center_x,
        "center_y": frame.center_y,
        "norm_scale": frame.norm_scale,
    }


def to_normalized(frame: CameraFrame, x_px: np.ndarray, y_px: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Map pixel coordinates into the centered, scale-normalized plane."""
    x_px = np.asarray(x_px, dtype=np.float64)
    y_px = np.asarray(y_px, dtype=np.float64)
    return x_px * frame.norm_scale - frame.center_x, y_px * frame.norm_scale - frame.center_y


def to_pixels(frame: CameraFrame, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Inverse of `to_normalized`."""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    return (x + frame.center_x) / frame.norm_scale, (y + frame.center_y) / frame.norm_scale
