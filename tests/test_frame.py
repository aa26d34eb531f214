import json
from pathlib import Path

import numpy as np
import pytest

from keystone.errors import FrameValidationError
from keystone.frame import (
    CameraFrame,
    camera_frame_to_dict,
    load_camera_frame,
    parse_camera_frame,
    to_normalized,
    to_pixels,
)


def _image_frame(width: int = 3000, height: int = 2000, focal_length: float = 50.0, **extra):
    return parse_camera_frame(
        {
            "schema_version": "keystone.camera.v0",
            "focal_length": focal_length,
            "image": {"width_px": width, "height_px": height},
            **extra,
        }
    )


def test_parse_image_based_frame():
    frame = _image_frame()
    assert frame.norm_scale == pytest.approx(1.0 / 1000.0)
    assert frame.center_x == pytest.approx(1.5)
    assert frame.center_y == pytest.approx(1.0)
    # 36x24 mm: the short edge (24 mm) spans 2 normalized units
    assert frame.normalized_in_millimeters == pytest.approx(12.0)
    assert frame.f_normalized == pytest.approx(50.0 / 12.0)


def test_crop_factor_and_lens_center():
    frame = _image_frame(crop_factor=1.5, lens_center=[0.01, -0.02])
    assert frame.normalized_in_millimeters == pytest.approx(8.0)
    assert frame.center_x == pytest.approx(1.51)
    assert frame.center_y == pytest.approx(0.98)


def test_parse_explicit_frame_roundtrip():
    frame = CameraFrame(focal_length=35.0, normalized_in_millimeters=12.0, center_x=1.5, center_y=1.0, norm_scale=0.001)
    assert parse_camera_frame(camera_frame_to_dict(frame)) == frame


@pytest.mark.parametrize(
    "patch",
    [
        {"schema_version": "keystone.camera.v1"},
        {"focal_length": None},
        {"focal_length": "fifty"},
        {"norm_scale": 0.0},
        {"normalized_in_millimeters": -12.0},
        {"center_x": float("nan")},
    ],
)
def test_parse_explicit_frame_rejects(patch):
    data = {
        "schema_version": "keystone.camera.v0",
        "focal_length": 35.0,
        "normalized_in_millimeters": 12.0,
        "center_x": 1.5,
        "center_y": 1.0,
        "norm_scale": 0.001,
    }
    data.update(patch)
    with pytest.raises(FrameValidationError):
        parse_camera_frame(data)


def test_parse_image_frame_rejects_bad_geometry():
    with pytest.raises(FrameValidationError):
        _image_frame(width=0)
    with pytest.raises(FrameValidationError):
        _image_frame(crop_factor=0.0)
    with pytest.raises(FrameValidationError):
        _image_frame(lens_center=[0.0])


@pytest.mark.parametrize(
    "image,extra",
    [
        ({"width_px": "wide", "height_px": 2000}, {}),
        ({"width_px": 2999.9, "height_px": 2000}, {}),
        ({"width_px": 3000}, {}),
        ({"width_px": 3000, "height_px": 2000}, {"lens_center": [None, 0.0]}),
        ({"width_px": 3000, "height_px": 2000}, {"lens_center": ["left", 0.0]}),
    ],
)
def test_parse_image_frame_rejects_malformed_values(image, extra):
    data = {"schema_version": "keystone.camera.v0", "focal_length": 50.0, "image": image, **extra}
    with pytest.raises(FrameValidationError):
        parse_camera_frame(data)


def test_integral_float_sizes_are_accepted():
    assert _image_frame(width=3000.0, height=2000.0) == _image_frame()


def test_non_positive_focal_length_is_accepted_at_parse_time():
    assert _image_frame(focal_length=0.0).focal_length == 0.0


def test_pixel_normalized_roundtrip():
    frame = _image_frame(width=640, height=480)
    rng = np.random.default_rng(0)
    u = rng.uniform(0, 639, size=(1000,))
    v = rng.uniform(0, 479, size=(1000,))
    x, y = to_normalized(frame, u, v)
    assert np.max(np.abs(y)) <= 1.0 + 1e-12
    u2, v2 = to_pixels(frame, x, y)
    assert np.max(np.abs(u2 - u)) < 1e-9
    assert np.max(np.abs(v2 - v)) < 1e-9


def test_load_camera_frame(tmp_path: Path):
    path = tmp_path / "camera.json"
    path.write_text(
        json.dumps({"schema_version": "keystone.camera.v0", "focal_length": 24, "image": {"width_px": 400, "height_px": 600}}),
        encoding="utf-8",
    )
    frame = load_camera_frame(path)
    assert frame.norm_scale == pytest.approx(2.0 / 400.0)
    assert frame.center_x == pytest.approx(1.0)
    assert frame.center_y == pytest.approx(1.5)
