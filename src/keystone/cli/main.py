from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from keystone.api import PerspectiveModifier
from keystone.errors import ControlPointError, KeystoneError
from keystone.frame import camera_frame_to_dict, load_camera_frame


def load_control_points(path: Path) -> tuple[list[float], list[float]]:
    """Read {"x": [...], "y": [...]} (pixel coordinates)."""
    data: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict) or "x" not in data or "y" not in data:
        raise ControlPointError(f"{path}: expected an object with 'x' and 'y' lists")
    try:
        x = [float(v) for v in data["x"]]
        y = [float(v) for v in data["y"]]
    except (TypeError, ValueError) as e:
        raise ControlPointError(f"{path}: control points must be numbers") from e
    return x, y


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="keystone")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log computed values.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    ang = sub.add_parser("angles", help="Compute perspective-correction angles from control points.")
    ang.add_argument("--camera", type=Path, required=True, help="Camera frame JSON (keystone.camera.v0).")
    ang.add_argument("--points", type=Path, required=True, help='Control points JSON: {"x": [...], "y": [...]} in pixels.')
    ang.add_argument("--strength", type=float, default=1.0, help="Correction strength d, clamped to [-1, 1].")
    ang.add_argument("--out", type=Path, default=None, help="Write the report here instead of stdout.")

    val = sub.add_parser("validate-camera", help="Validate a camera frame JSON file.")
    val.add_argument("camera", type=Path)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "validate-camera":
        try:
            frame = load_camera_frame(args.camera)
        except (OSError, json.JSONDecodeError, KeystoneError) as e:
            print(f"{args.camera}: {e}", file=sys.stderr)
            return 1
        print(json.dumps(camera_frame_to_dict(frame), indent=2, sort_keys=True))
        return 0

    if args.cmd == "angles":
        try:
            frame = load_camera_frame(args.camera)
            x, y = load_control_points(args.points)
        except (OSError, json.JSONDecodeError, KeystoneError) as e:
            print(f"error: {e}", file=sys.stderr)
            return 1

        modifier = PerspectiveModifier(frame)
        if not modifier.enable_perspective_correction(x, y, args.strength):
            print("error: perspective correction rejected for these control points", file=sys.stderr)
            return 1
        correction = modifier.perspective_correction
        assert correction is not None
        report = {
            "schema_version": "keystone.angles.v0",
            "strength": correction.strength,
            "angles": correction.bundle.as_dict(),
            "scaled_angles": correction.scaled_bundle.as_dict(),
        }
        text = json.dumps(report, indent=2, sort_keys=True)
        if args.out is not None:
            args.out.write_text(text + "\n", encoding="utf-8")
            print(f"Wrote {args.out}")
        else:
            print(text)
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
