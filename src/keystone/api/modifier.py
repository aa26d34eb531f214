from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

from keystone.core.angles import LINE_TOPOLOGIES, AngleBundle, Topology, calculate_angles
from keystone.core.remap import modify_coord_perspective_correction
from keystone.errors import KeystoneError
from keystone.frame import CameraFrame, to_normalized

logger = logging.getLogger(__name__)

CoordCallback = Callable[[Any, np.ndarray, int], None]


@dataclass(frozen=True)
class PerspectiveCorrection:
    """
    Angles computed for one correction request, handed to the remap-map builder.

    `bundle` holds the full correction; `scaled_bundle` the one attenuated by the
    requested strength.
    """

    bundle: AngleBundle
    strength: float

    @property
    def scaled_bundle(self) -> AngleBundle:
        return self.bundle.scaled(self.strength)


@dataclass(frozen=True)
class _CoordCallbackEntry:
    priority: int
    func: CoordCallback
    data: Any


class PerspectiveModifier:
    """
    Perspective correction bound to one image's camera frame.

    Coordinate kernels are registered with a priority and run in ascending
    priority order by `apply_coordinate_callbacks`.
    """

    def __init__(self, frame: CameraFrame):
        self.frame = frame
        self.perspective_correction: PerspectiveCorrection | None = None
        self._coord_callbacks: list[_CoordCallbackEntry] = []

    def enable_perspective_correction(self, x, y, d: float) -> bool:
        """
        Compute the correction for control points given in pixels.

        Only the straight-line topologies (4, 6 or 8 points) are accepted. `d` is
        the correction strength, clamped to [-1, 1]. Returns False, leaving the
        previous correction untouched, when the request is rejected.
        """
        if not self.frame.focal_length > 0:
            logger.warning("perspective correction rejected: focal length %g is not positive", self.frame.focal_length)
            return False
        try:
            x_px = np.asarray(x, dtype=np.float64).reshape(-1)
            y_px = np.asarray(y, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError):
            logger.warning("perspective correction rejected: control points are not numeric")
            return False
        count = x_px.shape[0]
        if y_px.shape[0] != count or count not in {t.count for t in LINE_TOPOLOGIES}:
            logger.warning("perspective correction rejected: need 4, 6 or 8 point pairs, got %d/%d", count, y_px.shape[0])
            return False
        d = float(d)
        if math.isnan(d):
            logger.warning("perspective correction rejected: strength is NaN")
            return False
        d = min(max(d, -1.0), 1.0)

        x_n, y_n = to_normalized(self.frame, x_px, y_px)
        try:
            bundle = calculate_angles(x_n, y_n, self.frame.focal_length, self.frame.normalized_in_millimeters)
        except KeystoneError as e:
            logger.warning("perspective correction rejected: %s", e)
            return False
        if not bundle.is_finite():
            logger.warning("perspective correction rejected: non-finite angles %s", bundle)
            return False

        self.perspective_correction = PerspectiveCorrection(bundle=bundle, strength=d)
        logger.debug("perspective correction enabled (%s, d=%g)", Topology.from_count(count).name, d)
        return True

    def add_coordinate_callback(self, func: CoordCallback, data: Any, priority: int = 500) -> None:
        self._coord_callbacks.append(_CoordCallbackEntry(priority=int(priority), func=func, data=data))
        # stable: equal priorities keep registration order
        self._coord_callbacks.sort(key=lambda e: e.priority)

    def enable_radial_remap(self, k1: float, priority: int = 500) -> None:
        self.add_coordinate_callback(modify_coord_perspective_correction, float(k1), priority)

    def apply_coordinate_callbacks(self, iocoord: np.ndarray, count: int) -> bool:
        """Run the registered kernels over `count` interleaved pairs; False if none are registered."""
        if not self._coord_callbacks:
            return False
        for entry in self._coord_callbacks:
            entry.func(entry.data, iocoord, count)
        return True
