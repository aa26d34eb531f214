"""
Rotation angles for perspective correction from control points.

The control points are given in the normalized plane (optical axis at the
origin, image plane at z = f_normalized). A vanishing point is estimated from
the points (line intersection or ellipse analysis, depending on the topology)
and raised to a 3D direction, the vertex. (rho, delta) rotate the vertex onto
the y axis; rho_h is the subsequent turn about that axis which puts the node of
the horizontal great circle onto the x axis; final_rotation is the in-image
rotation that keeps the result upright.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, replace
from enum import Enum

import numpy as np

from keystone.core.geometry import central_projection, normalize, rotate_rho_delta, rotation_matrix_rho_delta
from keystone.core.vanishing import VanishingPoint, ellipse_analysis, intersection
from keystone.errors import ControlPointError, DegenerateGeometryError, FrameValidationError

logger = logging.getLogger(__name__)

_EPS = 1e-12


class Topology(Enum):
    """Meaning of a control-point set, keyed by its number of points."""

    # points 0,1 and 2,3 on two originally vertical lines
    TWO_VERTICALS = 4
    # five points on an ellipse that was a circle
    ELLIPSE = 5
    # two verticals, points 4,5 on a horizontal line
    VERTICALS_ONE_HORIZONTAL = 6
    # ellipse, points 5,6 on a line that ends up horizontal or vertical
    ELLIPSE_ROTATION = 7
    # two verticals, points 4,5 and 6,7 on two horizontal lines
    VERTICALS_TWO_HORIZONTALS = 8

    @classmethod
    def from_count(cls, count: int) -> "Topology":
        try:
            return cls(int(count))
        except ValueError as e:
            raise ControlPointError(f"unsupported number of control points: {count} (need 4 to 8)") from e

    @property
    def count(self) -> int:
        return int(self.value)

    @property
    def estimator(self) -> "LineEstimator | ConicEstimator":
        if self in (Topology.ELLIPSE, Topology.ELLIPSE_ROTATION):
            return CONIC_ESTIMATOR
        return LINE_ESTIMATOR


LINE_TOPOLOGIES = frozenset(
    {Topology.TWO_VERTICALS, Topology.VERTICALS_ONE_HORIZONTAL, Topology.VERTICALS_TWO_HORIZONTALS}
)


@dataclass(frozen=True)
class ControlPoints:
    x: np.ndarray
    y: np.ndarray
    topology: Topology

    @classmethod
    def from_sequences(cls, x, y) -> "ControlPoints":
        x = np.asarray(x, dtype=np.float64).reshape(-1)
        y = np.asarray(y, dtype=np.float64).reshape(-1)
        if x.shape != y.shape:
            raise ControlPointError(f"x and y must have the same length, got {x.shape[0]} and {y.shape[0]}")
        topology = Topology.from_count(x.shape[0])
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
            raise ControlPointError("control points must be finite")
        return cls(x=x, y=y, topology=topology)


@dataclass(frozen=True)
class AngleBundle:
    rho: float
    delta: float
    rho_h: float
    f_normalized: float
    final_rotation: float
    center_of_control_points_x: float
    center_of_control_points_y: float

    def scaled(self, d: float) -> "AngleBundle":
        """Attenuate the rotation angles by the correction strength d."""
        return replace(
            self,
            rho=self.rho * d,
            delta=self.delta * d,
            rho_h=self.rho_h * d,
            final_rotation=self.final_rotation * d,
        )

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in asdict(self).values())

    def as_dict(self) -> dict[str, float]:
        return {k: float(v) for k, v in asdict(self).items()}


@dataclass(frozen=True)
class VanishingEstimate:
    vanishing_point: VanishingPoint
    f_normalized: float
    center_x: float
    center_y: float


def determine_rho_h(
    rho: float,
    delta: float,
    x_perpendicular_line: np.ndarray,
    y_perpendicular_line: np.ndarray,
    f_normalized: float,
    center_x: float,
    center_y: float,
) -> float | None:
    """
    Rotation about the pole that puts the horizontal great circle's node on the x axis.

    The two line points are rotated by (rho, delta); the great circle through them
    meets the equator (y = 0) at the node. The result lies in (-pi/2, pi/2], moved
    by pi if the control-point center would end up behind the camera.

    Returns None when the line passes through the projection center or its great
    circle is the equator itself.
    """
    rotation = rotation_matrix_rho_delta(rho, delta)
    p0 = rotation @ np.array([x_perpendicular_line[0], y_perpendicular_line[0], f_normalized], dtype=np.float64)
    p1 = rotation @ np.array([x_perpendicular_line[1], y_perpendicular_line[1], f_normalized], dtype=np.float64)

    plane_normal = np.cross(p0, p1)
    normal_len = float(np.linalg.norm(plane_normal))
    if normal_len <= _EPS * float(np.linalg.norm(p0) * np.linalg.norm(p1)):
        return None
    # node = plane_normal x (0, 1, 0)
    node_x, node_z = -float(plane_normal[2]), float(plane_normal[0])
    if math.hypot(node_x, node_z) <= _EPS * normal_len:
        return None

    rho_h = math.atan(node_z / node_x) if node_x != 0.0 else math.pi / 2
    center = rotation @ np.array([center_x, center_y, f_normalized], dtype=np.float64)
    if rotate_rho_delta(rho_h, 0.0, *center)[2] < 0:
        rho_h += -math.pi if rho_h > 0 else math.pi
    return rho_h


class LineEstimator:
    """Vanishing point from two line pairs (4, 6 and 8 points)."""

    def estimate_vanishing_point(
        self, points: ControlPoints, f_normalized: float, center_x: float, center_y: float
    ) -> VanishingEstimate | None:
        vp = intersection(points.x[:4], points.y[:4])
        if vp is None:
            return None
        if points.topology is Topology.VERTICALS_TWO_HORIZONTALS:
            # Over-determined: the horizontal vanishing point wins over the declared focal length.
            horizontal = intersection(points.x[4:8], points.y[4:8])
            if horizontal is not None and horizontal.is_finite and vp.is_finite:
                x_v, y_v = vp.xy
                x_h, y_h = horizontal.xy
                radicand = -x_h * x_v - y_h * y_v
                if radicand >= 0:
                    logger.debug("focal length from horizontal vanishing point: %g -> %g", f_normalized, math.sqrt(radicand))
                    f_normalized = math.sqrt(radicand)
                else:
                    logger.debug("horizontal vanishing point inconsistent (radicand %g), keeping focal length", radicand)
        return VanishingEstimate(vanishing_point=vp, f_normalized=f_normalized, center_x=center_x, center_y=center_y)

    def reference_direction(self, points: ControlPoints, estimate: VanishingEstimate) -> np.ndarray:
        vp = estimate.vanishing_point
        a = normalize(*vp.direction_from(points.x[0], points.y[0]))
        b = normalize(*vp.direction_from(points.x[2], points.y[2]))
        return a + b

    def estimate_horizontal_rotation(
        self,
        points: ControlPoints,
        rho: float,
        delta: float,
        estimate: VanishingEstimate,
        swapped: bool,
    ) -> float:
        cx, cy = estimate.center_x, estimate.center_y
        if points.topology is Topology.TWO_VERTICALS:
            # Synthetic line through the center, perpendicular to the verticals.
            if swapped:
                lines = [((cx, cx), (cy - 1.0, cy + 1.0))]
            else:
                lines = [((cx - 1.0, cx + 1.0), (cy, cy))]
        else:
            lines = [(points.x[4:6], points.y[4:6])]
            if points.topology is Topology.VERTICALS_TWO_HORIZONTALS:
                lines.append((points.x[6:8], points.y[6:8]))

        for x_line, y_line in lines:
            rho_h = determine_rho_h(rho, delta, x_line, y_line, estimate.f_normalized, cx, cy)
            if rho_h is not None:
                return rho_h

        # Any turn about the pole keeps the lines level; only the centre must stay in view.
        center = rotate_rho_delta(rho, delta, cx, cy, estimate.f_normalized)
        if center[2] > _EPS * float(np.linalg.norm(center)):
            logger.debug("horizontal rotation undetermined, using 0")
            return 0.0
        rho_h = math.atan2(-float(center[0]), float(center[2]))
        logger.debug("horizontal rotation undetermined, turning the centre into view: %g", rho_h)
        return rho_h


class ConicEstimator:
    """Vanishing point from an ellipse that images a circle (5 and 7 points)."""

    def estimate_vanishing_point(
        self, points: ControlPoints, f_normalized: float, center_x: float, center_y: float
    ) -> VanishingEstimate | None:
        analysis = ellipse_analysis(points.x[:5], points.y[:5], f_normalized)
        if analysis is None:
            return None
        return VanishingEstimate(
            vanishing_point=analysis.vanishing_point,
            f_normalized=f_normalized,
            center_x=analysis.center_x,
            center_y=analysis.center_y,
        )

    def reference_direction(self, points: ControlPoints, estimate: VanishingEstimate) -> np.ndarray:
        if points.topology is Topology.ELLIPSE_ROTATION:
            return np.array([points.x[5] - points.x[6], points.y[5] - points.y[6]], dtype=np.float64)
        return np.array(estimate.vanishing_point.direction_from(estimate.center_x, estimate.center_y), dtype=np.float64)

    def estimate_horizontal_rotation(
        self,
        points: ControlPoints,
        rho: float,
        delta: float,
        estimate: VanishingEstimate,
        swapped: bool,
    ) -> float:
        return 0.0


LINE_ESTIMATOR = LineEstimator()
CONIC_ESTIMATOR = ConicEstimator()


def vertex_angles(vp: VanishingPoint, f_normalized: float) -> tuple[float, float]:
    """
    rho = atan(-x_v / f), delta = pi/2 - atan(-y_v / sqrt(x_v^2 + f^2)).

    Evaluated on the vertex direction, so points at infinity are exact.
    """
    a, b, c = (float(t) for t in vp.vertex(f_normalized))
    rho = math.atan2(-a, c)
    delta = math.pi / 2 - math.atan2(-b, math.hypot(a, c))
    return rho, delta


def _smallest_rotation(angle: float) -> float:
    # period pi, result in [-pi/2, pi/2)
    return (angle + math.pi / 2) % math.pi - math.pi / 2


def _segment_rotation(
    points: ControlPoints, rho: float, delta: float, f_normalized: float, into_horizontal: bool
) -> float:
    """
    Turn that makes the projected p5->p6 segment horizontal (or vertical).

    The segment is undirected: the result is wrapped to [-pi/2, pi/2), so a reversed
    segment gives the same turn instead of one that differs by pi as lensfun returns.
    """
    x5_, y5_ = central_projection(rotate_rho_delta(rho, delta, points.x[5], points.y[5], f_normalized), f_normalized)
    x6_, y6_ = central_projection(rotate_rho_delta(rho, delta, points.x[6], points.y[6], f_normalized), f_normalized)
    angle = math.atan2(y6_ - y5_, x6_ - x5_)
    if not into_horizontal:
        angle -= math.pi / 2
    return _smallest_rotation(angle)


def calculate_angles(x, y, focal_length: float, normalized_in_millimeters: float) -> AngleBundle:
    """
    Correction angles for control points in the normalized plane.

    Raises ControlPointError for unsupported point sets and DegenerateGeometryError
    when no vanishing point can be estimated.
    """
    points = ControlPoints.from_sequences(x, y)
    topology = points.topology
    if not (focal_length > 0 and normalized_in_millimeters > 0):
        raise FrameValidationError("focal_length and normalized_in_millimeters must be > 0")

    if topology is Topology.VERTICALS_ONE_HORIZONTAL:
        center_x, center_y = float(np.mean(points.x[:4])), float(np.mean(points.y[:4]))
    else:
        center_x, center_y = float(np.mean(points.x)), float(np.mean(points.y))

    estimator = topology.estimator
    estimate = estimator.estimate_vanishing_point(points, focal_length / normalized_in_millimeters, center_x, center_y)
    if estimate is None:
        raise DegenerateGeometryError(f"no vanishing point for {topology.name} control points")
    f_normalized = estimate.f_normalized
    center_x, center_y = estimate.center_x, estimate.center_y

    rho, delta = vertex_angles(estimate.vanishing_point, f_normalized)
    if rotate_rho_delta(rho, delta, center_x, center_y, f_normalized)[2] < 0:
        # Move the vertex into the nadir instead of the zenith.
        delta -= math.pi

    c = estimator.reference_direction(points, estimate)
    swapped = abs(c[0]) > abs(c[1])
    if topology is Topology.ELLIPSE_ROTATION:
        final_rotation = _segment_rotation(points, rho, delta, f_normalized, into_horizontal=swapped)
    elif swapped:
        final_rotation = math.pi / 2 if rho > 0 else -math.pi / 2
    else:
        final_rotation = 0.0

    rho_h = estimator.estimate_horizontal_rotation(points, rho, delta, estimate, swapped)

    bundle = AngleBundle(
        rho=rho,
        delta=delta,
        rho_h=rho_h,
        f_normalized=f_normalized,
        final_rotation=final_rotation,
        center_of_control_points_x=center_x,
        center_of_control_points_y=center_y,
    )
    logger.debug("%s: %s", topology.name, bundle)
    return bundle
