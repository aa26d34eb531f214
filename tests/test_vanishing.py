import math

import numpy as np
import pytest

from keystone.core.angles import calculate_angles
from keystone.core.geometry import rotation_matrix_rho_delta
from keystone.core.vanishing import VanishingPoint, conic_matrix, ellipse_analysis, fit_conic, intersection


def _circle_image(center, normal, radius, f, n=5, phase=0.3):
    """Project n points of a 3D circle with a pinhole at focal length f."""
    center = np.asarray(center, dtype=np.float64)
    normal = np.asarray(normal, dtype=np.float64)
    normal = normal / np.linalg.norm(normal)
    u = np.cross(normal, [1.0, 0.0, 0.0])
    if np.linalg.norm(u) < 1e-6:
        u = np.cross(normal, [0.0, 1.0, 0.0])
    u /= np.linalg.norm(u)
    v = np.cross(normal, u)
    t = phase + 2.0 * np.pi * np.arange(n) / n
    P = center + radius * (np.cos(t)[:, None] * u + np.sin(t)[:, None] * v)
    return f * P[:, 0] / P[:, 2], f * P[:, 1] / P[:, 2]


def test_intersection_of_two_lines():
    vp = intersection([0.0, 1.0, 0.0, 2.0], [0.0, 1.0, 2.0, 0.0])
    assert vp is not None and vp.is_finite
    assert vp.xy == pytest.approx((1.0, 1.0))


def test_intersection_is_symmetric_in_point_order():
    x = np.array([-0.4, -0.3, 0.5, 0.35])
    y = np.array([0.6, -0.5, 0.55, -0.45])
    ref = intersection(x, y).xy
    for order in ([1, 0, 2, 3], [0, 1, 3, 2], [1, 0, 3, 2]):
        assert intersection(x[order], y[order]).xy == pytest.approx(ref, rel=1e-12)


def test_parallel_lines_meet_at_infinity():
    vp = intersection([-0.5, -0.5, 0.6, 0.6], [-0.4, 0.4, -0.3, 0.5])
    assert (vp.x, vp.y, vp.w) == pytest.approx((0.0, 1.0, 0.0))
    assert not vp.is_finite
    with pytest.raises(ValueError):
        vp.xy
    assert vp.direction_from(0.3, 0.2) == pytest.approx((0.0, 1.0))


def test_intersection_degenerate_lines():
    # coincident defining points
    assert intersection([0.1, 0.1, 0.5, 0.6], [0.2, 0.2, 0.0, 1.0]) is None
    # the same line twice
    assert intersection([0.0, 1.0, 2.0, 3.0], [0.0, 1.0, 2.0, 3.0]) is None


def test_fit_conic_recovers_unit_circle():
    t = np.array([0.1, 1.3, 2.2, 3.9, 5.0])
    coeffs = fit_conic(np.cos(t), np.sin(t))
    expected = np.array([1.0, 0.0, 1.0, 0.0, 0.0, -1.0]) / np.sqrt(3.0)
    if coeffs[0] < 0:
        coeffs = -coeffs
    np.testing.assert_allclose(coeffs, expected, atol=1e-10)


def test_fit_conic_rejects_collinear_points():
    x = np.linspace(-1.0, 1.0, 5)
    assert fit_conic(x, 0.5 * x + 0.1) is None


def test_ellipse_analysis_rejects_hyperbola():
    x = np.array([1.0, 2.0, -1.0, 0.5, -2.0])
    assert ellipse_analysis(x, 1.0 / x, 1.5) is None


def test_ellipse_analysis_recovers_tilted_circle():
    f = 1.5
    tilt = math.radians(8.0)
    normal = np.array([0.0, -math.sin(tilt), math.cos(tilt)])
    center = np.array([0.2, 1.5, 3.0])
    x, y = _circle_image(center, normal, 0.4, f)

    analysis = ellipse_analysis(x, y, f)
    assert analysis is not None
    np.testing.assert_allclose(analysis.normal, normal, atol=1e-8)

    # The in-plane direction of steepest tilt vanishes at f * cot(tilt) below the axis.
    assert analysis.vanishing_point.xy == pytest.approx((0.0, f / math.tan(tilt)), abs=1e-6)
    # The circle's center images to its central projection, not the ellipse's center.
    assert (analysis.center_x, analysis.center_y) == pytest.approx((f * 0.2 / 3.0, f * 1.5 / 3.0), abs=1e-9)
    assert math.hypot(
        analysis.ellipse_center_x - analysis.center_x, analysis.ellipse_center_y - analysis.center_y
    ) > 1e-4


def test_ellipse_analysis_normal_cuts_circular_sections():
    f = 1.2
    x, y = _circle_image([-0.4, 0.3, 2.5], [0.3, 0.2, 1.0], 0.6, f, phase=1.1)
    analysis = ellipse_analysis(x, y, f)
    assert analysis is not None

    K = np.diag([f, f, 1.0])
    Q = K @ conic_matrix(analysis.conic) @ K
    n = analysis.normal
    P = np.eye(3) - np.outer(n, n)
    PQP = P @ Q @ P
    mu = np.trace(PQP) / 2.0
    assert np.max(np.abs(PQP - mu * P)) < 1e-8 * np.max(np.abs(Q))


def test_fronto_parallel_circle_needs_no_rotation():
    f = 1.2
    x, y = _circle_image([0.3, -0.6, 4.0], [0.0, 0.0, 1.0], 0.5, f)
    analysis = ellipse_analysis(x, y, f)
    assert analysis is not None
    assert analysis.vanishing_point == VanishingPoint(x=0.0, y=1.0, w=0.0)
    assert (analysis.center_x, analysis.center_y) == pytest.approx((f * 0.3 / 4.0, f * -0.6 / 4.0), abs=1e-9)

    bundle = calculate_angles(x, y, focal_length=f, normalized_in_millimeters=1.0)
    assert bundle.rho == pytest.approx(0.0, abs=1e-12)
    assert bundle.delta == pytest.approx(0.0, abs=1e-12)
    assert bundle.rho_h == 0.0
    assert bundle.final_rotation == 0.0


def test_tilted_circle_plane_becomes_vertical():
    f = 1.5
    normal = np.array([0.25, -0.3, 1.0])
    x, y = _circle_image([0.1, 0.4, 3.0], normal, 0.5, f)
    bundle = calculate_angles(x, y, focal_length=f, normalized_in_millimeters=1.0)
    analysis = ellipse_analysis(x, y, f)

    M = rotation_matrix_rho_delta(bundle.rho, bundle.delta)
    # The steepest in-plane direction goes to the pole, so the normal lands on the equator.
    assert abs((M @ analysis.normal)[1]) < 1e-9
    assert (bundle.center_of_control_points_x, bundle.center_of_control_points_y) == pytest.approx(
        (analysis.center_x, analysis.center_y)
    )
    assert bundle.rho_h == 0.0


@pytest.mark.parametrize(
    "p5,p6,expected",
    [
        ((0.0, 0.0), (1.0, 0.1), math.atan2(0.1, 1.0)),
        ((0.0, 0.0), (0.1, 1.0), math.atan2(1.0, 0.1) - math.pi / 2),
        ((0.2, 0.0), (-0.8, -0.1), math.atan2(0.1, 1.0)),
    ],
)
def test_seven_points_rotate_reference_line(p5, p6, expected):
    f = 1.2
    x, y = _circle_image([0.3, -0.6, 4.0], [0.0, 0.0, 1.0], 0.5, f)
    x = np.concatenate([x, [p5[0], p6[0]]])
    y = np.concatenate([y, [p5[1], p6[1]]])
    bundle = calculate_angles(x, y, focal_length=f, normalized_in_millimeters=1.0)
    assert bundle.final_rotation == pytest.approx(expected, abs=1e-9)
    assert bundle.rho_h == 0.0
