from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# Relative size below which cross products are treated as zero.
_EPS = 1e-12
# Circles whose supporting plane is tilted less than this (radians) face the camera.
_FACING_TILT = 1e-8
# Relative eigenvalue gap below which the back-projected cone is circular.
_ROUND_CONE = 1e-10


@dataclass(frozen=True)
class VanishingPoint:
    """
    Homogeneous point (x, y, w) in the normalized image plane.

    w == 0 is a point at infinity, i.e. the lines are parallel in the image.
    Finite points are stored with w > 0; points at infinity with y > 0 (or y == 0
    and x > 0), so equal points compare equal.
    """

    x: float
    y: float
    w: float

    @classmethod
    def from_homogeneous(cls, p: np.ndarray) -> "VanishingPoint":
        p = np.asarray(p, dtype=np.float64).reshape(3)
        if p[2] < 0 or (p[2] == 0 and (p[1] < 0 or (p[1] == 0 and p[0] < 0))):
            p = -p
        p = p / np.linalg.norm(p)
        return cls(x=float(p[0]), y=float(p[1]), w=float(p[2]))

    @property
    def is_finite(self) -> bool:
        return self.w != 0.0

    @property
    def xy(self) -> tuple[float, float]:
        if not self.is_finite:
            raise ValueError("vanishing point at infinity has no image coordinates")
        return self.x / self.w, self.y / self.w

    def direction_from(self, px: float, py: float) -> tuple[float, float]:
        """Image-plane direction from (px, py) towards the vanishing point."""
        if not self.is_finite:
            return self.x, self.y
        x_v, y_v = self.xy
        return x_v - px, y_v - py

    def vertex(self, f_normalized: float) -> np.ndarray:
        """Unit 3D direction of the vanishing point for a camera at focal length f."""
        v = np.array([self.x, self.y, self.w * f_normalized], dtype=np.float64)
        return v / np.linalg.norm(v)


def _line_through(x0: float, y0: float, x1: float, y1: float) -> np.ndarray:
    return np.cross([x0, y0, 1.0], [x1, y1, 1.0])


def intersection(x: np.ndarray, y: np.ndarray) -> VanishingPoint | None:
    """
    Intersect the line through points 0,1 with the line through points 2,3.

    Parallel lines meet at infinity. Returns None when a line is undefined
    (coincident points) or both lines are the same.
    """
    x = np.asarray(x, dtype=np.float64).reshape(-1)
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    if x.shape[0] < 4 or y.shape[0] < 4:
        raise ValueError("need 4 points (2 per line)")

    l1 = _line_through(x[0], y[0], x[1], y[1])
    l2 = _line_through(x[2], y[2], x[3], y[3])
    n1 = np.linalg.norm(l1[:2])
    n2 = np.linalg.norm(l2[:2])
    if n1 == 0.0 or n2 == 0.0:
        return None
    # Unit direction part keeps the product well scaled.
    l1 /= n1
    l2 /= n2
    p = np.cross(l1, l2)
    if np.linalg.norm(p) <= _EPS * np.linalg.norm(l1) * np.linalg.norm(l2):
        return None
    return VanishingPoint.from_homogeneous(p)


def fit_conic(x: np.ndarray, y: np.ndarray) -> np.ndarray | None:
    """
    Conic A x^2 + B xy + C y^2 + D x + E y + F = 0 through five points.

    The points are centered and scaled to mean distance sqrt(2) before fitting.
    The design matrix is padded with a zero row to 6x6; the coefficients are the
    right singular vector of the smallest singular value. The result is in the
    input coordinates, with unit norm. Returns None when the points do not pin
    down a single conic.
    """
    from scipy.linalg import svd  # type: ignore

    x = np.asarray(x, dtype=np.float64).reshape(-1)[:5]
    y = np.asarray(y, dtype=np.float64).reshape(-1)[:5]
    if x.shape[0] != 5 or y.shape[0] != 5:
        raise ValueError("need 5 points on the conic")

    mx, my = float(np.mean(x)), float(np.mean(y))
    spread = float(np.mean(np.hypot(x - mx, y - my)))
    if not np.isfinite(spread) or spread == 0.0:
        return None
    s = np.sqrt(2.0) / spread
    xn = (x - mx) * s
    yn = (y - my) * s

    M = np.zeros((6, 6), dtype=np.float64)
    M[:5] = np.stack([xn * xn, xn * yn, yn * yn, xn, yn, np.ones_like(xn)], axis=1)
    _, sv, vt = svd(M)
    if not np.all(np.isfinite(sv)) or sv[4] <= _EPS * sv[0]:
        return None

    # Back to input coordinates: C = T^T Cn T.
    T = np.array([[s, 0.0, -s * mx], [0.0, s, -s * my], [0.0, 0.0, 1.0]], dtype=np.float64)
    C = T.T @ conic_matrix(vt[-1]) @ T
    coeffs = np.array(
        [C[0, 0], 2.0 * C[0, 1], C[1, 1], 2.0 * C[0, 2], 2.0 * C[1, 2], C[2, 2]],
        dtype=np.float64,
    )
    return coeffs / np.linalg.norm(coeffs)


def conic_matrix(coeffs: np.ndarray) -> np.ndarray:
    a, b, c, d, e, f = (float(v) for v in np.asarray(coeffs, dtype=np.float64).reshape(6))
    return np.array(
        [[a, b / 2.0, d / 2.0], [b / 2.0, c, e / 2.0], [d / 2.0, e / 2.0, f]],
        dtype=np.float64,
    )


@dataclass(frozen=True)
class EllipseAnalysis:
    """
    Result of back-projecting an ellipse that is the image of a circle.

    `vanishing_point` is where the in-plane direction of steepest tilt vanishes;
    rotating it to the pole makes the circle's plane face the camera.
    (center_x, center_y) is the image of the circle's 3D center, which differs
    from the ellipse's own center (ellipse_center_x, ellipse_center_y).
    """

    vanishing_point: VanishingPoint
    center_x: float
    center_y: float
    ellipse_center_x: float
    ellipse_center_y: float
    normal: np.ndarray  # (3,) unit normal of the circle's plane, z >= 0
    conic: np.ndarray  # (6,)


def _circle_plane_normal(Q: np.ndarray) -> np.ndarray | None:
    """
    Normal of the circular sections of the cone x^T Q x = 0.

    With eigenvalues l1 >= l2 > 0 > l3, the sections are circles for
    n = +-sqrt((l1-l2)/(l1-l3)) e1 + sqrt((l2-l3)/(l1-l3)) e3. Of the two, the
    one closer to the optical axis is returned.
    """
    from scipy.linalg import eigh  # type: ignore

    w, v = eigh(Q)
    if int(np.sum(w > 0)) < 2:
        w, v = eigh(-Q)
    l3, l2, l1 = (float(t) for t in w)
    if not (l3 < 0.0 < l2):
        return None
    e1, e3 = v[:, 2], v[:, 0]

    span = l1 - l3
    along_e1 = max(l1 - l2, 0.0) / span
    along_e3 = (l2 - l3) / span
    if along_e1 < _ROUND_CONE:
        candidates = [e3]
    else:
        candidates = [
            np.sqrt(along_e1) * e1 + np.sqrt(along_e3) * e3,
            -np.sqrt(along_e1) * e1 + np.sqrt(along_e3) * e3,
        ]

    best = None
    for n in candidates:
        n = n / np.linalg.norm(n)
        if n[2] < 0:
            n = -n
        if best is None or n[2] > best[2]:
            best = n
    return best


def ellipse_analysis(x: np.ndarray, y: np.ndarray, f_normalized: float) -> EllipseAnalysis | None:
    """
    Fit an ellipse through five points and recover the circle it images.

    Returns None when the points do not lie on a real ellipse.
    """
    f = float(f_normalized)
    coeffs = fit_conic(x, y)
    if coeffs is None:
        return None
    a, b, c = coeffs[:3]
    if b * b - 4.0 * a * c >= 0.0:
        return None

    C = conic_matrix(coeffs)
    if abs(np.linalg.det(C)) <= _EPS * np.linalg.norm(C) ** 3:
        return None

    K = np.diag([f, f, 1.0])
    normal = _circle_plane_normal(K @ C @ K)
    if normal is None:
        return None

    # The circle's center images to the pole of the plane's vanishing line.
    m = np.linalg.solve(C, normal / np.array([f, f, 1.0]))
    if m[2] == 0.0:
        return None
    center_x, center_y = float(m[0] / m[2]), float(m[1] / m[2])

    ex, ey = np.linalg.solve(C[:2, :2], -C[:2, 2])

    nx, ny, nz = (float(t) for t in normal)
    tilt = float(np.hypot(nx, ny))
    if tilt < _FACING_TILT:
        vp = VanishingPoint(x=0.0, y=1.0, w=0.0)
    else:
        vp = VanishingPoint.from_homogeneous([-f * nz * nx, -f * nz * ny, tilt * tilt])

    return EllipseAnalysis(
        vanishing_point=vp,
        center_x=center_x,
        center_y=center_y,
        ellipse_center_x=float(ex),
        ellipse_center_y=float(ey),
        normal=normal,
        conic=coeffs,
    )
