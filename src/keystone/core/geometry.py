from __future__ import annotations

import numpy as np


def normalize(x: float, y: float) -> np.ndarray:
    """
    Scale (x, y) to unit length.

    A zero vector has no direction: the result is (nan, nan), without a warning.
    """
    norm = np.hypot(x, y)
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.array([x / norm, y / norm], dtype=np.float64)


def central_projection(ray: np.ndarray, plane_distance: float) -> tuple[float, float]:
    """
    Project a 3D ray onto the plane z = plane_distance.

    Callers pass rays in front of the camera (z > 0).
    """
    ray = np.asarray(ray, dtype=np.float64).reshape(3)
    stretch = plane_distance / ray[2]
    return float(ray[0] * stretch), float(ray[1] * stretch)


def rotation_matrix_rho_delta(rho: float, delta: float) -> np.ndarray:
    """
    Rx(delta) @ Ry(rho): turn by rho about the y axis, then tilt by delta about x.

    With rho, delta from `keystone.core.angles`, this moves the vertex onto the
    y axis (the pole of the local spherical coordinates).
    """
    cr, sr = np.cos(rho), np.sin(rho)
    cd, sd = np.cos(delta), np.sin(delta)
    return np.array(
        [
            [cr, 0.0, sr],
            [sr * sd, cd, -cr * sd],
            [-sr * cd, sd, cr * cd],
        ],
        dtype=np.float64,
    )


def rotate_rho_delta(rho: float, delta: float, x: float, y: float, z: float) -> np.ndarray:
    return rotation_matrix_rho_delta(rho, delta) @ np.array([x, y, z], dtype=np.float64)
