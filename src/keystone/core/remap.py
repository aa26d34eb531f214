from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def modify_coord_perspective_correction(k1: float, iocoord: np.ndarray, count: int) -> None:
    """
    Radial remap Rd = Ru * (1 - k1 + k1 * Ru^2), applied in place.

    `iocoord` is a flat, C-contiguous buffer of interleaved (x, y) pairs; only the
    first `count` pairs are touched. k1 == 0 is the identity.
    """
    if not isinstance(iocoord, np.ndarray):
        raise TypeError("iocoord must be a numpy array (it is modified in place)")
    if not iocoord.flags.c_contiguous:
        raise ValueError("iocoord must be C-contiguous")
    count = int(count)
    if count < 0 or 2 * count > iocoord.size:
        raise ValueError(f"count={count} pairs do not fit a buffer of {iocoord.size} values")

    pairs = iocoord.reshape(-1)[: 2 * count].reshape(count, 2)
    x = pairs[:, 0]
    y = pairs[:, 1]
    poly2 = (1.0 - k1) + k1 * (x * x + y * y)
    pairs *= poly2[:, None]


@dataclass(frozen=True)
class RadialRemap:
    """
    The same radial polynomial on coordinate arrays, with an iterative inverse.
    """

    k1: float = 0.0

    def apply(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        poly2 = (1.0 - self.k1) + self.k1 * (x * x + y * y)
        return x * poly2, y * poly2

    def invert(self, xd: np.ndarray, yd: np.ndarray, iterations: int = 20) -> tuple[np.ndarray, np.ndarray]:
        """
        Iterative inverse of apply() for small |k1| inside the unit disk.
        """
        xd = np.asarray(xd, dtype=np.float64)
        yd = np.asarray(yd, dtype=np.float64)
        x = xd.copy()
        y = yd.copy()
        for _ in range(int(iterations)):
            x_est, y_est = self.apply(x, y)
            x += xd - x_est
            y += yd - y_est
        return x, y
