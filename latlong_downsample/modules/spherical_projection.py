import numpy as np
from typing import Tuple

from .vector_math import vec3


def to_sphere(u, v) -> np.ndarray:
    """Convert equirectangular texture coordinates to unit sphere directions.

    u is normalized longitude (0 = seam), v is normalized colatitude
    (0 = +Y pole, 1 = -Y pole). The 0.5 phase offset puts the seam at -X.
    """
    u = np.asarray(u, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    theta = v * np.pi
    phi = (u - 0.5) * 2.0 * np.pi
    sin_theta = np.sin(theta)
    return vec3(sin_theta * np.cos(phi), np.cos(theta), sin_theta * np.sin(phi))


def to_uv(direction: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of to_sphere for unit directions of shape (..., 3)."""
    x, y, z = direction[..., 0], direction[..., 1], direction[..., 2]
    u = 0.5 + np.arctan2(z, x) / (2.0 * np.pi)
    v = np.arccos(np.clip(y, -1.0, 1.0)) / np.pi
    return u, v


def texel_to_pixel(u, v, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """Map texture coordinates to integer pixel indices (column, row).

    Longitude wraps around the panorama; colatitude is clamped at the poles.
    """
    ii = np.mod(np.floor(width * np.asarray(u)).astype(np.int64), width)
    ij = np.clip(np.floor(height * np.asarray(v)).astype(np.int64), 0, height - 1)
    return ii, ij
