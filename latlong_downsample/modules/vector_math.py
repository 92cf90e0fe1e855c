import numpy as np


def vec2(u, v) -> np.ndarray:
    """Stack texture coordinates into (..., 2) vectors."""
    return np.stack(np.broadcast_arrays(np.asarray(u, dtype=np.float64),
                                        np.asarray(v, dtype=np.float64)), axis=-1)


def vec3(x, y, z) -> np.ndarray:
    """Stack components into (..., 3) direction vectors."""
    return np.stack(np.broadcast_arrays(np.asarray(x, dtype=np.float64),
                                        np.asarray(y, dtype=np.float64),
                                        np.asarray(z, dtype=np.float64)), axis=-1)


def add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.add(a, b)


def scale(a: np.ndarray, s) -> np.ndarray:
    # s may be a scalar or an array matching the leading axes of a
    s = np.asarray(s, dtype=np.float64)
    if s.ndim:
        s = s[..., np.newaxis]
    return a * s


def dot(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.sum(a * b, axis=-1)


def length(a: np.ndarray) -> np.ndarray:
    return np.sqrt(dot(a, a))


def normalize(a: np.ndarray) -> np.ndarray:
    return a / length(a)[..., np.newaxis]


def cross(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    ax, ay, az = a[..., 0], a[..., 1], a[..., 2]
    bx, by, bz = b[..., 0], b[..., 1], b[..., 2]
    return np.stack([ay * bz - az * by,
                     az * bx - ax * bz,
                     ax * by - ay * bx], axis=-1)


def orthogonal(v: np.ndarray) -> np.ndarray:
    """Unit vector perpendicular to v.

    Picks the canonical perpendicular built around the smallest component of
    v, so the result never comes from a near-zero-length candidate:

        |x| smallest -> (0, -z, y)
        |y| smallest -> (z, 0, -x)
        |z| smallest -> (-y, x, 0)

    Components are compared |x| vs |y| vs |z| in that order and ties go to
    the later component.
    """
    v = np.asarray(v, dtype=np.float64)
    x, y, z = v[..., 0], v[..., 1], v[..., 2]
    ax, ay, az = np.abs(x), np.abs(y), np.abs(z)
    zero = np.zeros_like(x)

    use_x = (ax < ay) & (ax < az)
    use_y = (ax >= ay) & (ay < az)

    from_x = np.stack([zero, -z, y], axis=-1)
    from_y = np.stack([z, zero, -x], axis=-1)
    from_z = np.stack([-y, x, zero], axis=-1)

    result = np.where(use_x[..., np.newaxis], from_x,
                      np.where(use_y[..., np.newaxis], from_y, from_z))
    return normalize(result)
