from __future__ import annotations

import numpy as np


def as_vector(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64).reshape(3)
    if not np.all(np.isfinite(v)):
        raise ValueError("non-finite vector")
    return v


def normalize(v: np.ndarray) -> np.ndarray:
    """Unit vector(s) along the last axis. Raises on a (near) zero vector."""
    v = np.asarray(v, dtype=np.float64)
    n = np.linalg.norm(v, axis=-1, keepdims=True)
    if np.any(n < 1e-15):
        raise ValueError("cannot normalize a zero vector")
    return v / n


def axis_angle_matrix(axis: np.ndarray, angle: float) -> np.ndarray:
    """Rodrigues rotation matrix (active rotation of `angle` around `axis`)."""
    k = normalize(as_vector(axis))
    c, s = np.cos(angle), np.sin(angle)
    K = np.array([[0.0, -k[2], k[1]], [k[2], 0.0, -k[0]], [-k[1], k[0], 0.0]], dtype=np.float64)
    return np.eye(3) * c + (1.0 - c) * np.outer(k, k) + s * K


def closest_approach(
    o1: np.ndarray, d1: np.ndarray, o2: np.ndarray, d2: np.ndarray
) -> tuple[np.ndarray, float]:
    """
    Mid-point of the closest approach of two lines (o1 + t1 d1) and (o2 + t2 d2).
    Returns (midpoint, distance between the lines).
    """
    o1 = np.asarray(o1, dtype=np.float64)
    o2 = np.asarray(o2, dtype=np.float64)
    d1 = np.asarray(d1, dtype=np.float64)
    d2 = np.asarray(d2, dtype=np.float64)

    # Solve for closest points on skew lines.
    w0 = o1 - o2
    a = np.sum(d1 * d1, axis=-1)
    b = np.sum(d1 * d2, axis=-1)
    c = np.sum(d2 * d2, axis=-1)
    d = np.sum(d1 * w0, axis=-1)
    e = np.sum(d2 * w0, axis=-1)

    denom = a * c - b * b
    if abs(float(denom)) < 1e-12 * float(a * c):
        # Parallel lines: any point of line 1 works, use its origin.
        t1 = 0.0
        t2 = e / c
    else:
        t1 = (b * e - c * d) / denom
        t2 = (a * e - b * d) / denom

    p1 = o1 + t1 * d1
    p2 = o2 + t2 * d2
    return 0.5 * (p1 + p2), float(np.linalg.norm(p1 - p2))


def mean_plane_normal(directions: np.ndarray) -> np.ndarray:
    """
    Normal of the plane best containing a fan of directions (N,3).

    The normal is the right singular vector with the smallest singular value,
    oriented so that it follows d_0 x d_{N-1}.
    """
    dirs = normalize(np.asarray(directions, dtype=np.float64).reshape(-1, 3))
    if dirs.shape[0] < 2:
        raise ValueError("need at least two directions to define a plane")
    _u, _s, vt = np.linalg.svd(dirs, full_matrices=True)
    n = vt[2]
    ref = np.cross(dirs[0], dirs[-1])
    if float(np.dot(n, ref)) < 0.0:
        n = -n
    return n
