"""
Geometry helpers shared by the generation stages.

Curves are sampled the same way for contours and paths: a cubic
Catmull-Rom evaluated per control segment, with either centripetal
(chord-length^0.25) or uniform parameterisation. Polygon containment is
done on the XZ plane with shapely so large point batches stay vectorised.
"""

from typing import List, Sequence, Tuple, Union

import numpy as np
import shapely
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry

ArrayLike = Union[np.ndarray, Sequence]

UP = np.array([0.0, 1.0, 0.0])


def lerp(a, b, t):
    """Linear interpolation, works on scalars and arrays."""
    return a + (b - a) * t


def smoothstep(x, edge0: float, edge1: float):
    """Hermite smoothstep of ``x`` between ``edge0`` and ``edge1``, clamped."""
    if edge1 == edge0:
        return np.where(np.asarray(x) < edge0, 0.0, 1.0)
    t = np.clip((np.asarray(x, dtype=float) - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def smoothstep01(t):
    """Smoothstep on an already normalised parameter."""
    t = np.clip(np.asarray(t, dtype=float), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def normalize(v: np.ndarray, axis: int = -1) -> np.ndarray:
    """Normalise vectors along ``axis``; zero vectors stay zero."""
    v = np.asarray(v, dtype=float)
    length = np.linalg.norm(v, axis=axis, keepdims=True)
    return np.divide(v, length, out=np.zeros_like(v), where=length > 1e-12)


def catmull_rom_points(
    points: ArrayLike,
    divisions: int,
    closed: bool = False,
    curve_type: str = "centripetal",
    tension: float = 0.5,
) -> np.ndarray:
    """
    Sample a Catmull-Rom spline through ``points``.

    The curve parameter is spread evenly over control segments (not arc
    length), so ``divisions + 1`` samples are returned. For a closed curve
    the last sample equals the first.

    Args:
        points: Control points, shape (n, d)
        divisions: Number of parameter steps
        closed: Whether the curve wraps from the last point to the first
        curve_type: "centripetal" or "catmullrom" (uniform)
        tension: Tangent scale for the uniform variant

    Returns:
        Array of shape (divisions + 1, d)
    """
    pts = np.asarray(points, dtype=float)
    n = len(pts)
    if n < 2:
        raise ValueError("Catmull-Rom needs at least two control points")

    t = np.arange(divisions + 1, dtype=float) / divisions
    p = (n - (0 if closed else 1)) * t
    seg = np.floor(p).astype(int)
    weight = p - seg

    if closed:
        p0 = pts[(seg - 1) % n]
        p1 = pts[seg % n]
        p2 = pts[(seg + 1) % n]
        p3 = pts[(seg + 2) % n]
    else:
        at_end = (weight == 0) & (seg == n - 1)
        seg[at_end] = n - 2
        weight[at_end] = 1.0
        # Extrapolate a phantom point at each end of an open curve
        ext = np.vstack([2 * pts[0] - pts[1], pts, 2 * pts[-1] - pts[-2]])
        p0, p1, p2, p3 = ext[seg], ext[seg + 1], ext[seg + 2], ext[seg + 3]

    if curve_type == "centripetal":
        dt0 = np.sum((p1 - p0) ** 2, axis=1) ** 0.25
        dt1 = np.sum((p2 - p1) ** 2, axis=1) ** 0.25
        dt2 = np.sum((p3 - p2) ** 2, axis=1) ** 0.25
        dt1 = np.where(dt1 < 1e-4, 1.0, dt1)
        dt0 = np.where(dt0 < 1e-4, dt1, dt0)
        dt2 = np.where(dt2 < 1e-4, dt1, dt2)
        dt0, dt1, dt2 = dt0[:, None], dt1[:, None], dt2[:, None]
        t1 = ((p1 - p0) / dt0 - (p2 - p0) / (dt0 + dt1) + (p2 - p1) / dt1) * dt1
        t2 = ((p2 - p1) / dt1 - (p3 - p1) / (dt1 + dt2) + (p3 - p2) / dt2) * dt1
    elif curve_type == "catmullrom":
        t1 = tension * (p2 - p0)
        t2 = tension * (p3 - p1)
    else:
        raise ValueError(f"Unknown curve type: {curve_type}")

    w = weight[:, None]
    c2 = -3 * p1 + 3 * p2 - 2 * t1 - t2
    c3 = 2 * p1 - 2 * p2 + t1 + t2
    return p1 + t1 * w + c2 * w**2 + c3 * w**3


def sample_closed_curve(points: ArrayLike, count: int) -> np.ndarray:
    """Sample a closed centripetal curve at ``count`` distinct points."""
    return catmull_rom_points(points, count, closed=True)[:-1]


def drop_coincident(points: np.ndarray, closed: bool = True, eps: float = 1e-9) -> np.ndarray:
    """Remove points that coincide with their predecessor."""
    pts = np.asarray(points, dtype=float)
    if len(pts) < 2:
        return pts
    keep = np.ones(len(pts), dtype=bool)
    keep[1:] = np.sum(np.diff(pts, axis=0) ** 2, axis=1) > eps
    pts = pts[keep]
    if closed:
        while len(pts) > 1 and np.sum((pts[-1] - pts[0]) ** 2) <= eps:
            pts = pts[:-1]
    return pts


def make_polygon(xz: ArrayLike) -> BaseGeometry:
    """Build a shapely polygon from XZ vertices, repairing self intersections."""
    poly = Polygon(np.asarray(xz, dtype=float))
    if not poly.is_valid:
        poly = shapely.make_valid(poly)
    shapely.prepare(poly)
    return poly


def contains_xz(polygon: BaseGeometry, x, z) -> np.ndarray:
    """Vectorised point-in-polygon test on the XZ plane."""
    return shapely.contains_xy(polygon, np.asarray(x, dtype=float), np.asarray(z, dtype=float))


def quaternion_from_unit_vectors(v_from: np.ndarray, v_to: np.ndarray) -> np.ndarray:
    """Shortest-arc rotation taking ``v_from`` onto ``v_to``, as (x, y, z, w)."""
    r = float(np.dot(v_from, v_to)) + 1.0
    if r < 1e-8:
        r = 0.0
        if abs(v_from[0]) > abs(v_from[2]):
            q = np.array([-v_from[1], v_from[0], 0.0, r])
        else:
            q = np.array([0.0, -v_from[2], v_from[1], r])
    else:
        c = np.cross(v_from, v_to)
        q = np.array([c[0], c[1], c[2], r])
    return q / np.linalg.norm(q)


def quaternion_about_y(angle: float) -> np.ndarray:
    half = angle / 2.0
    return np.array([0.0, np.sin(half), 0.0, np.cos(half)])


def quaternion_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product ``a * b`` for (x, y, z, w) quaternions."""
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return np.array([
        ax * bw + aw * bx + ay * bz - az * by,
        ay * bw + aw * by + az * bx - ax * bz,
        az * bw + aw * bz + ax * by - ay * bx,
        aw * bw - ax * bx - ay * by - az * bz,
    ])


def rotate_vector(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector ``v`` by unit quaternion ``q``."""
    u = q[:3]
    w = q[3]
    t = 2.0 * np.cross(u, v)
    return v + w * t + np.cross(u, t)


def _cross_2d(a, b, c) -> float:
    return (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])


def triangulate_polygon(points_2d: ArrayLike) -> List[Tuple[int, int, int]]:
    """
    Ear-clipping triangulation of a simple polygon.

    Args:
        points_2d: Polygon vertices in order, shape (n, 2)

    Returns:
        List of vertex index triples
    """
    pts = np.asarray(points_2d, dtype=float)
    n = len(pts)
    if n < 3:
        return []

    area = 0.5 * np.sum(pts[:, 0] * np.roll(pts[:, 1], -1) - np.roll(pts[:, 0], -1) * pts[:, 1])
    ccw = area > 0

    indices = list(range(n))
    triangles: List[Tuple[int, int, int]] = []

    def is_ear(pos: int) -> bool:
        m = len(indices)
        a = pts[indices[(pos - 1) % m]]
        b = pts[indices[pos]]
        c = pts[indices[(pos + 1) % m]]
        cross = _cross_2d(a, b, c)
        if ccw and cross <= 1e-12:
            return False
        if not ccw and cross >= -1e-12:
            return False
        for j in range(m):
            if j in ((pos - 1) % m, pos, (pos + 1) % m):
                continue
            p = pts[indices[j]]
            d1 = _cross_2d(a, b, p)
            d2 = _cross_2d(b, c, p)
            d3 = _cross_2d(c, a, p)
            has_neg = d1 < -1e-12 or d2 < -1e-12 or d3 < -1e-12
            has_pos = d1 > 1e-12 or d2 > 1e-12 or d3 > 1e-12
            if not (has_neg and has_pos):
                return False
        return True

    max_iterations = n * n
    iteration = 0
    while len(indices) > 3 and iteration < max_iterations:
        m = len(indices)
        for i in range(m):
            if is_ear(i):
                triangles.append((indices[(i - 1) % m], indices[i], indices[(i + 1) % m]))
                indices.pop(i)
                break
        else:
            # No ear found: polygon is degenerate from here on
            break
        iteration += 1

    if len(indices) == 3:
        triangles.append((indices[0], indices[1], indices[2]))
    return triangles
