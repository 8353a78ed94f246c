"""Incremental Delaunay triangulation (Bowyer-Watson) on the XZ plane."""

from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
import structlog

logger = structlog.get_logger()

Circle = Tuple[float, float, float]  # center x, center z, squared radius


def circumcircle(a, b, c) -> Optional[Circle]:
    """
    Circumcircle of triangle (a, b, c) given as 2D points.

    Returns:
        (ux, uz, radius_sq), or None for collinear points
    """
    ax, az = a
    bx, bz = b
    cx, cz = c
    d = 2.0 * (ax * (bz - cz) + bx * (cz - az) + cx * (az - bz))
    if d == 0.0:
        return None
    a2 = ax * ax + az * az
    b2 = bx * bx + bz * bz
    c2 = cx * cx + cz * cz
    ux = (a2 * (bz - cz) + b2 * (cz - az) + c2 * (az - bz)) / d
    uz = (a2 * (cx - bx) + b2 * (ax - cx) + c2 * (bx - ax)) / d
    return ux, uz, (ax - ux) ** 2 + (az - uz) ** 2


@dataclass
class Triangulation:
    triangles: np.ndarray  # (T, 3) indices into the input points
    skipped: List[int] = field(default_factory=list)  # points that found no bad triangle

    def edges(self) -> List[Tuple[int, int]]:
        """Unique undirected edges as (low, high), in first-seen order."""
        seen = set()
        result = []
        for tri in self.triangles:
            for u, v in ((tri[0], tri[1]), (tri[1], tri[2]), (tri[2], tri[0])):
                key = (int(min(u, v)), int(max(u, v)))
                if key not in seen:
                    seen.add(key)
                    result.append(key)
        return result


def triangulate(points) -> Triangulation:
    """
    Bowyer-Watson triangulation of 2D points.

    The points are enclosed in a super-triangle twenty times the extent of
    their bounding box. Each point removes every triangle whose circumcircle
    strictly contains it and fans the boundary of the hole to itself.
    Triangles that still use a super-triangle vertex are dropped at the end.

    Args:
        points: Array-like of shape (n, 2)

    Returns:
        Triangulation with index triples into ``points``
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 2)
    n = len(pts)
    if n < 3:
        return Triangulation(np.zeros((0, 3), dtype=np.int64))

    min_x, min_z = pts.min(axis=0)
    max_x, max_z = pts.max(axis=0)
    dx = max_x - min_x
    dz = max_z - min_z
    delta = max(dx, dz)
    mid_x = min_x + dx * 0.5
    mid_z = min_z + dz * 0.5

    # Super-triangle vertices get indices n, n+1, n+2
    vertices = np.vstack([
        pts,
        [[mid_x - 20 * delta, mid_z - delta],
         [mid_x, mid_z + 20 * delta],
         [mid_x + 20 * delta, mid_z - delta]],
    ])

    triangles: List[Tuple[int, int, int]] = [(n, n + 1, n + 2)]
    circles = {triangles[0]: circumcircle(vertices[n], vertices[n + 1], vertices[n + 2])}
    skipped: List[int] = []

    for i in range(n):
        px, pz = vertices[i]
        bad = []
        for tri in triangles:
            circle = circles[tri]
            if circle is None:
                continue
            ux, uz, r2 = circle
            if (px - ux) ** 2 + (pz - uz) ** 2 < r2:
                bad.append(tri)

        if not bad:
            skipped.append(i)
            continue

        edge_count = Counter()
        for a, b, c in bad:
            for u, v in ((a, b), (b, c), (c, a)):
                edge_count[frozenset((u, v))] += 1

        bad_set = set(bad)
        triangles = [t for t in triangles if t not in bad_set]
        for t in bad:
            del circles[t]

        for a, b, c in bad:
            for u, v in ((a, b), (b, c), (c, a)):
                if edge_count[frozenset((u, v))] == 1:
                    new = (u, v, i)
                    triangles.append(new)
                    circles[new] = circumcircle(vertices[u], vertices[v], vertices[i])

    kept = [t for t in triangles if max(t) < n]
    if skipped:
        logger.debug("Delaunay skipped points", count=len(skipped))
    return Triangulation(
        triangles=np.asarray(kept, dtype=np.int64).reshape(-1, 3),
        skipped=skipped,
    )
