"""
Downward ray queries against a triangle mesh.

Triangles are bucketed on a uniform XZ grid once; a query only tests the
triangles in the cell under the ray. Faces with no footprint on the XZ plane
(vertical walls) can never be hit by a vertical ray and are not indexed.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import structlog

from .mesh import MeshData

logger = structlog.get_logger()

_EPS = 1e-12


@dataclass
class RayHit:
    point: np.ndarray
    normal: np.ndarray
    triangle: int


class TerrainRaycaster:
    """Answers "what is below (x, z)" for one mesh."""

    def __init__(self, mesh: MeshData, cell_size: Optional[float] = None):
        self.mesh = mesh
        positions = mesh.positions
        triangles = mesh.triangles

        a = positions[triangles[:, 0]]
        b = positions[triangles[:, 1]]
        c = positions[triangles[:, 2]]

        # Signed XZ area, used for barycentrics
        self._det = (b[:, 0] - a[:, 0]) * (c[:, 2] - a[:, 2]) - (c[:, 0] - a[:, 0]) * (b[:, 2] - a[:, 2])
        self._a, self._b, self._c = a, b, c

        normals = np.cross(b - a, c - a)
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        normals = np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > _EPS)
        # A ray from above always sees the upward side
        normals[normals[:, 1] < 0] *= -1
        self._normals = normals

        usable = np.nonzero(np.abs(self._det) > _EPS)[0]
        xs = np.stack([a[:, 0], b[:, 0], c[:, 0]], axis=1)
        zs = np.stack([a[:, 2], b[:, 2], c[:, 2]], axis=1)
        min_x, max_x = xs.min(axis=1), xs.max(axis=1)
        min_z, max_z = zs.min(axis=1), zs.max(axis=1)

        if cell_size is None:
            if len(usable):
                extent = np.maximum(max_x - min_x, max_z - min_z)[usable]
                cell_size = float(max(np.median(extent) * 4.0, 1e-3))
            else:
                cell_size = 1.0
        self.cell_size = cell_size

        self._grid: Dict[Tuple[int, int], List[int]] = {}
        i0 = np.floor(min_x / cell_size).astype(int)
        i1 = np.floor(max_x / cell_size).astype(int)
        k0 = np.floor(min_z / cell_size).astype(int)
        k1 = np.floor(max_z / cell_size).astype(int)
        for t in usable:
            for i in range(i0[t], i1[t] + 1):
                for k in range(k0[t], k1[t] + 1):
                    self._grid.setdefault((i, k), []).append(int(t))
        self._cells = {key: np.asarray(val, dtype=np.int64) for key, val in self._grid.items()}

        logger.debug(
            "Raycaster indexed", triangles=len(usable), cells=len(self._cells), cell_size=round(cell_size, 4)
        )

    def cast_down(self, x: float, z: float, origin_y: Optional[float] = None) -> Optional[RayHit]:
        """
        Cast a ray straight down at (x, z).

        Args:
            x: World X
            z: World Z
            origin_y: Ray start height; hits above it are ignored. None means
                the ray starts above everything.

        Returns:
            The nearest hit (highest surface point) or None on a miss
        """
        key = (int(np.floor(x / self.cell_size)), int(np.floor(z / self.cell_size)))
        candidates = self._cells.get(key)
        if candidates is None:
            return None

        a = self._a[candidates]
        b = self._b[candidates]
        c = self._c[candidates]
        det = self._det[candidates]

        # Barycentrics of (x, z) in each candidate's XZ projection
        w1 = ((x - a[:, 0]) * (c[:, 2] - a[:, 2]) - (c[:, 0] - a[:, 0]) * (z - a[:, 2])) / det
        w2 = ((b[:, 0] - a[:, 0]) * (z - a[:, 2]) - (x - a[:, 0]) * (b[:, 2] - a[:, 2])) / det
        w0 = 1.0 - w1 - w2
        tol = -1e-9
        inside = (w0 >= tol) & (w1 >= tol) & (w2 >= tol)
        if not inside.any():
            return None

        ys = w0 * a[:, 1] + w1 * b[:, 1] + w2 * c[:, 1]
        ys = np.where(inside, ys, -np.inf)
        if origin_y is not None:
            ys = np.where(ys <= origin_y, ys, -np.inf)
        best = int(np.argmax(ys))
        if not np.isfinite(ys[best]):
            return None

        tri = int(candidates[best])
        return RayHit(
            point=np.array([x, float(ys[best]), z]),
            normal=self._normals[tri].copy(),
            triangle=tri,
        )

    def height_at(self, x: float, z: float) -> Optional[float]:
        hit = self.cast_down(x, z)
        return None if hit is None else float(hit.point[1])
