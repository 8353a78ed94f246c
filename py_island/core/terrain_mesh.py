"""
Terrain mesh construction.

The grass surface is a radial grid: one center vertex, then rings of
vertices that move from the center to the foliage boundary on an eased
radial parameter. Near the center the height follows the noise field, near
the edge it follows the boundary curve. A ground-cover skirt joins the
terrain contour to the grass surface and drops a wall down to sea level.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import structlog

from ..config import IslandParameters, settings
from .contour import BoundaryCurve, ContourResult
from .mesh import TEXTURE_SCALE, MaterialRole, MeshData, MeshGroup, merge_meshes
from .noise_synth import HeightNoise
from ..utils.geometry import contains_xz, lerp, make_polygon, sample_closed_curve

logger = structlog.get_logger()


@dataclass
class TerrainOptions:
    """Mesh resolution knobs; defaults come from the environment settings."""

    num_rings: int = field(default_factory=lambda: settings.terrain_rings)
    boundary_resolution: int = field(default_factory=lambda: settings.boundary_resolution)
    skirt_rings: int = field(default_factory=lambda: settings.skirt_rings)
    texture_scale: float = TEXTURE_SCALE


def ring_lerp(t):
    """Ease-out radial parameter: ``1 - (1 - t)^2``."""
    return 1.0 - (1.0 - t) ** 2


def blend_height(noise_height, center_y, edge_y, radial):
    """
    Height law shared by the mesh and every analytic height query.

    ``radial`` is the eased fraction from the center to the boundary. The
    noise height fades out as ``radial^2`` in favour of a straight lerp
    between the center and the boundary height.
    """
    contour_y = lerp(center_y, edge_y, radial)
    return lerp(noise_height, contour_y, radial ** 2)


def _signed_area_xz(points: np.ndarray) -> float:
    x = points[:, 0]
    z = points[:, 2]
    return 0.5 * float(np.sum(x * np.roll(z, -1) - np.roll(x, -1) * z))


class TerrainHeightProfile:
    """
    Pre-carve terrain height at arbitrary (x, z).

    The boundary point for a query is found by interpolating the central
    contour by angle around the center. Evaluated at a grid vertex this gives
    exactly the height the mesh builder assigned to it.
    """

    def __init__(
        self,
        center: np.ndarray,
        contour: np.ndarray,
        params: IslandParameters,
        height_noise: HeightNoise,
    ):
        self.center = np.asarray(center, dtype=float)
        self.contour = np.asarray(contour, dtype=float)
        self.params = params
        self.height_noise = height_noise

        offsets = self.contour[:, [0, 2]] - self.center[[0, 2]]
        angles = np.arctan2(offsets[:, 1], offsets[:, 0])
        order = np.argsort(angles)
        self._angles = angles[order]
        self._edge = self.contour[order]

    def noise_height(self, x, z):
        return self.params.contour_height + self.height_noise.sample_many(x, z) * self.params.noise_strength

    def edge_point(self, angle):
        """Boundary point(s) in the direction ``angle`` from the center."""
        angle = np.asarray(angle, dtype=float)
        period = 2 * math.pi
        return np.stack(
            [np.interp(angle, self._angles, self._edge[:, k], period=period) for k in range(3)],
            axis=-1,
        )

    def height_at(self, x, z):
        """Blended terrain height before any carving; scalar or vectorised."""
        x = np.asarray(x, dtype=float)
        z = np.asarray(z, dtype=float)
        dx = x - self.center[0]
        dz = z - self.center[2]
        edge = self.edge_point(np.arctan2(dz, dx))

        dist = np.hypot(dx, dz)
        dist_edge = np.hypot(edge[..., 0] - self.center[0], edge[..., 2] - self.center[2])
        safe_edge = np.where(dist_edge < 1e-3, 1.0, dist_edge)
        radial = np.minimum(dist / safe_edge, 1.0)

        heights = blend_height(self.noise_height(x, z), self.center[1], edge[..., 1], radial)
        heights = np.where(dist_edge < 1e-3, edge[..., 1], heights)
        return float(heights) if heights.ndim == 0 else heights


@dataclass
class SurfaceGrid:
    """
    The radial grass surface before assembly.

    Vertex 0 is the center, followed by ``num_rings × num_segments`` ring
    vertices (ring-major) and ``num_segments`` boundary vertices. The Y
    column of ``positions`` is the height field mutated by carving.
    """

    positions: np.ndarray
    triangles: np.ndarray
    num_rings: int
    num_segments: int
    contour: np.ndarray
    center: np.ndarray

    def __post_init__(self):
        self.pre_carve_heights = self.positions[:, 1].copy()

    @property
    def heights(self) -> np.ndarray:
        return self.positions[:, 1]

    @property
    def contour_start(self) -> int:
        return 1 + self.num_rings * self.num_segments

    def ring_vertex(self, ring: int, segment: int) -> int:
        return 1 + ring * self.num_segments + segment % self.num_segments


class TerrainMeshBuilder:
    """Builds the grass surface, the ground-cover skirt and the final mesh."""

    def __init__(
        self,
        params: IslandParameters,
        height_noise: HeightNoise,
        options: Optional[TerrainOptions] = None,
    ):
        self.params = params
        self.height_noise = height_noise
        self.options = options or TerrainOptions()

    def central_contour(self, contours: ContourResult) -> np.ndarray:
        return sample_closed_curve(contours.foliage_boundary.points, self.options.boundary_resolution)

    def height_profile(self, contours: ContourResult) -> TerrainHeightProfile:
        return TerrainHeightProfile(
            contours.center, self.central_contour(contours), self.params, self.height_noise
        )

    def build_surface(self, contours: ContourResult) -> SurfaceGrid:
        """
        Build the radial surface grid.

        Args:
            contours: Result of the contour stage

        Returns:
            SurfaceGrid with heights from :func:`blend_height`
        """
        center = np.asarray(contours.center, dtype=float)
        edge = self.central_contour(contours)
        num_rings = self.options.num_rings
        num_segments = len(edge)

        t = (np.arange(num_rings, dtype=float) + 1.0) / (num_rings + 1.0)
        radial = ring_lerp(t)[:, None]  # (R, 1)

        ring_x = lerp(center[0], edge[None, :, 0], radial)
        ring_z = lerp(center[2], edge[None, :, 2], radial)
        noise_h = self.params.contour_height + self.height_noise.sample_many(ring_x, ring_z) * self.params.noise_strength
        ring_y = blend_height(noise_h, center[1], edge[None, :, 1], radial)

        ring_positions = np.stack([ring_x, ring_y, ring_z], axis=-1).reshape(-1, 3)
        positions = np.vstack([center[None, :], ring_positions, edge])

        triangles = self._surface_triangles(num_rings, num_segments)
        if _signed_area_xz(edge) < 0:
            # Clockwise in XZ means the raw winding faces down
            triangles = triangles[:, [0, 2, 1]]

        logger.info("Surface grid built", vertices=len(positions), triangles=len(triangles), rings=num_rings)
        return SurfaceGrid(
            positions=positions,
            triangles=triangles,
            num_rings=num_rings,
            num_segments=num_segments,
            contour=edge,
            center=center,
        )

    @staticmethod
    def _surface_triangles(num_rings: int, num_segments: int) -> np.ndarray:
        s = np.arange(num_segments)
        s_next = (s + 1) % num_segments

        def ring(r, seg):
            return 1 + r * num_segments + seg

        parts = [np.column_stack([np.zeros(num_segments, dtype=np.int64), ring(0, s_next), ring(0, s)])]

        r = np.arange(num_rings - 1)[:, None]
        a = ring(r, s)
        b = ring(r, s_next)
        c = ring(r + 1, s_next)
        d = ring(r + 1, s)
        parts.append(np.stack([a, b, c], axis=-1).reshape(-1, 3))
        parts.append(np.stack([a, c, d], axis=-1).reshape(-1, 3))

        contour_start = 1 + num_rings * num_segments
        last = num_rings - 1
        parts.append(np.column_stack([ring(last, s), ring(last, s_next), contour_start + s_next]))
        parts.append(np.column_stack([ring(last, s), contour_start + s_next, contour_start + s]))
        return np.vstack(parts).astype(np.int64)

    def build_skirt(self, contours: ContourResult) -> MeshData:
        """Ground-cover band from the terrain contour to the grass edge, plus a wall to y = 0."""
        resolution = self.options.boundary_resolution
        outer = sample_closed_curve(contours.terrain_contour.points, resolution)
        inner = self.central_contour(contours)
        num_rings = self.options.skirt_rings
        num_segments = len(inner)

        fractions = (np.arange(num_rings + 1, dtype=float) / num_rings)[:, None, None]
        grid = lerp(outer[None, :, :], inner[None, :, :], fractions).reshape(-1, 3)
        bottom = outer.copy()
        bottom[:, 1] = 0.0
        positions = np.vstack([grid, bottom])

        s = np.arange(num_segments)
        s_next = (s + 1) % num_segments
        r = np.arange(num_rings)[:, None]
        tl = r * num_segments + s
        tr = r * num_segments + s_next
        bl = (r + 1) * num_segments + s
        br = (r + 1) * num_segments + s_next
        band = np.vstack([
            np.stack([tl, bl, br], axis=-1).reshape(-1, 3),
            np.stack([tl, br, tr], axis=-1).reshape(-1, 3),
        ])

        bottom_start = (num_rings + 1) * num_segments
        wall = np.vstack([
            np.column_stack([s, s_next, bottom_start + s_next]),
            np.column_stack([s, bottom_start + s_next, bottom_start + s]),
        ])
        if _signed_area_xz(inner) < 0:
            band = band[:, [0, 2, 1]]
            wall = wall[:, [0, 2, 1]]

        triangles = np.vstack([band, wall]).astype(np.int64)
        return MeshData(
            positions=positions,
            triangles=triangles,
            groups=[MeshGroup(MaterialRole.GROUND_COVER, 0, len(triangles))],
        )

    def assemble(
        self,
        surface: SurfaceGrid,
        skirt: MeshData,
        mud_contours: Sequence[np.ndarray] = (),
    ) -> MeshData:
        """
        Merge skirt and surface into one grouped mesh.

        Surface triangles whose centroid falls inside any mud contour go to
        the mud group, the rest to grass. UVs, normals and tangents are
        computed last, on final positions.

        Args:
            surface: Carved and relaxed surface grid
            skirt: Ground-cover mesh from :meth:`build_skirt`
            mud_contours: XZ polygons of contoured mud puddles

        Returns:
            MeshData with ground_cover, grass and mud groups in that order
        """
        tris = surface.triangles
        is_mud = np.zeros(len(tris), dtype=bool)
        if len(mud_contours):
            centroids = surface.positions[tris].mean(axis=1)
            for contour in mud_contours:
                polygon = make_polygon(contour)
                is_mud |= contains_xz(polygon, centroids[:, 0], centroids[:, 2])

        grass = tris[~is_mud]
        mud = tris[is_mud]
        surface_mesh = MeshData(
            positions=surface.positions,
            triangles=np.vstack([grass, mud]),
            groups=[
                MeshGroup(MaterialRole.GRASS, 0, len(grass)),
                MeshGroup(MaterialRole.MUD, len(grass), len(mud)),
            ],
        )

        mesh = merge_meshes([skirt, surface_mesh])
        mesh.compute_planar_uvs(self.options.texture_scale)
        mesh.compute_vertex_normals()
        mesh.compute_tangents()

        logger.info(
            "Terrain mesh assembled",
            vertices=mesh.vertex_count,
            ground_cover=skirt.triangle_count,
            grass=len(grass),
            mud=len(mud),
        )
        return mesh
