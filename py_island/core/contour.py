"""
Island contours from anchor rock placement.

Two rings of rocks are placed around the origin. The inner ring of large
rocks defines the cliff edge: a smooth curve through the rock bases gets
height noise, a wrap-around moving average and a second curve fit. The
outer ring of small rocks is pushed out from the inner ring along its
normals and defines the shoreline. Finally the foliage boundary is pulled
inwards from the terrain contour by a fixed band width.
"""

import math
from dataclasses import dataclass, field
from functools import cached_property
from typing import List, Optional, Sequence, Tuple

import numpy as np
import structlog

from ..config import IslandParameters
from ..utils.alea_prng import AleaPRNG
from .diagnostics import InsufficientInputError
from .mesh import Blueprint, MeshData, PlacedInstance
from .noise_synth import HeightNoise, generate_noise
from .raycast import TerrainRaycaster
from ..utils.geometry import (
    contains_xz,
    drop_coincident,
    lerp,
    make_polygon,
    normalize,
    quaternion_about_y,
    sample_closed_curve,
)

logger = structlog.get_logger()


@dataclass
class ContourOptions:
    """Constants of the anchor and contour construction."""

    small_rock_percentile: float = 0.4
    anchor_irregularity: float = 0.25
    offset_irregularity: float = 0.5
    density_base_rocks: float = 75.0
    density_base_radius: float = 20.0
    density_scale_power: float = 1.0
    surface_points: int = 128
    contour_resolution: int = 256
    shoreline_points: int = 128
    shoreline_resolution: int = 256
    min_foliage_fraction: float = 0.1  # of the contour distance, when the band swallows the island


class BoundaryCurve:
    """
    Closed curve of 3D points on the island.

    The closing segment from the last point back to the first is implicit,
    and consecutive points never coincide.
    """

    def __init__(self, points, name: str = "curve"):
        pts = drop_coincident(np.asarray(points, dtype=float).reshape(-1, 3), closed=True)
        if len(pts) < 3:
            raise InsufficientInputError(f"{name} needs at least 3 distinct points, got {len(pts)}")
        self.points = pts
        self.name = name

    def __len__(self) -> int:
        return len(self.points)

    @property
    def xz(self) -> np.ndarray:
        return self.points[:, [0, 2]]

    @cached_property
    def polygon(self):
        return make_polygon(self.xz)

    def contains(self, x, z):
        """Point-in-polygon on the XZ plane; scalars in, bool out, arrays in, arrays out."""
        result = contains_xz(self.polygon, x, z)
        return bool(result) if np.ndim(result) == 0 else result

    def closed_points(self) -> np.ndarray:
        """Points with the first repeated at the end, for drawing a loop."""
        return np.vstack([self.points, self.points[:1]])

    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_x, min_z, max_x, max_z)."""
        xz = self.xz
        return float(xz[:, 0].min()), float(xz[:, 1].min()), float(xz[:, 0].max()), float(xz[:, 1].max())

    def centroid_xz(self) -> np.ndarray:
        return self.xz.mean(axis=0)


@dataclass
class AnchorObject:
    """A rock placed on one of the two contour rings."""

    blueprint: Blueprint
    base_position: np.ndarray  # on y = 0, used for contours
    position: np.ndarray  # instance position, base resting on y = 0
    yaw: float
    scale_y: float
    ring: str  # "inner" or "outer"
    normal: np.ndarray
    angle: float

    def to_instance(self) -> PlacedInstance:
        return PlacedInstance(
            blueprint=self.blueprint,
            position=self.position.copy(),
            quaternion=quaternion_about_y(self.yaw),
            scale=np.array([1.0, self.scale_y, 1.0]),
        )

    def top_footprint(self) -> Tuple[np.ndarray, float]:
        """XZ corners of the yawed bounding box and the height of its top face."""
        bmin = self.blueprint.bbox_min
        bmax = self.blueprint.bbox_max
        local = np.array([
            [bmin[0], bmin[2]],
            [bmax[0], bmin[2]],
            [bmax[0], bmax[2]],
            [bmin[0], bmax[2]],
        ])
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        # Rotation about +Y maps (x, z) to (x·c + z·s, -x·s + z·c)
        world_x = self.position[0] + local[:, 0] * c + local[:, 1] * s
        world_z = self.position[2] - local[:, 0] * s + local[:, 1] * c
        top = self.position[1] + bmax[1] * self.scale_y
        return np.column_stack([world_x, world_z]), float(top)


@dataclass
class ContourResult:
    inner_anchors: List[AnchorObject]
    outer_anchors: List[AnchorObject]
    terrain_contour: BoundaryCurve
    shoreline: BoundaryCurve
    foliage_boundary: BoundaryCurve
    center: np.ndarray  # (x, y, z) of the island centroid
    max_surface_y: float = 0.0
    small_pool: List[Blueprint] = field(default_factory=list)
    large_pool: List[Blueprint] = field(default_factory=list)

    @property
    def anchors(self) -> List[AnchorObject]:
        return self.inner_anchors + self.outer_anchors


def partition_blueprints(
    blueprints: Sequence[Blueprint], percentile: float = 0.4
) -> Tuple[List[Blueprint], List[Blueprint]]:
    """
    Split blueprints into small and large pools by bounding-box volume.

    Args:
        blueprints: Available rock models
        percentile: Share of the sorted list that counts as small

    Returns:
        Tuple of (small, large); large falls back to small when empty
    """
    if not blueprints:
        raise InsufficientInputError("No rock blueprints available")

    ordered = sorted(blueprints, key=lambda b: b.volume)
    split = max(1, int(math.floor(len(ordered) * percentile)))
    if len(ordered) < 2:
        split = 1

    small = ordered[:split]
    large = ordered[split:]
    if not large:
        large = small
    return small, large


def anchor_count(radius: float, options: Optional[ContourOptions] = None) -> int:
    """Number of rocks on a ring of the given radius, never fewer than 3."""
    options = options or ContourOptions()
    power = options.density_scale_power
    coefficient = options.density_base_rocks / options.density_base_radius ** power
    # Round half up
    return max(3, int(math.floor(coefficient * radius ** power + 0.5)))


def moving_average_heights(points: np.ndarray, half_width: int) -> np.ndarray:
    """Average each point's y over a wrap-around window of ``2·half_width + 1``."""
    smoothed = np.array(points, dtype=float, copy=True)
    if half_width <= 0 or len(points) == 0:
        return smoothed
    n = len(points)
    offsets = np.arange(-half_width, half_width + 1)
    window = (np.arange(n)[:, None] + offsets[None, :]) % n
    smoothed[:, 1] = points[window, 1].mean(axis=1)
    return smoothed


def anchor_geometry_mesh(anchors: Sequence[AnchorObject]) -> MeshData:
    """Top faces of the anchors' bounding boxes, for downward ray queries."""
    positions = []
    triangles = []
    for i, anchor in enumerate(anchors):
        corners, top = anchor.top_footprint()
        for x, z in corners:
            positions.append((x, top, z))
        base = 4 * i
        triangles.append((base, base + 1, base + 2))
        triangles.append((base, base + 2, base + 3))
    return MeshData(
        positions=np.asarray(positions, dtype=float).reshape(-1, 3),
        triangles=np.asarray(triangles, dtype=np.int64).reshape(-1, 3),
    )


class ContourBuilder:
    """
    Places anchor rocks and derives the island boundary curves.

    All randomness comes from the PRNG handed in, and terrain heights from
    the shared height noise, so one seed reproduces the whole island.
    """

    def __init__(
        self,
        params: IslandParameters,
        prng: AleaPRNG,
        height_noise: HeightNoise,
        options: Optional[ContourOptions] = None,
    ):
        self.params = params
        self.prng = prng
        self.height_noise = height_noise
        self.options = options or ContourOptions()

    def surface_height(self, x, z):
        """Base terrain height before any blending toward the contour."""
        return self.params.contour_height + self.height_noise.sample_many(x, z) * self.params.noise_strength

    def build(self, blueprints: Sequence[Blueprint]) -> ContourResult:
        """
        Build anchors and the terrain, shoreline and foliage curves.

        Raises:
            InsufficientInputError: With no blueprints, or when a curve
                collapses below 3 distinct points
        """
        small, large = partition_blueprints(blueprints, self.options.small_rock_percentile)

        inner = self._place_inner_anchors(large)
        terrain_contour, smoothed = self._terrain_contour(inner)
        outer, outer_noise = self._place_outer_anchors(inner, small)
        shoreline = self._shoreline(inner, outer_noise)
        center, foliage_boundary = self._foliage_boundary(terrain_contour, smoothed)

        logger.info(
            "Contours built",
            inner_anchors=len(inner),
            outer_anchors=len(outer),
            contour_points=len(terrain_contour),
            shoreline_points=len(shoreline),
        )

        return ContourResult(
            inner_anchors=inner,
            outer_anchors=outer,
            terrain_contour=terrain_contour,
            shoreline=shoreline,
            foliage_boundary=foliage_boundary,
            center=center,
            max_surface_y=max(0.0, float(terrain_contour.points[:, 1].max())),
            small_pool=small,
            large_pool=large,
        )

    def _pool_cycle(self, pool: Sequence[Blueprint], count: int) -> List[Blueprint]:
        """Repeat the pool up to ``count`` entries, then shuffle."""
        return self.prng.shuffled([pool[i % len(pool)] for i in range(count)])

    def _make_anchor(self, blueprint: Blueprint, x: float, z: float, ring: str, normal, angle) -> AnchorObject:
        scale_y = self.params.rock_height_scale
        return AnchorObject(
            blueprint=blueprint,
            base_position=np.array([x, 0.0, z]),
            position=np.array([x, -blueprint.bbox_min[1] * scale_y, z]),
            yaw=-math.atan2(z, x) + math.pi / 2,
            scale_y=scale_y,
            ring=ring,
            normal=np.asarray(normal, dtype=float),
            angle=angle,
        )

    def _place_inner_anchors(self, large: Sequence[Blueprint]) -> List[AnchorObject]:
        radius = self.params.island_radius
        count = anchor_count(radius, self.options)
        models = self._pool_cycle(large, count)
        noise = generate_noise(count, self.prng.random(), prng=self.prng)

        anchors = []
        for i in range(count):
            angle = i / count * 2 * math.pi
            noisy_radius = radius * (1 + noise[i] * self.options.anchor_irregularity)
            x = math.cos(angle) * noisy_radius
            z = math.sin(angle) * noisy_radius
            normal = normalize(np.array([x, 0.0, z]))
            anchors.append(self._make_anchor(models[i], x, z, "inner", normal, angle))
        return anchors

    def _terrain_contour(self, inner: List[AnchorObject]) -> Tuple[BoundaryCurve, np.ndarray]:
        bases = np.array([a.base_position for a in inner])
        samples = sample_closed_curve(bases, self.options.surface_points)
        samples[:, 1] = self.surface_height(samples[:, 0], samples[:, 2])

        smoothed = moving_average_heights(samples, self.params.surface_smoothing)
        smoothed = drop_coincident(smoothed, closed=True)
        if len(smoothed) < 3:
            raise InsufficientInputError("Terrain contour collapsed")

        refit = sample_closed_curve(smoothed, self.options.contour_resolution)
        return BoundaryCurve(refit, name="terrain contour"), smoothed

    def _interpolate_inner(self, inner: List[AnchorObject], progress: float):
        """Position and normal of the inner ring at a fraction of the loop."""
        n = len(inner)
        index_float = progress * n
        i1 = int(math.floor(index_float))
        i2 = (i1 + 1) % n
        t = index_float - i1
        position = lerp(inner[i1].base_position, inner[i2].base_position, t)
        normal = normalize(lerp(inner[i1].normal, inner[i2].normal, t))
        return position, normal

    def _place_outer_anchors(
        self, inner: List[AnchorObject], small: Sequence[Blueprint]
    ) -> Tuple[List[AnchorObject], np.ndarray]:
        offset = self.params.shoreline_offset
        count = anchor_count(self.params.outer_radius, self.options)
        models = self._pool_cycle(small, count)
        noise = generate_noise(count, self.prng.random() + math.pi, prng=self.prng)

        anchors = []
        for i in range(count):
            base, normal = self._interpolate_inner(inner, i / count)
            push = offset * (1 + noise[i] * self.options.offset_irregularity)
            final = base + normal * push
            angle = math.atan2(final[2], final[0])
            anchors.append(self._make_anchor(models[i], final[0], final[2], "outer", normal, angle))
        return anchors, noise

    def _shoreline(self, inner: List[AnchorObject], outer_noise: np.ndarray) -> BoundaryCurve:
        offset = self.params.shoreline_offset
        floor_height = self.params.shoreline_height
        raycaster = TerrainRaycaster(anchor_geometry_mesh(inner))

        n_noise = len(outer_noise)
        count = self.options.shoreline_points
        points = np.zeros((count, 3))
        for i in range(count):
            progress = i / count
            base, normal = self._interpolate_inner(inner, progress)

            noise_float = progress * n_noise
            n1 = int(math.floor(noise_float))
            n2 = (n1 + 1) % n_noise
            noise = lerp(outer_noise[n1], outer_noise[n2], noise_float - n1)

            final = base + normal * offset * (1 + noise * self.options.offset_irregularity)
            hit = raycaster.cast_down(final[0], final[2])
            final[1] = floor_height if hit is None else max(float(hit.point[1]), floor_height)
            points[i] = final

        points = drop_coincident(points, closed=True)
        if len(points) < 3:
            raise InsufficientInputError("Shoreline collapsed")
        return BoundaryCurve(sample_closed_curve(points, self.options.shoreline_resolution), name="shoreline")

    def _foliage_boundary(
        self, terrain_contour: BoundaryCurve, smoothed: np.ndarray
    ) -> Tuple[np.ndarray, BoundaryCurve]:
        center_xz = smoothed[:, [0, 2]].mean(axis=0)
        center_y = float(self.surface_height(center_xz[0], center_xz[1]))
        center = np.array([center_xz[0], center_y, center_xz[1]])

        pts = terrain_contour.points
        direction = pts[:, [0, 2]] - center_xz
        original = np.linalg.norm(direction, axis=1)
        pulled = np.maximum(0.0, original - self.params.foliage_band_width)
        unit = normalize(direction)

        # A band as wide as the island leaves little more than the centroid;
        # shrink the contour instead so later stages still get a polygon.
        fraction = self.options.min_foliage_fraction
        pulled_area = make_polygon(unit * pulled[:, None]).area
        if pulled_area < fraction * fraction * make_polygon(direction).area:
            logger.warning(
                "Foliage boundary collapsed",
                band_width=self.params.foliage_band_width,
                fallback_fraction=fraction,
            )
            pulled = original * fraction

        new_xz = center_xz + unit * pulled[:, None]
        factor = np.where(original > 1e-4, pulled / np.where(original > 1e-4, original, 1.0), 0.0)
        new_y = lerp(center_y, pts[:, 1], factor)

        boundary = np.column_stack([new_xz[:, 0], new_y, new_xz[:, 1]])
        return center, BoundaryCurve(boundary, name="foliage boundary")
