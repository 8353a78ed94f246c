"""
Lakes and mud puddles carved into the grass surface.

Features go through three states. A user request creates a feature with no
center (REQUESTED). Placement gives it a center (CENTERED), and contouring
adds its rim polygon and rim height (CONTOURED). Regenerating the terrain
drops a feature back to CENTERED, so it keeps its position while its rim is
recomputed on the new terrain.

Carving clamps the height field below each feature's target profile.
Relaxation then smooths a masked neighbourhood of the depressions in three
stages: Laplacian smoothing, a pull toward the ideal profile, and a lighter
Laplacian polish.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.sparse as sp
import structlog

from ..utils.alea_prng import AleaPRNG
from .contour import BoundaryCurve
from .diagnostics import DiagnosticKind, Diagnostics
from .mesh import MaterialRole, MeshData, MeshGroup
from .noise_synth import Harmonic, evaluate_harmonics, generate_noise
from .terrain_mesh import SurfaceGrid, TerrainHeightProfile
from ..utils.geometry import smoothstep, smoothstep01, triangulate_polygon

logger = structlog.get_logger()

PLACEMENT_ATTEMPTS = 200
FEATURE_SPACING = 2.0
LAKE_CONTOUR_POINTS = 32
PUDDLE_CONTOUR_POINTS = 200
WATER_LEVEL_FRACTION = 0.2
WATER_SURFACE_OFFSET = -0.40
WATER_EXPAND_FACTOR = 1.10

PUDDLE_HARMONICS: Tuple[Harmonic, ...] = (Harmonic(6, 1.0),)


class FeatureState(str, Enum):
    REQUESTED = "requested"
    CENTERED = "centered"
    CONTOURED = "contoured"


@dataclass(frozen=True)
class Lake:
    id: int
    base_radius: float
    depth: float = 1.0
    irregularity: float = 0.4
    state: FeatureState = FeatureState.REQUESTED
    center: Optional[Tuple[float, float]] = None
    contour: Optional[np.ndarray] = field(default=None, compare=False)
    rim_height: Optional[float] = None
    water_level: Optional[float] = None

    kind = "lake"
    # Worst-case outward reach of the rim, used to keep the feature off the edge
    placement_irregularity = 0.4

    @property
    def influence_radius(self) -> float:
        return self.base_radius * (1.0 + self.irregularity)

    def influence(self, x, z) -> np.ndarray:
        """``1 - smoothstep(d, 0, r_max)``, zero at and beyond the influence radius."""
        d = np.hypot(np.asarray(x) - self.center[0], np.asarray(z) - self.center[1])
        return 1.0 - smoothstep(d, 0.0, self.influence_radius)

    def within(self, x, z) -> np.ndarray:
        d = np.hypot(np.asarray(x) - self.center[0], np.asarray(z) - self.center[1])
        return d < self.influence_radius


@dataclass(frozen=True)
class MudPuddle:
    id: int
    base_radius: float
    depth: float = 0.5
    irregularity: float = 0.15
    harmonics: Tuple[Harmonic, ...] = PUDDLE_HARMONICS
    phase_offset: float = 0.0
    state: FeatureState = FeatureState.REQUESTED
    center: Optional[Tuple[float, float]] = None
    contour: Optional[np.ndarray] = field(default=None, compare=False)
    rim_height: Optional[float] = None

    kind = "mud_puddle"
    placement_irregularity = 0.5

    def boundary_radius(self, angle) -> np.ndarray:
        """Noisy rim radius in direction ``angle`` from the center."""
        shape = evaluate_harmonics(angle, self.harmonics, self.phase_offset)
        return self.base_radius * (1.0 + shape * self.irregularity)

    def _polar(self, x, z):
        dx = np.asarray(x, dtype=float) - self.center[0]
        dz = np.asarray(z, dtype=float) - self.center[1]
        return np.hypot(dx, dz), np.arctan2(dz, dx)

    def influence(self, x, z, scale: float = 1.0) -> np.ndarray:
        """Smoothstep complement of the radial fraction inside the noisy rim."""
        dist, angle = self._polar(x, z)
        radius = self.boundary_radius(angle) * scale
        inside = dist < radius
        frac = np.where(inside, dist / np.where(radius > 0, radius, 1.0), 1.0)
        return np.where(inside, 1.0 - smoothstep01(frac), 0.0)

    def within(self, x, z) -> np.ndarray:
        dist, angle = self._polar(x, z)
        return dist < self.boundary_radius(angle)


WaterFeature = Union[Lake, MudPuddle]


# State transitions. Each returns a new record and leaves its input untouched.

def with_center(feature: WaterFeature, center: Tuple[float, float]) -> WaterFeature:
    if feature.state != FeatureState.REQUESTED:
        raise ValueError(f"Feature {feature.id} is already placed")
    return replace(feature, center=(float(center[0]), float(center[1])), state=FeatureState.CENTERED)


def with_contour(feature: WaterFeature, contour: np.ndarray, rim_height: float) -> WaterFeature:
    if feature.state != FeatureState.CENTERED:
        raise ValueError(f"Feature {feature.id} must be centered before contouring")
    if isinstance(feature, Lake):
        return replace(
            feature,
            contour=contour,
            rim_height=rim_height,
            water_level=rim_height - feature.depth * WATER_LEVEL_FRACTION,
            state=FeatureState.CONTOURED,
        )
    return replace(feature, contour=contour, rim_height=rim_height, state=FeatureState.CONTOURED)


def invalidate(feature: WaterFeature) -> WaterFeature:
    """Drop the terrain-dependent fields but keep the center."""
    if feature.state != FeatureState.CONTOURED:
        return feature
    if isinstance(feature, Lake):
        return replace(feature, contour=None, rim_height=None, water_level=None, state=FeatureState.CENTERED)
    return replace(feature, contour=None, rim_height=None, state=FeatureState.CENTERED)


def lakes_of(features: Sequence[WaterFeature]) -> List[Lake]:
    return [f for f in features if isinstance(f, Lake)]


def puddles_of(features: Sequence[WaterFeature]) -> List[MudPuddle]:
    return [f for f in features if isinstance(f, MudPuddle)]


@dataclass
class RelaxationOptions:
    """Pass counts and blend strengths of the three relaxation stages."""

    mask_threshold: float = 0.001
    mud_mask_scale: float = 1.25
    dilation_passes: int = 3
    puddle_dilation_passes: int = 6

    stage1_iterations: int = 8
    puddle_stage1_iterations: int = 16
    stage1_strength: float = 0.6
    stage1_taper: float = 0.5
    stage1_max_blend: float = 0.95

    stage2_strength: float = 0.85
    stage2_max_blend: float = 0.98

    stage3_iterations: int = 6
    puddle_stage3_iterations: int = 12
    stage3_strength: float = 0.45
    stage3_floor: float = 0.6
    stage3_max_blend: float = 0.9


def vertex_adjacency(triangles: np.ndarray, n_vertices: int) -> sp.csr_matrix:
    """Symmetric 0/1 vertex adjacency from a triangle index buffer."""
    a, b, c = triangles[:, 0], triangles[:, 1], triangles[:, 2]
    rows = np.concatenate([a, b, b, c, c, a])
    cols = np.concatenate([b, a, c, b, a, c])
    adjacency = sp.csr_matrix(
        (np.ones(len(rows), dtype=np.float64), (rows, cols)), shape=(n_vertices, n_vertices)
    )
    adjacency.sum_duplicates()
    adjacency.data[:] = 1.0
    return adjacency


class DepressionCarver:
    """
    Places, contours and carves water features into a surface grid.

    Args:
        prng: Random source for placement and lake rim noise
        options: Relaxation constants
    """

    def __init__(self, prng: AleaPRNG, options: Optional[RelaxationOptions] = None):
        self.prng = prng
        self.options = options or RelaxationOptions()

    def place_features(
        self,
        features: Sequence[WaterFeature],
        boundary: BoundaryCurve,
        diagnostics: Diagnostics,
    ) -> List[WaterFeature]:
        """
        Give every REQUESTED feature a center inside ``boundary``.

        Candidates are drawn from the boundary's bounding box shrunk by the
        feature's worst-case reach, and must keep clear of every feature
        placed so far. Features that cannot be placed stay REQUESTED.
        """
        placed = list(features)
        min_x, min_z, max_x, max_z = boundary.bounds()

        for idx, feature in enumerate(placed):
            if feature.state != FeatureState.REQUESTED:
                continue

            margin = feature.base_radius * (1.0 + feature.placement_irregularity)
            lo_x, hi_x = min_x + margin, max_x - margin
            lo_z, hi_z = min_z + margin, max_z - margin
            if lo_x > hi_x or lo_z > hi_z:
                diagnostics.add(
                    DiagnosticKind.PLACEMENT_FAILURE,
                    "depressions",
                    f"Cannot place {feature.kind} {feature.id}: placement area is too small for its radius",
                    feature_id=feature.id,
                    radius=feature.base_radius,
                )
                continue

            center = None
            for _ in range(PLACEMENT_ATTEMPTS):
                x = self.prng.uniform(lo_x, hi_x)
                z = self.prng.uniform(lo_z, hi_z)
                if not boundary.contains(x, z):
                    continue
                if any(
                    other.center is not None
                    and other.id != feature.id
                    and math.hypot(x - other.center[0], z - other.center[1])
                    < other.base_radius + feature.base_radius + FEATURE_SPACING
                    for other in placed
                ):
                    continue
                center = (x, z)
                break

            if center is None:
                diagnostics.add(
                    DiagnosticKind.PLACEMENT_FAILURE,
                    "depressions",
                    f"Could not place {feature.kind} {feature.id} with radius {feature.base_radius}",
                    feature_id=feature.id,
                    attempts=PLACEMENT_ATTEMPTS,
                )
                continue

            placed[idx] = with_center(feature, center)
            logger.debug("Feature placed", kind=feature.kind, feature_id=feature.id, center=center)

        return placed

    def feature_contour(self, feature: WaterFeature) -> np.ndarray:
        """Closed XZ rim polygon around a centered feature."""
        cx, cz = feature.center
        if isinstance(feature, Lake):
            n = LAKE_CONTOUR_POINTS
            angles = np.arange(n) / n * 2 * math.pi
            noise = generate_noise(n, self.prng.random(), prng=self.prng)
            radii = feature.base_radius * (1.0 + noise * feature.irregularity)
        else:
            n = PUDDLE_CONTOUR_POINTS
            angles = np.arange(n) / n * 2 * math.pi
            radii = feature.boundary_radius(angles)
        return np.column_stack([cx + np.cos(angles) * radii, cz + np.sin(angles) * radii])

    def contour_features(
        self, features: Sequence[WaterFeature], profile: TerrainHeightProfile
    ) -> List[WaterFeature]:
        """Contour every CENTERED feature and resolve its rim height on the pre-carve terrain."""
        result = []
        for feature in features:
            if feature.state != FeatureState.CENTERED:
                result.append(feature)
                continue
            contour = self.feature_contour(feature)
            rim = float(np.mean(profile.height_at(contour[:, 0], contour[:, 1])))
            contoured = with_contour(feature, contour, rim)
            logger.info(
                "Feature contoured",
                kind=feature.kind,
                feature_id=feature.id,
                rim_height=round(rim, 3),
                water_level=getattr(contoured, "water_level", None),
            )
            result.append(contoured)
        return result

    @staticmethod
    def carve_ceiling(features: Sequence[WaterFeature], x: np.ndarray, z: np.ndarray) -> np.ndarray:
        """Lowest target height over all contoured features; +inf where none reaches."""
        ceiling = np.full(np.shape(x), np.inf)
        for feature in features:
            if feature.state != FeatureState.CONTOURED:
                continue
            inside = feature.within(x, z)
            target = feature.rim_height - feature.depth * feature.influence(x, z)
            ceiling = np.where(inside, np.minimum(ceiling, target), ceiling)
        return ceiling

    def carve(self, surface: SurfaceGrid, features: Sequence[WaterFeature]) -> int:
        """
        Clamp surface heights below each feature's depression profile.

        Returns:
            Number of vertices lowered
        """
        positions = surface.positions
        ceiling = self.carve_ceiling(features, positions[:, 0], positions[:, 2])
        lowered = ceiling < positions[:, 1]
        positions[:, 1] = np.minimum(positions[:, 1], ceiling)
        return int(lowered.sum())

    def influence(self, features: Sequence[WaterFeature], x, z, mud_scale: float = 1.0) -> np.ndarray:
        """Max influence over contoured features; ``mud_scale`` widens puddles."""
        result = np.zeros(np.shape(x))
        for feature in features:
            if feature.state != FeatureState.CONTOURED:
                continue
            if isinstance(feature, MudPuddle):
                value = feature.influence(x, z, scale=mud_scale)
            else:
                value = feature.influence(x, z)
            result = np.maximum(result, value)
        return result

    def relax(self, surface: SurfaceGrid, features: Sequence[WaterFeature]) -> np.ndarray:
        """
        Smooth the carved neighbourhood of the features.

        Only masked vertices change, and each blend is proportional to the
        vertex's own influence, so vertices no feature reaches keep their
        height exactly.

        Returns:
            Boolean mask of the vertices that were eligible for relaxation
        """
        opts = self.options
        contoured = [f for f in features if f.state == FeatureState.CONTOURED]
        n = len(surface.positions)
        if not contoured:
            return np.zeros(n, dtype=bool)

        has_puddles = any(isinstance(f, MudPuddle) for f in contoured)
        x = surface.positions[:, 0]
        z = surface.positions[:, 2]
        heights = surface.positions[:, 1].copy()

        adjacency = vertex_adjacency(surface.triangles, n)
        degree = np.asarray(adjacency.sum(axis=1)).ravel()
        has_neighbours = degree > 0
        safe_degree = np.where(has_neighbours, degree, 1.0)

        influence = self.influence(contoured, x, z)
        mask_influence = self.influence(contoured, x, z, mud_scale=opts.mud_mask_scale)
        mask = (influence > opts.mask_threshold) | (mask_influence > opts.mask_threshold)

        passes = opts.puddle_dilation_passes if has_puddles else opts.dilation_passes
        for _ in range(passes):
            mask = mask | (adjacency @ mask.astype(np.float64) > 0)

        active = mask & has_neighbours

        def laplacian_pass(h: np.ndarray, blend: np.ndarray) -> np.ndarray:
            average = (adjacency @ h) / safe_degree
            return np.where(active, h + (average - h) * blend, h)

        # Stage 1: spike removal
        iterations = opts.puddle_stage1_iterations if has_puddles else opts.stage1_iterations
        for it in range(iterations):
            taper = 1.0 - it / max(1, iterations - 1) * opts.stage1_taper
            blend = np.clip(opts.stage1_strength * influence * taper, 0.0, opts.stage1_max_blend)
            heights = laplacian_pass(heights, blend)

        # Stage 2: pull toward the ideal depression profile
        target = np.minimum(heights, self.carve_ceiling(contoured, x, z))
        blend = np.clip(influence * opts.stage2_strength, 0.0, opts.stage2_max_blend)
        heights = np.where(mask, heights + (target - heights) * blend, heights)

        # Stage 3: polish
        iterations = opts.puddle_stage3_iterations if has_puddles else opts.stage3_iterations
        for it in range(iterations):
            taper = opts.stage3_floor + (1.0 - opts.stage3_floor) * (1.0 - it / max(1, iterations - 1))
            blend = np.clip(opts.stage3_strength * influence * taper, 0.0, opts.stage3_max_blend)
            heights = laplacian_pass(heights, blend)

        # Smoothing may lift noise valleys; a depression never rises above the terrain
        heights = np.where(influence > 0, np.minimum(heights, surface.pre_carve_heights), heights)

        surface.positions[:, 1] = heights
        logger.info(
            "Depressions relaxed",
            features=len(contoured),
            masked=int(mask.sum()),
            dilation_passes=passes,
        )
        return mask

    def build_water_surface(self, lake: Lake, boundary: BoundaryCurve) -> Optional[MeshData]:
        """
        Flat water mesh for a contoured lake.

        The rim polygon is expanded slightly from the center so the water
        meets the banks; points that end up outside the grass area are
        dropped.
        """
        if lake.state != FeatureState.CONTOURED:
            return None
        center = np.asarray(lake.center)
        expanded = center + (lake.contour - center) * WATER_EXPAND_FACTOR
        keep = boundary.contains(expanded[:, 0], expanded[:, 1])
        outline = expanded[np.asarray(keep, dtype=bool)]
        if len(outline) < 3:
            return None

        triangles = np.asarray(triangulate_polygon(outline), dtype=np.int64).reshape(-1, 3)
        if len(triangles) == 0:
            return None
        height = lake.rim_height + WATER_SURFACE_OFFSET
        positions = np.column_stack([outline[:, 0], np.full(len(outline), height), outline[:, 1]])

        mesh = MeshData(positions=positions, triangles=triangles)
        upward = mesh.face_normals()[:, 1] >= 0
        mesh.triangles = np.where(upward[:, None], triangles, triangles[:, [0, 2, 1]])
        mesh.groups = [MeshGroup(MaterialRole.WATER, 0, len(triangles))]
        mesh.compute_planar_uvs()
        mesh.compute_vertex_normals()
        return mesh
