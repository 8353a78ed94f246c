"""
Island generation pipeline.

``IslandGenerator`` owns the parameters, model pools, feature list and PRNG
and runs the stages in order: contours, surface grid, depressions, mesh
assembly, water surfaces and foliage. Paths are a separate pass that takes
the ``TerrainResult`` of a previous generation explicitly.
"""

import itertools
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import structlog

from ..config import IslandParameters, settings
from ..utils.random import create_prng, derive_prng
from .contour import AnchorObject, BoundaryCurve, ContourBuilder, ContourOptions, ContourResult
from .depressions import (
    DepressionCarver,
    Lake,
    MudPuddle,
    RelaxationOptions,
    WaterFeature,
    invalidate,
    lakes_of,
    puddles_of,
)
from .diagnostics import DiagnosticKind, Diagnostics, InsufficientInputError
from .foliage import FoliageOptions, FoliageResult, scatter_foliage
from .mesh import Blueprint, MeshData, PlacedInstance
from .noise_synth import HeightNoise
from .paths import PathNetworkBuilder, PathNetworkResult, PathOptions
from .raycast import TerrainRaycaster
from .terrain_mesh import SurfaceGrid, TerrainHeightProfile, TerrainMeshBuilder, TerrainOptions

logger = structlog.get_logger()

ProgressCallback = Callable[[str, str], None]


@dataclass
class TerrainResult:
    """Everything downstream stages need from one terrain generation."""

    mesh: MeshData
    contours: ContourResult
    surface: SurfaceGrid
    profile: TerrainHeightProfile
    raycaster: TerrainRaycaster
    features: List[WaterFeature]

    @property
    def terrain_contour(self) -> BoundaryCurve:
        return self.contours.terrain_contour

    @property
    def shoreline(self) -> BoundaryCurve:
        return self.contours.shoreline

    @property
    def foliage_boundary(self) -> BoundaryCurve:
        return self.contours.foliage_boundary

    @property
    def anchors(self) -> List[AnchorObject]:
        return self.contours.anchors

    @property
    def lake_contours(self) -> List[np.ndarray]:
        return [lake.contour for lake in lakes_of(self.features) if lake.contour is not None]

    def height_at(self, x: float, z: float) -> Optional[float]:
        """Height of the finished mesh under (x, z), None off the island."""
        return self.raycaster.height_at(x, z)


@dataclass
class IslandResult:
    seed: str
    terrain: Optional[TerrainResult] = None
    foliage: Optional[FoliageResult] = None
    water_meshes: Dict[int, MeshData] = field(default_factory=dict)
    features: List[WaterFeature] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    elapsed: float = 0.0

    @property
    def rock_instances(self) -> List[PlacedInstance]:
        if self.terrain is None:
            return []
        return [anchor.to_instance() for anchor in self.terrain.anchors]

    @property
    def foliage_instances(self) -> List[PlacedInstance]:
        return self.foliage.instances if self.foliage else []


class IslandGenerator:
    """
    Generates islands from parameters and model pools.

    Generation is serialised with a lock: a second call waits until the first
    finishes. The feature list is only changed behind the same lock.

    Args:
        params: Island parameters, defaults when None
        rock_blueprints: Models for the anchor rings
        foliage_blueprints: Models scattered in the foliage band
        seed: Seed string; falls back to ``settings.default_seed``, then random
        on_progress: Called with (stage, "start"/"end") around each heavy pass
    """

    def __init__(
        self,
        params: Optional[IslandParameters] = None,
        rock_blueprints: Sequence[Blueprint] = (),
        foliage_blueprints: Sequence[Blueprint] = (),
        seed: Optional[str] = None,
        contour_options: Optional[ContourOptions] = None,
        terrain_options: Optional[TerrainOptions] = None,
        relaxation_options: Optional[RelaxationOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.params = params or IslandParameters()
        self.rock_blueprints = list(rock_blueprints)
        self.foliage_blueprints = list(foliage_blueprints)
        self.contour_options = contour_options or ContourOptions()
        self.terrain_options = terrain_options or TerrainOptions()
        self.relaxation_options = relaxation_options or RelaxationOptions()
        self.on_progress = on_progress

        self._lock = threading.RLock()
        self._features: List[WaterFeature] = []
        self._ids = itertools.count(1)
        self.reseed(seed if seed is not None else settings.default_seed)

    def reseed(self, seed: Optional[str] = None) -> None:
        with self._lock:
            self.prng = create_prng(seed)
            self.seed = str(self.prng.seed)

    @property
    def features(self) -> List[WaterFeature]:
        with self._lock:
            return list(self._features)

    def add_lake(self, radius: Optional[float] = None, depth: Optional[float] = None) -> Lake:
        with self._lock:
            lake = Lake(
                id=next(self._ids),
                base_radius=radius if radius is not None else self.params.lake_radius,
                depth=depth if depth is not None else self.params.lake_depth,
            )
            self._features.append(lake)
            return lake

    def add_mud_puddle(self, radius: Optional[float] = None) -> MudPuddle:
        with self._lock:
            puddle = MudPuddle(
                id=next(self._ids),
                base_radius=radius if radius is not None else self.params.mud_puddle_radius,
                phase_offset=self.prng.angle(),
            )
            self._features.append(puddle)
            return puddle

    def _remove_last(self, kind) -> Optional[WaterFeature]:
        with self._lock:
            for i in range(len(self._features) - 1, -1, -1):
                if isinstance(self._features[i], kind):
                    return self._features.pop(i)
            return None

    def remove_last_lake(self) -> Optional[Lake]:
        return self._remove_last(Lake)

    def remove_last_mud_puddle(self) -> Optional[MudPuddle]:
        return self._remove_last(MudPuddle)

    @contextmanager
    def _stage(self, name: str):
        if self.on_progress:
            self.on_progress(name, "start")
        try:
            yield
        finally:
            if self.on_progress:
                self.on_progress(name, "end")

    def generate(self) -> IslandResult:
        """
        Run a full generation.

        Features keep their centers across generations; their contours and
        rim heights are recomputed on the new terrain.

        Returns:
            IslandResult; a stage that cannot run leaves its part empty and
            records a diagnostic
        """
        with self._lock:
            start = time.perf_counter()
            params = self.params
            prng = self.prng
            result = IslandResult(seed=self.seed)
            diagnostics = result.diagnostics

            features = [invalidate(f) for f in self._features]
            height_noise = HeightNoise(seed=prng.randint32(), scale=params.noise_scale)

            logger.info(
                "Starting island generation",
                seed=self.seed,
                radius=params.island_radius,
                rocks=len(self.rock_blueprints),
                features=len(features),
            )

            try:
                with self._stage("contours"):
                    contours = ContourBuilder(params, prng, height_noise, self.contour_options).build(
                        self.rock_blueprints
                    )
            except InsufficientInputError as e:
                diagnostics.add(DiagnosticKind.INSUFFICIENT_INPUT, "contours", str(e))
                self._features = features
                result.features = list(features)
                return result

            builder = TerrainMeshBuilder(params, height_noise, self.terrain_options)
            carver = DepressionCarver(prng, self.relaxation_options)

            with self._stage("terrain"):
                surface = builder.build_surface(contours)
                profile = builder.height_profile(contours)

                features = carver.place_features(features, contours.foliage_boundary, diagnostics)
                features = carver.contour_features(features, profile)
                lowered = carver.carve(surface, features)
                carver.relax(surface, features)
                logger.info("Depressions carved", lowered=lowered, features=len(features))

                skirt = builder.build_skirt(contours)
                mud_contours = [p.contour for p in puddles_of(features) if p.contour is not None]
                mesh = builder.assemble(surface, skirt, mud_contours)
                raycaster = TerrainRaycaster(mesh)

            self._features = features
            result.features = list(features)
            result.terrain = TerrainResult(
                mesh=mesh,
                contours=contours,
                surface=surface,
                profile=profile,
                raycaster=raycaster,
                features=list(features),
            )

            with self._stage("water"):
                for lake in lakes_of(features):
                    water = carver.build_water_surface(lake, contours.foliage_boundary)
                    if water is not None:
                        result.water_meshes[lake.id] = water

            with self._stage("foliage"):
                result.foliage = scatter_foliage(
                    mesh,
                    contours.terrain_contour,
                    contours.foliage_boundary,
                    self.foliage_blueprints,
                    derive_prng(prng, "foliage"),
                    FoliageOptions(
                        density=params.foliage_density,
                        max_count=params.foliage_max_count,
                        max_slope=params.foliage_max_slope,
                        base_scale=params.foliage_scale,
                        band_width=params.foliage_band_width,
                    ),
                )

            result.elapsed = time.perf_counter() - start
            logger.info(
                "Island generation complete",
                seed=self.seed,
                vertices=mesh.vertex_count,
                triangles=mesh.triangle_count,
                foliage=len(result.foliage_instances),
                diagnostics=len(diagnostics),
                elapsed=round(result.elapsed, 3),
            )
            return result

    def generate_paths(
        self,
        terrain: TerrainResult,
        nodes: Optional[np.ndarray] = None,
        options: Optional[PathOptions] = None,
    ) -> PathNetworkResult:
        """
        Build a path network over a generated terrain.

        Args:
            terrain: Result of a previous :meth:`generate`
            nodes: Fixed node positions instead of random sampling
            options: Overrides the options derived from the parameters
        """
        with self._lock:
            params = self.params
            options = options or PathOptions(
                target_nodes=params.path_points,
                loop_fraction=params.loop_fraction,
                width=params.path_width,
            )
            with self._stage("paths"):
                return PathNetworkBuilder(
                    terrain.raycaster,
                    terrain.foliage_boundary,
                    terrain.lake_contours,
                    derive_prng(self.prng, "paths"),
                    options,
                ).build(nodes)
