"""End-to-end tests for the island generator."""

import numpy as np
import pytest

from py_island.config import IslandParameters
from py_island.core.depressions import DepressionCarver, FeatureState, Lake, MudPuddle
from py_island.core.diagnostics import DiagnosticKind
from py_island.core.island import IslandGenerator
from py_island.core.mesh import MaterialRole
from py_island.utils.geometry import contains_xz, make_polygon
from py_island.utils.random import create_prng


@pytest.fixture
def make_generator(rock_blueprints, foliage_blueprints, terrain_options):
    def make(seed="island", **kwargs):
        return IslandGenerator(
            params=kwargs.pop("params", None),
            rock_blueprints=kwargs.pop("rock_blueprints", rock_blueprints),
            foliage_blueprints=foliage_blueprints,
            seed=seed,
            terrain_options=terrain_options,
            **kwargs,
        )
    return make


class TestGenerate:
    """Test a plain generation."""

    def test_result_parts(self, make_generator):
        result = make_generator().generate()
        assert result.terrain is not None
        assert result.seed == "island"
        assert len(result.rock_instances) == 75 + 94
        assert not result.diagnostics.of_kind(DiagnosticKind.INSUFFICIENT_INPUT)
        assert result.elapsed > 0

    def test_mesh_groups(self, make_generator):
        mesh = make_generator().generate().terrain.mesh
        assert [g.role for g in mesh.groups] == [MaterialRole.GROUND_COVER, MaterialRole.GRASS, MaterialRole.MUD]
        assert mesh.validate_groups()
        assert mesh.uvs is not None and mesh.normals is not None and mesh.tangents is not None

    def test_height_query(self, make_generator):
        terrain = make_generator().generate().terrain
        cx, cy, cz = terrain.contours.center
        assert terrain.height_at(cx, cz) == pytest.approx(cy, abs=1e-6)
        assert terrain.height_at(500.0, 500.0) is None

    def test_foliage_in_band(self, make_generator):
        result = make_generator().generate()
        assert len(result.foliage_instances) == len(result.foliage.report.pivots)
        for instance in result.foliage_instances:
            assert result.terrain.shoreline.contains(instance.position[0], instance.position[2])

    def test_same_seed_same_island(self, make_generator):
        a = make_generator(seed="twin").generate()
        b = make_generator(seed="twin").generate()
        np.testing.assert_array_equal(a.terrain.mesh.positions, b.terrain.mesh.positions)
        assert len(a.foliage_instances) == len(b.foliage_instances)

    def test_different_seed(self, make_generator):
        a = make_generator(seed="one").generate()
        b = make_generator(seed="two").generate()
        assert not np.array_equal(a.terrain.terrain_contour.points, b.terrain.terrain_contour.points)

    def test_progress_callback(self, make_generator):
        events = []
        make_generator(on_progress=lambda stage, phase: events.append((stage, phase))).generate()
        stages = [stage for stage, phase in events if phase == "start"]
        assert stages == ["contours", "terrain", "water", "foliage"]
        assert len(events) == 8

    def test_no_rock_blueprints(self, make_generator):
        result = make_generator(rock_blueprints=[]).generate()
        assert result.terrain is None
        assert result.rock_instances == []
        assert result.foliage_instances == []
        assert result.diagnostics.of_kind(DiagnosticKind.INSUFFICIENT_INPUT)

    def test_custom_radius(self, make_generator):
        params = IslandParameters(island_radius=10, shoreline_offset=3, foliage_band_width=2)
        result = make_generator(params=params).generate()
        assert len(result.terrain.contours.inner_anchors) == 38

    def test_band_wider_than_island(self, make_generator):
        params = IslandParameters(island_radius=10, foliage_band_width=30)
        result = make_generator(params=params).generate()
        assert result.terrain is not None
        assert not result.diagnostics.of_kind(DiagnosticKind.INSUFFICIENT_INPUT)
        assert result.terrain.mesh.group(MaterialRole.GROUND_COVER).count > 0
        assert result.terrain.mesh.group(MaterialRole.GRASS).count > 0


class TestFeatures:
    """Test lakes and mud puddles through the generator."""

    def test_add_and_remove(self, make_generator):
        generator = make_generator()
        lake = generator.add_lake()
        puddle = generator.add_mud_puddle(radius=1.5)
        assert isinstance(lake, Lake) and lake.base_radius == 3.0
        assert isinstance(puddle, MudPuddle) and puddle.base_radius == 1.5
        assert lake.id != puddle.id
        assert generator.remove_last_lake() == lake
        assert generator.remove_last_lake() is None
        assert [f.id for f in generator.features] == [puddle.id]
        assert generator.remove_last_mud_puddle() == puddle

    def test_lake_scenario(self, make_generator):
        generator = make_generator(seed="lake")
        generator.add_lake(radius=3.0, depth=1.0)
        result = generator.generate()

        (lake,) = result.features
        assert lake.state == FeatureState.CONTOURED
        assert lake.water_level == pytest.approx(lake.rim_height - 0.2)
        assert lake.id in result.water_meshes
        water = result.water_meshes[lake.id]
        np.testing.assert_allclose(water.positions[:, 1], lake.rim_height - 0.4)

        terrain = result.terrain
        depth = terrain.height_at(*lake.center)
        assert depth < lake.rim_height
        assert terrain.lake_contours[0] is lake.contour

        surface = terrain.surface
        inside = lake.within(surface.positions[:, 0], surface.positions[:, 2])
        assert inside.any()
        assert np.all(surface.heights[inside] <= surface.pre_carve_heights[inside])

    def test_rerun_keeps_vertices_at_target(self, make_generator):
        generator = make_generator(seed="lake")
        generator.add_lake(radius=3.0, depth=1.0)
        terrain = generator.generate().terrain
        surface = terrain.surface
        carver = DepressionCarver(create_prng("rerun"), generator.relaxation_options)

        x, z = surface.positions[:, 0], surface.positions[:, 2]
        at_target = np.isclose(surface.heights, carver.carve_ceiling(terrain.features, x, z))
        at_target &= carver.influence(terrain.features, x, z) > 0
        assert at_target.any()
        before = surface.heights.copy()

        carver.carve(surface, terrain.features)
        carver.relax(surface, terrain.features)
        assert np.all(surface.heights[at_target] >= before[at_target] - 1e-9)

    def test_regeneration_keeps_centers(self, make_generator):
        generator = make_generator(seed="regen")
        generator.add_lake()
        generator.add_mud_puddle()
        first = generator.generate()
        second = generator.generate()
        for a, b in zip(first.features, second.features):
            assert a.center == b.center
            assert b.state == FeatureState.CONTOURED
        # The terrain itself is re-rolled
        assert not np.array_equal(first.terrain.mesh.positions, second.terrain.mesh.positions)

    def test_mud_group_filled(self, make_generator):
        generator = make_generator(seed="mud")
        generator.add_mud_puddle(radius=2.5)
        result = generator.generate()
        assert result.terrain.mesh.group(MaterialRole.MUD).count > 0
        assert result.water_meshes == {}

    def test_unplaceable_lake(self, make_generator):
        generator = make_generator()
        generator.add_lake(radius=80.0)
        result = generator.generate()
        assert result.terrain is not None
        assert result.features[0].state == FeatureState.REQUESTED
        assert result.diagnostics.of_kind(DiagnosticKind.PLACEMENT_FAILURE)
        assert result.water_meshes == {}


class TestPaths:
    def test_generate_paths(self, make_generator):
        generator = make_generator(seed="paths")
        terrain = generator.generate().terrain
        network = generator.generate_paths(terrain)
        assert len(network.nodes) == generator.params.path_points
        assert len(network.mst_edges) == len(network.nodes) - 1
        assert network.ribbons
        for node in network.nodes:
            assert terrain.foliage_boundary.contains(node[0], node[2])

    def test_paths_avoid_lakes(self, make_generator):
        generator = make_generator(seed="paths-lake")
        generator.add_lake(radius=3.0)
        terrain = generator.generate().terrain
        network = generator.generate_paths(terrain)
        lakes = [make_polygon(c) for c in terrain.lake_contours]
        for node in network.nodes:
            assert not any(contains_xz(lake, node[0], node[2]) for lake in lakes)
