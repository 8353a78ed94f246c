"""Tests for foliage scattering over the band."""

import numpy as np
import pytest

from py_island.core.foliage import FoliageOptions, FoliageReport, classify_faces, scatter_foliage
from py_island.core.mesh import MeshData
from py_island.utils.random import create_prng

from conftest import make_plane, square_curve


@pytest.fixture
def outer():
    return square_curve(10.5)


@pytest.fixture
def inner():
    return square_curve(5.0)


class TestClassifyFaces:
    """Test the slope, water and band filters."""

    def test_counts_add_up(self, plane, outer, inner):
        report = FoliageReport()
        faces = classify_faces(plane, outer, inner, 35.0, report)
        rejected = (
            report.rejected_slope
            + report.rejected_submerged
            + report.rejected_outside_band
            + report.rejected_inside_band
        )
        assert report.total_faces == plane.triangle_count
        assert rejected + report.accepted == report.total_faces
        assert len(faces) == report.accepted

    def test_flat_band(self, plane, outer, inner):
        report = FoliageReport()
        faces = classify_faces(plane, outer, inner, 35.0, report)
        assert report.rejected_slope == 0
        assert report.rejected_submerged == 0
        assert report.rejected_outside_band == 0
        # 10x10 of the 20x20 unit cells lie inside the inner square
        assert report.rejected_inside_band == 200
        assert len(faces) == 600

    def test_submerged(self, outer, inner):
        sunk = make_plane(height=-0.5)
        report = FoliageReport()
        faces = classify_faces(sunk, outer, inner, 35.0, report)
        assert len(faces) == 0
        assert report.rejected_submerged == sunk.triangle_count

    def test_steep_rejected(self, outer, inner):
        plane = make_plane()
        tilted = plane.positions.copy()
        tilted[:, 1] = tilted[:, 0] * 2.0  # about 63 degrees
        report = FoliageReport()
        faces = classify_faces(MeshData(tilted, plane.triangles), outer, inner, 35.0, report)
        assert len(faces) == 0
        assert report.rejected_slope > 0


class TestScatterFoliage:
    """Test instance placement."""

    def test_count_from_area(self, plane, outer, inner, foliage_blueprints):
        result = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("f"), FoliageOptions(density=2.0))
        # 300 square units of band at 2 per 100
        assert result.report.valid_area == pytest.approx(300.0)
        assert result.report.requested == 6
        assert len(result.instances) == 6

    def test_max_count(self, plane, outer, inner, foliage_blueprints):
        options = FoliageOptions(density=10.0, max_count=4)
        result = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("f"), options)
        assert len(result.instances) == 4

    def test_instances_in_band(self, plane, outer, inner, foliage_blueprints):
        result = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("band"), FoliageOptions(density=5.0))
        for instance in result.instances:
            x, y, z = instance.position
            assert y == pytest.approx(1.0)
            assert max(abs(x), abs(z)) >= 5.0 - 1e-9

    def test_upright_rotation(self, plane, outer, inner, foliage_blueprints):
        """On flat ground only the yaw varies."""
        result = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("q"), FoliageOptions(density=3.0))
        for instance in result.instances:
            q = instance.quaternion
            assert abs(q[0]) < 1e-9 and abs(q[2]) < 1e-9
            assert np.linalg.norm(q) == pytest.approx(1.0)

    def test_scale_jitter(self, plane, outer, inner, foliage_blueprints):
        options = FoliageOptions(density=5.0, base_scale=2.0)
        result = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("s"), options)
        for instance in result.instances:
            assert 1.6 <= instance.scale[0] <= 2.4
            assert instance.scale[0] == instance.scale[1] == instance.scale[2]

    def test_models_cycle(self, plane, outer, inner, foliage_blueprints):
        result = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("m"), FoliageOptions(density=2.0))
        names = [i.name for i in result.instances]
        assert names[:3] == [b.name for b in foliage_blueprints]

    def test_reproducible(self, plane, outer, inner, foliage_blueprints):
        a = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("r"))
        b = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("r"))
        for ia, ib in zip(a.instances, b.instances):
            np.testing.assert_array_equal(ia.position, ib.position)

    def test_no_models(self, plane, outer, inner):
        result = scatter_foliage(plane, outer, inner, [], create_prng("x"))
        assert result.instances == []
        assert result.report.reason == "No foliage models loaded."
        assert "No foliage generated." in result.report.format()

    def test_no_area(self, plane, foliage_blueprints):
        report = scatter_foliage(plane, square_curve(3.0), square_curve(4.0), foliage_blueprints, create_prng("x")).report
        assert report.requested == 0
        assert report.reason is not None

    def test_report_lists_pivots(self, plane, outer, inner, foliage_blueprints):
        result = scatter_foliage(plane, outer, inner, foliage_blueprints, create_prng("p"), FoliageOptions(density=1.0))
        text = result.report.format("Bush")
        assert text.startswith(f"Generated {len(result.instances)} bush instances.")
