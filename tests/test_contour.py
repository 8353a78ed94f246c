"""Tests for anchor placement and island contours."""

import math

import numpy as np
import pytest

from py_island.config import IslandParameters
from py_island.core.contour import (
    BoundaryCurve,
    ContourBuilder,
    ContourOptions,
    anchor_count,
    moving_average_heights,
    partition_blueprints,
)
from py_island.core.diagnostics import InsufficientInputError
from py_island.core.mesh import Blueprint
from py_island.core.noise_synth import HeightNoise
from py_island.utils.random import create_prng

from conftest import make_rocks


def assert_closed_curve(curve: BoundaryCurve):
    pts = curve.points
    steps = np.sum((np.roll(pts, -1, axis=0) - pts) ** 2, axis=1)
    assert np.all(steps > 1e-9), f"{curve.name} has coincident neighbours"


class TestAnchorCount:
    """Test the ring density rule."""

    def test_base_radius(self):
        assert anchor_count(20) == 75

    def test_outer_radius_rounds_half_up(self):
        assert anchor_count(25) == 94

    def test_minimum(self):
        assert anchor_count(0.1) == 3

    def test_custom_power(self):
        options = ContourOptions(density_scale_power=2.0)
        assert anchor_count(40, options) == 300


class TestPartition:
    def test_split_by_volume(self):
        rocks = make_rocks(10)
        small, large = partition_blueprints(list(reversed(rocks)), 0.4)
        assert [b.name for b in small] == [f"rock_{i:02d}" for i in range(4)]
        assert len(large) == 6
        assert max(b.volume for b in small) <= min(b.volume for b in large)

    def test_single_blueprint_serves_both(self):
        rock = Blueprint("only", [-1, 0, -1], [1, 1, 1])
        small, large = partition_blueprints([rock])
        assert small == [rock]
        assert large == [rock]

    def test_empty_raises(self):
        with pytest.raises(InsufficientInputError):
            partition_blueprints([])


class TestBoundaryCurve:
    def test_too_few_points(self):
        with pytest.raises(InsufficientInputError):
            BoundaryCurve([[0, 0, 0], [0, 0, 0], [1, 0, 0]])

    def test_contains_scalar_and_array(self):
        curve = BoundaryCurve([[-1, 0, -1], [1, 0, -1], [1, 0, 1], [-1, 0, 1]])
        assert curve.contains(0.0, 0.0) is True
        assert curve.contains(2.0, 0.0) is False
        mask = curve.contains(np.array([0.0, 3.0]), np.array([0.0, 0.0]))
        assert mask.tolist() == [True, False]

    def test_closed_points(self):
        curve = BoundaryCurve([[0, 0, 0], [1, 0, 0], [1, 0, 1]])
        closed = curve.closed_points()
        assert len(closed) == 4
        np.testing.assert_array_equal(closed[0], closed[-1])

    def test_bounds(self):
        curve = BoundaryCurve([[-2, 0, -1], [3, 0, -1], [3, 0, 4]])
        assert curve.bounds() == (-2.0, -1.0, 3.0, 4.0)


class TestMovingAverage:
    def test_constant_unchanged(self):
        pts = np.column_stack([np.arange(10.0), np.full(10, 2.0), np.zeros(10)])
        np.testing.assert_allclose(moving_average_heights(pts, 3)[:, 1], 2.0)

    def test_wraps_around(self):
        pts = np.zeros((6, 3))
        pts[0, 1] = 6.0
        smoothed = moving_average_heights(pts, 1)
        np.testing.assert_allclose(smoothed[:, 1], [2, 2, 0, 0, 0, 2])

    def test_xz_untouched(self):
        pts = np.random.default_rng(0).normal(size=(8, 3))
        smoothed = moving_average_heights(pts, 2)
        np.testing.assert_array_equal(smoothed[:, [0, 2]], pts[:, [0, 2]])


class TestContourBuilder:
    """Test the full contour stage."""

    def test_anchor_rings(self, contours):
        assert len(contours.inner_anchors) == 75
        assert len(contours.outer_anchors) == 94
        assert all(a.ring == "inner" for a in contours.inner_anchors)
        assert all(a.ring == "outer" for a in contours.outer_anchors)

    def test_inner_ring_uses_large_pool(self, contours):
        large = {b.name for b in contours.large_pool}
        small = {b.name for b in contours.small_pool}
        assert all(a.blueprint.name in large for a in contours.inner_anchors)
        assert all(a.blueprint.name in small for a in contours.outer_anchors)

    def test_anchors_rest_on_sea_level(self, contours):
        for anchor in contours.anchors:
            bottom = anchor.position[1] + anchor.blueprint.bbox_min[1] * anchor.scale_y
            assert bottom == pytest.approx(0.0)
            assert anchor.base_position[1] == 0.0

    def test_anchor_radius_within_irregularity(self, contours, params):
        options = ContourOptions()
        for anchor in contours.inner_anchors:
            r = math.hypot(anchor.base_position[0], anchor.base_position[2])
            assert r <= params.island_radius * (1 + options.anchor_irregularity) + 1e-9
            assert r >= params.island_radius * (1 - options.anchor_irregularity) - 1e-9

    def test_curves_closed_without_duplicates(self, contours):
        for curve in (contours.terrain_contour, contours.shoreline, contours.foliage_boundary):
            assert_closed_curve(curve)

    def test_curve_resolution(self, contours):
        options = ContourOptions()
        assert len(contours.terrain_contour) == options.contour_resolution
        assert len(contours.shoreline) == options.shoreline_resolution
        assert len(contours.foliage_boundary) == options.contour_resolution

    def test_shoreline_floor(self, contours, params):
        assert np.all(contours.shoreline.points[:, 1] >= params.shoreline_height - 1e-9)

    def test_shoreline_outside_terrain(self, contours):
        pts = contours.shoreline.points
        inside = contours.terrain_contour.contains(pts[:, 0], pts[:, 2])
        assert inside.mean() < 0.05

    def test_foliage_boundary_inside_terrain(self, contours):
        pts = contours.foliage_boundary.points
        assert contours.terrain_contour.contains(pts[:, 0], pts[:, 2]).all()

    def test_center_height(self, contours, params, height_noise):
        builder = ContourBuilder(params, create_prng("unused"), height_noise)
        cx, cy, cz = contours.center
        assert cy == pytest.approx(float(builder.surface_height(cx, cz)))

    def test_reproducible(self, params, rock_blueprints):
        noise = HeightNoise(seed=5, scale=params.noise_scale)
        a = ContourBuilder(params, create_prng("same"), noise).build(rock_blueprints)
        b = ContourBuilder(params, create_prng("same"), noise).build(rock_blueprints)
        np.testing.assert_array_equal(a.terrain_contour.points, b.terrain_contour.points)
        np.testing.assert_array_equal(a.shoreline.points, b.shoreline.points)

    def test_no_blueprints(self, params, height_noise):
        with pytest.raises(InsufficientInputError):
            ContourBuilder(params, create_prng("x"), height_noise).build([])

    def test_small_island(self, height_noise, rock_blueprints):
        params = IslandParameters(island_radius=5, shoreline_offset=2, foliage_band_width=1)
        contours = ContourBuilder(params, create_prng("small"), height_noise).build(rock_blueprints)
        assert len(contours.inner_anchors) == anchor_count(5)
        assert_closed_curve(contours.foliage_boundary)

    def test_band_wider_than_island(self, height_noise, rock_blueprints):
        params = IslandParameters(island_radius=10, foliage_band_width=30)
        contours = ContourBuilder(params, create_prng("wide-band"), height_noise).build(rock_blueprints)
        boundary = contours.foliage_boundary
        assert_closed_curve(boundary)
        assert contours.terrain_contour.contains(boundary.points[:, 0], boundary.points[:, 2]).all()
        fraction = ContourOptions().min_foliage_fraction
        assert boundary.polygon.area == pytest.approx(fraction ** 2 * contours.terrain_contour.polygon.area)
