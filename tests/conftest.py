"""Shared fixtures for island generation tests."""

import numpy as np
import pytest

from py_island.config import IslandParameters
from py_island.core.contour import BoundaryCurve, ContourBuilder
from py_island.core.mesh import Blueprint, MaterialRole, MeshData, MeshGroup
from py_island.core.noise_synth import HeightNoise
from py_island.core.raycast import TerrainRaycaster
from py_island.core.terrain_mesh import TerrainMeshBuilder, TerrainOptions
from py_island.utils.random import create_prng


def make_rocks(count=20):
    """Rock blueprints of increasing size, half of them clearly large."""
    rocks = []
    for i in range(count):
        size = 0.5 + 0.1 * i
        rocks.append(Blueprint(f"rock_{i:02d}", [-size, -0.2, -size], [size, 1.0 + size, size]))
    return rocks


def make_plane(half_size=10.0, divisions=20, height=1.0):
    """Flat grid mesh on y = height, centred on the origin."""
    coords = np.linspace(-half_size, half_size, divisions + 1)
    xs, zs = np.meshgrid(coords, coords, indexing="ij")
    positions = np.column_stack([xs.ravel(), np.full(xs.size, height), zs.ravel()])

    row = divisions + 1
    triangles = []
    for i in range(divisions):
        for k in range(divisions):
            a = i * row + k
            b = (i + 1) * row + k
            c = (i + 1) * row + k + 1
            d = i * row + k + 1
            triangles.append((a, d, c))
            triangles.append((a, c, b))
    triangles = np.asarray(triangles, dtype=np.int64)
    return MeshData(
        positions=positions,
        triangles=triangles,
        groups=[MeshGroup(MaterialRole.GRASS, 0, len(triangles))],
    )


def square_curve(half_size, y=0.0):
    return BoundaryCurve(
        [[-half_size, y, -half_size], [half_size, y, -half_size],
         [half_size, y, half_size], [-half_size, y, half_size]],
        name="square",
    )


@pytest.fixture
def rock_blueprints():
    return make_rocks()


@pytest.fixture
def foliage_blueprints():
    return [Blueprint(f"bush_{i}", [-0.5, 0.0, -0.5], [0.5, 1.0, 0.5]) for i in range(3)]


@pytest.fixture
def params():
    return IslandParameters()


@pytest.fixture
def terrain_options():
    """Coarse mesh so tests stay fast."""
    return TerrainOptions(num_rings=24, boundary_resolution=64, skirt_rings=4)


@pytest.fixture
def height_noise(params):
    return HeightNoise(seed=1234, scale=params.noise_scale)


@pytest.fixture
def contours(params, height_noise, rock_blueprints):
    return ContourBuilder(params, create_prng("contours"), height_noise).build(rock_blueprints)


@pytest.fixture
def mesh_builder(params, height_noise, terrain_options):
    return TerrainMeshBuilder(params, height_noise, terrain_options)


@pytest.fixture
def plane():
    return make_plane()


@pytest.fixture
def plane_raycaster(plane):
    return TerrainRaycaster(plane)
