#!/usr/bin/env python3
"""
Demo script generating an island with a lake, a mud puddle and paths.
"""

import matplotlib.pyplot as plt
import numpy as np

from py_island.config import IslandParameters
from py_island.core import Blueprint, IslandGenerator, MaterialRole
from py_island.utils.log import configure_logging


def demo_blueprints():
    """Box-shaped stand-ins for rock and bush models."""
    rocks = [
        Blueprint(f"rock_{i}", [-0.4 - 0.1 * i, -0.3, -0.4 - 0.1 * i], [0.4 + 0.1 * i, 1.0 + 0.15 * i, 0.4 + 0.1 * i])
        for i in range(12)
    ]
    bushes = [Blueprint(f"bush_{i}", [-0.5, 0.0, -0.5], [0.5, 0.8 + 0.2 * i, 0.5]) for i in range(4)]
    return rocks, bushes


def plot_curve(curve, **kwargs):
    pts = curve.closed_points()
    plt.plot(pts[:, 0], pts[:, 2], **kwargs)


def main():
    """Generate one island and plot it from above."""
    configure_logging()
    print("Py-Island Generation Demo")
    print("=" * 40)

    rocks, bushes = demo_blueprints()
    generator = IslandGenerator(
        params=IslandParameters(island_radius=20, foliage_density=2.0, path_points=16),
        rock_blueprints=rocks,
        foliage_blueprints=bushes,
        seed="demo123",
        on_progress=lambda stage, phase: print(f"  {stage}: {phase}"),
    )
    generator.add_lake(radius=3.0, depth=1.0)
    generator.add_mud_puddle(radius=2.0)

    result = generator.generate()
    if result.terrain is None:
        print(result.diagnostics.format())
        return

    terrain = result.terrain
    mesh = terrain.mesh
    print(f"\nMesh: {mesh.vertex_count} vertices, {mesh.triangle_count} triangles")
    for group in mesh.groups:
        print(f"  {group.role.value}: {group.count} triangles")
    print(f"Rocks: {len(result.rock_instances)}")
    print(result.foliage.report.format("Foliage").splitlines()[0])

    paths = generator.generate_paths(terrain)
    print(f"Paths: {len(paths.mst_edges)} tree edges, {len(paths.loop_edges)} loops")
    if result.diagnostics or paths.diagnostics:
        print("\nDiagnostics:")
        print(result.diagnostics.format())
        print(paths.diagnostics.format())

    plt.figure(figsize=(10, 10))
    grass = mesh.group_triangles(MaterialRole.GRASS)
    plt.tripcolor(mesh.positions[:, 0], mesh.positions[:, 2], grass, mesh.positions[:, 1], cmap="terrain")
    plt.colorbar(label="Height")

    plot_curve(terrain.shoreline, color="tan", label="Shoreline")
    plot_curve(terrain.terrain_contour, color="saddlebrown", label="Terrain contour")
    plot_curve(terrain.foliage_boundary, color="green", linestyle="--", label="Foliage boundary")

    for contour in terrain.lake_contours:
        closed = np.vstack([contour, contour[:1]])
        plt.fill(closed[:, 0], closed[:, 1], color="royalblue", alpha=0.6)

    anchors = np.array([a.position for a in terrain.anchors])
    plt.scatter(anchors[:, 0], anchors[:, 2], s=6, color="gray", label="Rocks")

    if result.foliage_instances:
        foliage = np.array([f.position for f in result.foliage_instances])
        plt.scatter(foliage[:, 0], foliage[:, 2], s=10, color="darkgreen", label="Foliage")

    for ribbon in paths.ribbons:
        plt.plot(ribbon.points[:, 0], ribbon.points[:, 2], color="peru", linewidth=2)

    plt.gca().set_aspect("equal")
    plt.legend(loc="upper right")
    plt.title(f"Island '{result.seed}'")
    plt.savefig("island_demo.png", dpi=150)
    print("\nSaved visualization to island_demo.png")


if __name__ == "__main__":
    main()
