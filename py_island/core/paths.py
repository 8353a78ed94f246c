"""
Path network over the grass surface.

Nodes are sampled inside the foliage boundary and away from lakes, joined
by a Delaunay triangulation, reduced to a minimum spanning tree plus a share
of the leftover edges as loops, then traced over the terrain and turned
into ribbon meshes.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import structlog

from ..utils.alea_prng import AleaPRNG
from .contour import BoundaryCurve
from .delaunay import triangulate
from .diagnostics import DiagnosticKind, Diagnostics, InsufficientInputError
from .mesh import MaterialRole, MeshData, MeshGroup
from .raycast import TerrainRaycaster
from .union_find import UnionFind
from ..utils.geometry import UP, catmull_rom_points, contains_xz, make_polygon, normalize

logger = structlog.get_logger()

MIN_NODES = 3


@dataclass
class PathOptions:
    target_nodes: int = 20
    loop_fraction: float = 0.2
    width: float = 1.0
    step_length: float = 1.0
    attempts_per_node: int = 100
    lake_check_steps: int = 10
    y_offset: float = 0.05
    min_step_sq: float = 0.001


@dataclass
class PathEdge:
    u: int
    v: int
    weight: float  # squared planar distance
    loop: bool = False


@dataclass
class PathRibbon:
    edge: PathEdge
    points: np.ndarray  # smoothed, surface-projected centerline
    normals: np.ndarray
    mesh: MeshData


@dataclass
class PathNetworkResult:
    nodes: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    triangles: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.int64))
    candidate_edges: List[PathEdge] = field(default_factory=list)
    selected_edges: List[PathEdge] = field(default_factory=list)
    ribbons: List[PathRibbon] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def mst_edges(self) -> List[PathEdge]:
        return [e for e in self.selected_edges if not e.loop]

    @property
    def loop_edges(self) -> List[PathEdge]:
        return [e for e in self.selected_edges if e.loop]


def select_edges(
    edges: Sequence[PathEdge], n_nodes: int, loop_fraction: float, prng: AleaPRNG
) -> List[PathEdge]:
    """
    Kruskal's spanning forest plus a random share of the rejected edges.

    Args:
        edges: Candidate edges
        n_nodes: Number of graph nodes
        loop_fraction: Share of cycle-forming edges to add back as loops
        prng: Random source for the loop shuffle

    Returns:
        Tree edges in weight order followed by the loop edges
    """
    ordered = sorted(edges, key=lambda e: e.weight)  # stable
    uf = UnionFind(n_nodes)
    tree: List[PathEdge] = []
    rejected: List[PathEdge] = []
    for edge in ordered:
        if uf.union(edge.u, edge.v):
            tree.append(edge)
        else:
            rejected.append(edge)

    prng.shuffle(rejected)
    n_loops = int(math.floor(len(rejected) * loop_fraction))
    loops = [PathEdge(e.u, e.v, e.weight, loop=True) for e in rejected[:n_loops]]
    return tree + loops


def ribbon_mesh(points: np.ndarray, normals: np.ndarray, width: float, y_offset: float = 0.05) -> Optional[MeshData]:
    """
    Strip mesh following a centerline.

    Each centerline point emits a left and a right vertex, half the width
    along ``tangent × normal``. U is 0/1 across the strip and V is the
    travelled length divided by the width.
    """
    n = len(points)
    if n < 2:
        return None

    tangents = np.empty_like(points)
    tangents[:-1] = points[1:] - points[:-1]
    tangents[-1] = points[-1] - points[-2]
    tangents = normalize(tangents)
    right = normalize(np.cross(tangents, normals))

    half = width / 2.0
    left_pts = points - right * half
    right_pts = points + right * half
    left_pts[:, 1] += y_offset
    right_pts[:, 1] += y_offset

    positions = np.empty((2 * n, 3))
    positions[0::2] = left_pts
    positions[1::2] = right_pts

    seg = np.linalg.norm(np.diff(points, axis=0), axis=1)
    travelled = np.concatenate([[0.0], np.cumsum(seg)]) / width
    uvs = np.empty((2 * n, 2))
    uvs[0::2, 0] = 0.0
    uvs[1::2, 0] = 1.0
    uvs[0::2, 1] = travelled
    uvs[1::2, 1] = travelled

    k = np.arange(n - 1)
    tl, tr, bl, br = 2 * k, 2 * k + 1, 2 * k + 2, 2 * k + 3
    triangles = np.vstack([
        np.column_stack([tl, tr, bl]),
        np.column_stack([tr, br, bl]),
    ])
    # Interleave so each quad's two triangles stay adjacent
    triangles = triangles.reshape(2, n - 1, 3).transpose(1, 0, 2).reshape(-1, 3)

    return MeshData(
        positions=positions,
        triangles=triangles.astype(np.int64),
        uvs=uvs,
        normals=np.repeat(normals, 2, axis=0),
        groups=[MeshGroup(MaterialRole.PATH, 0, len(triangles))],
    )


class PathNetworkBuilder:
    """
    Builds paths between random nodes on the terrain.

    Args:
        raycaster: Ray queries against the finished terrain mesh
        boundary: Area nodes are sampled in (foliage boundary)
        lake_contours: XZ polygons paths must avoid
        prng: Random source
        options: Node count, loop share and ribbon width
    """

    def __init__(
        self,
        raycaster: TerrainRaycaster,
        boundary: BoundaryCurve,
        lake_contours: Sequence[np.ndarray],
        prng: AleaPRNG,
        options: Optional[PathOptions] = None,
    ):
        self.raycaster = raycaster
        self.boundary = boundary
        self.lakes = [make_polygon(c) for c in lake_contours]
        self.prng = prng
        self.options = options or PathOptions()

    def in_lake(self, x: float, z: float) -> bool:
        return any(bool(contains_xz(lake, x, z)) for lake in self.lakes)

    def sample_nodes(self) -> np.ndarray:
        """
        Rejection-sample node positions on the surface.

        Raises:
            InsufficientInputError: If fewer than 3 nodes could be placed
        """
        target = self.options.target_nodes
        min_x, min_z, max_x, max_z = self.boundary.bounds()
        nodes = []
        attempts = 0
        max_attempts = target * self.options.attempts_per_node
        while len(nodes) < target and attempts < max_attempts:
            attempts += 1
            x = self.prng.uniform(min_x, max_x)
            z = self.prng.uniform(min_z, max_z)
            if not self.boundary.contains(x, z) or self.in_lake(x, z):
                continue
            hit = self.raycaster.cast_down(x, z)
            if hit is not None:
                nodes.append(hit.point)

        if len(nodes) < MIN_NODES:
            raise InsufficientInputError(
                f"Not enough nodes placed for path generation ({len(nodes)} of {target})"
            )
        logger.info("Path nodes sampled", nodes=len(nodes), attempts=attempts)
        return np.asarray(nodes)

    def candidate_edges(self, nodes: np.ndarray, triangles: np.ndarray) -> List[PathEdge]:
        """Deduplicated triangulation edges that stay clear of lakes."""
        edges = []
        seen = set()
        for tri in triangles:
            for u, v in ((tri[0], tri[1]), (tri[1], tri[2]), (tri[2], tri[0])):
                key = (int(min(u, v)), int(max(u, v)))
                if key in seen:
                    continue
                p1, p2 = nodes[key[0]], nodes[key[1]]
                mid = (p1 + p2) / 2
                if self.in_lake(p1[0], p1[2]) or self.in_lake(p2[0], p2[2]) or self.in_lake(mid[0], mid[2]):
                    continue
                seen.add(key)
                weight = float((p1[0] - p2[0]) ** 2 + (p1[2] - p2[2]) ** 2)
                edges.append(PathEdge(key[0], key[1], weight))
        return edges

    def _normal_at(self, point: np.ndarray) -> np.ndarray:
        hit = self.raycaster.cast_down(point[0], point[2])
        return hit.normal if hit is not None else UP.copy()

    def trace(self, start: np.ndarray, end: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Walk the straight planar segment and drop each step onto the terrain.

        Stops at the first miss; the end node is always appended.
        """
        opts = self.options
        path = [np.asarray(start, dtype=float)]
        normals = [self._normal_at(path[0])]

        delta = np.array([end[0] - start[0], end[2] - start[2]])
        total = float(np.hypot(delta[0], delta[1]))
        steps = int(math.ceil(total / opts.step_length))

        if steps > 1:
            direction = delta / total
            for i in range(1, steps + 1):
                along = min(opts.step_length * i, total)
                x = start[0] + direction[0] * along
                z = start[2] + direction[1] * along
                hit = self.raycaster.cast_down(x, z)
                if hit is None:
                    break
                if np.sum((path[-1] - hit.point) ** 2) > opts.min_step_sq:
                    path.append(hit.point)
                    normals.append(hit.normal)

        end = np.asarray(end, dtype=float)
        if steps <= 1 or np.sum((path[-1] - end) ** 2) > opts.min_step_sq:
            path.append(end)
            normals.append(self._normal_at(end))
        return np.asarray(path), np.asarray(normals)

    def project(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Drop points onto the terrain; misses are discarded."""
        projected = []
        normals = []
        for p in points:
            hit = self.raycaster.cast_down(p[0], p[2])
            if hit is not None:
                projected.append(hit.point)
                normals.append(hit.normal)
        return np.asarray(projected).reshape(-1, 3), np.asarray(normals).reshape(-1, 3)

    def smooth(self, raw: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        if len(raw) < 3:
            return self.project(raw)
        samples = catmull_rom_points(raw, 2 * len(raw), closed=False, curve_type="catmullrom", tension=0.5)
        return self.project(samples)

    def build_edge(self, nodes: np.ndarray, edge: PathEdge) -> Optional[PathRibbon]:
        start, end = nodes[edge.u], nodes[edge.v]
        for t in np.arange(self.options.lake_check_steps) / self.options.lake_check_steps:
            if self.in_lake(start[0] + (end[0] - start[0]) * t, start[2] + (end[2] - start[2]) * t):
                return None

        raw, _ = self.trace(start, end)
        if any(self.in_lake(p[0], p[2]) for p in raw):
            return None
        if len(raw) < 2:
            return None

        points, normals = self.smooth(raw)
        mesh = ribbon_mesh(points, normals, self.options.width, self.options.y_offset)
        if mesh is None:
            return None
        return PathRibbon(edge=edge, points=points, normals=normals, mesh=mesh)

    def build(self, nodes: Optional[np.ndarray] = None) -> PathNetworkResult:
        """
        Build the whole network.

        Args:
            nodes: Fixed node positions; sampled when None

        Returns:
            PathNetworkResult; failures are reported in its diagnostics
        """
        result = PathNetworkResult()
        try:
            nodes = self.sample_nodes() if nodes is None else np.asarray(nodes, dtype=float)
            if len(nodes) < MIN_NODES:
                raise InsufficientInputError(f"Path generation needs at least {MIN_NODES} nodes, got {len(nodes)}")
        except InsufficientInputError as e:
            result.diagnostics.add(DiagnosticKind.INSUFFICIENT_INPUT, "paths", str(e))
            return result

        result.nodes = nodes
        triangulation = triangulate(nodes[:, [0, 2]])
        for idx in triangulation.skipped:
            result.diagnostics.add(
                DiagnosticKind.GEOMETRIC_DEGENERACY,
                "paths",
                f"Node {idx} found no triangle to split and was skipped",
                node=idx,
            )
        result.triangles = triangulation.triangles

        result.candidate_edges = self.candidate_edges(nodes, triangulation.triangles)
        result.selected_edges = select_edges(
            result.candidate_edges, len(nodes), self.options.loop_fraction, self.prng
        )

        for edge in result.selected_edges:
            ribbon = self.build_edge(nodes, edge)
            if ribbon is not None:
                result.ribbons.append(ribbon)

        logger.info(
            "Path network built",
            nodes=len(nodes),
            triangles=len(result.triangles),
            candidates=len(result.candidate_edges),
            tree_edges=len(result.mst_edges),
            loops=len(result.loop_edges),
            ribbons=len(result.ribbons),
        )
        return result
