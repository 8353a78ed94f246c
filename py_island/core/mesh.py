"""
Indexed triangle mesh container.

Meshes are plain numpy buffers so renderers can upload them directly:
positions (N, 3), triangles (T, 3), UVs (N, 2), normals (N, 3) and
tangents (N, 4). Material groups are contiguous triangle ranges.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from ..utils.geometry import normalize

TEXTURE_SCALE = 20.0


class MaterialRole(str, Enum):
    GROUND_COVER = "ground_cover"
    GRASS = "grass"
    MUD = "mud"
    PATH = "path"
    WATER = "water"


@dataclass
class MeshGroup:
    """A contiguous triangle range rendered with one material."""
    role: MaterialRole
    start: int  # first triangle
    count: int  # number of triangles

    @property
    def stop(self) -> int:
        return self.start + self.count


@dataclass
class MeshData:
    """Indexed mesh with optional per-vertex attributes."""

    positions: np.ndarray
    triangles: np.ndarray
    uvs: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    tangents: Optional[np.ndarray] = None
    groups: List[MeshGroup] = field(default_factory=list)

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    @property
    def index_buffer(self) -> np.ndarray:
        """Flat uint32 index buffer."""
        return self.triangles.astype(np.uint32).ravel()

    @property
    def uv2(self) -> Optional[np.ndarray]:
        """Second UV channel (ambient occlusion maps), same as the first."""
        return self.uvs

    def group(self, role: MaterialRole) -> Optional[MeshGroup]:
        for g in self.groups:
            if g.role == role:
                return g
        return None

    def group_triangles(self, role: MaterialRole) -> np.ndarray:
        g = self.group(role)
        if g is None:
            return np.zeros((0, 3), dtype=self.triangles.dtype)
        return self.triangles[g.start:g.stop]

    def triangle_vertices(self):
        """Corner positions (A, B, C), each of shape (T, 3)."""
        tri = self.positions[self.triangles]
        return tri[:, 0], tri[:, 1], tri[:, 2]

    def face_normals(self) -> np.ndarray:
        a, b, c = self.triangle_vertices()
        return normalize(np.cross(b - a, c - a))

    def face_areas(self) -> np.ndarray:
        a, b, c = self.triangle_vertices()
        return 0.5 * np.linalg.norm(np.cross(b - a, c - a), axis=1)

    def compute_planar_uvs(self, texture_scale: float = TEXTURE_SCALE) -> None:
        self.uvs = planar_uvs(self.positions, texture_scale)

    def compute_vertex_normals(self) -> None:
        self.normals = vertex_normals(self.positions, self.triangles)

    def compute_tangents(self) -> None:
        if self.uvs is None or self.normals is None:
            raise ValueError("Tangents need UVs and normals")
        self.tangents = vertex_tangents(self.positions, self.triangles, self.uvs, self.normals)

    def validate_groups(self) -> bool:
        """True when groups tile every triangle exactly once, in order."""
        cursor = 0
        for g in self.groups:
            if g.start != cursor or g.count < 0:
                return False
            cursor = g.stop
        return cursor == self.triangle_count


@dataclass
class Blueprint:
    """
    A loaded model, reduced to what placement needs.

    Geometry stays with the caller; instances only hold a reference to the
    blueprint, so any number of placements share one model.
    """

    name: str
    bbox_min: np.ndarray
    bbox_max: np.ndarray

    def __post_init__(self):
        self.bbox_min = np.asarray(self.bbox_min, dtype=float)
        self.bbox_max = np.asarray(self.bbox_max, dtype=float)

    @property
    def size(self) -> np.ndarray:
        return self.bbox_max - self.bbox_min

    @property
    def volume(self) -> float:
        return float(np.prod(np.maximum(self.size, 0.0)))


@dataclass
class PlacedInstance:
    """A blueprint placed in the world: position, (x, y, z, w) rotation, scale."""

    blueprint: Blueprint
    position: np.ndarray
    quaternion: np.ndarray
    scale: np.ndarray

    @property
    def name(self) -> str:
        return self.blueprint.name


def merge_meshes(meshes: List[MeshData]) -> MeshData:
    """Concatenate meshes, offsetting indices and group ranges."""
    positions = []
    triangles = []
    groups: List[MeshGroup] = []
    vertex_offset = 0
    triangle_offset = 0
    for mesh in meshes:
        positions.append(mesh.positions)
        triangles.append(mesh.triangles + vertex_offset)
        for g in mesh.groups:
            groups.append(MeshGroup(g.role, g.start + triangle_offset, g.count))
        vertex_offset += mesh.vertex_count
        triangle_offset += mesh.triangle_count
    if not meshes:
        return MeshData(np.zeros((0, 3)), np.zeros((0, 3), dtype=np.int64))
    return MeshData(
        positions=np.vstack(positions),
        triangles=np.vstack(triangles).astype(np.int64),
        groups=groups,
    )


def planar_uvs(positions: np.ndarray, texture_scale: float = TEXTURE_SCALE) -> np.ndarray:
    """Top-down projection of (x, z) divided by the tiling scale."""
    return np.column_stack([positions[:, 0], positions[:, 2]]) / texture_scale


def vertex_normals(positions: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """Area-weighted vertex normals."""
    normals = np.zeros_like(positions, dtype=float)
    if len(triangles) == 0:
        return normals
    a = positions[triangles[:, 0]]
    b = positions[triangles[:, 1]]
    c = positions[triangles[:, 2]]
    face = np.cross(b - a, c - a)
    for corner in range(3):
        np.add.at(normals, triangles[:, corner], face)
    return normalize(normals)


def vertex_tangents(
    positions: np.ndarray, triangles: np.ndarray, uvs: np.ndarray, normals: np.ndarray
) -> np.ndarray:
    """
    Per-vertex tangents from UV derivatives.

    Tangent and bitangent directions are accumulated per triangle, then
    Gram-Schmidt orthogonalised against the vertex normal. The w component
    holds the handedness (+1/-1).
    """
    n_vertices = len(positions)
    tan1 = np.zeros((n_vertices, 3))
    tan2 = np.zeros((n_vertices, 3))
    tangents = np.zeros((n_vertices, 4))
    tangents[:, 3] = 1.0
    if len(triangles) == 0:
        return tangents

    v0 = positions[triangles[:, 0]]
    v1 = positions[triangles[:, 1]]
    v2 = positions[triangles[:, 2]]
    w0 = uvs[triangles[:, 0]]
    w1 = uvs[triangles[:, 1]]
    w2 = uvs[triangles[:, 2]]

    e1 = v1 - v0
    e2 = v2 - v0
    d1 = w1 - w0
    d2 = w2 - w0

    det = d1[:, 0] * d2[:, 1] - d2[:, 0] * d1[:, 1]
    valid = np.abs(det) > 1e-12
    r = np.zeros_like(det)
    r[valid] = 1.0 / det[valid]

    sdir = (e1 * d2[:, 1:2] - e2 * d1[:, 1:2]) * r[:, None]
    tdir = (e2 * d1[:, 0:1] - e1 * d2[:, 0:1]) * r[:, None]

    for corner in range(3):
        np.add.at(tan1, triangles[:, corner], sdir)
        np.add.at(tan2, triangles[:, corner], tdir)

    n = normals
    t = tan1 - n * np.sum(n * tan1, axis=1, keepdims=True)
    t = normalize(t)
    handedness = np.where(np.sum(np.cross(n, tan1) * tan2, axis=1) < 0.0, -1.0, 1.0)

    tangents[:, :3] = t
    tangents[:, 3] = handedness
    return tangents
