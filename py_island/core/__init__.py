"""
Core island generation functionality.
"""

from .contour import BoundaryCurve, ContourBuilder, ContourOptions, ContourResult
from .depressions import DepressionCarver, FeatureState, Lake, MudPuddle, RelaxationOptions
from .diagnostics import Diagnostic, DiagnosticKind, Diagnostics, InsufficientInputError
from .foliage import FoliageOptions, FoliageReport, scatter_foliage
from .island import IslandGenerator, IslandResult, TerrainResult
from .mesh import Blueprint, MaterialRole, MeshData, MeshGroup, PlacedInstance
from .noise_synth import HeightNoise, generate_noise
from .paths import PathNetworkBuilder, PathNetworkResult, PathOptions
from .raycast import RayHit, TerrainRaycaster
from .terrain_mesh import TerrainMeshBuilder, TerrainOptions
from .union_find import UnionFind

__all__ = ['BoundaryCurve', 'ContourBuilder', 'ContourOptions', 'ContourResult',
           'DepressionCarver', 'FeatureState', 'Lake', 'MudPuddle', 'RelaxationOptions',
           'Diagnostic', 'DiagnosticKind', 'Diagnostics', 'InsufficientInputError',
           'FoliageOptions', 'FoliageReport', 'scatter_foliage',
           'IslandGenerator', 'IslandResult', 'TerrainResult',
           'Blueprint', 'MaterialRole', 'MeshData', 'MeshGroup', 'PlacedInstance',
           'HeightNoise', 'generate_noise',
           'PathNetworkBuilder', 'PathNetworkResult', 'PathOptions',
           'RayHit', 'TerrainRaycaster', 'TerrainMeshBuilder', 'TerrainOptions', 'UnionFind']
