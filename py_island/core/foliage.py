"""
Foliage scattering over the band between the terrain contour and the
foliage boundary.

Triangles of the finished terrain mesh are filtered by slope, submersion
and band membership. Instances are then drawn proportionally to triangle
area, placed at a uniform barycentric point, aligned to the face normal and
given a random yaw and scale.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import structlog

from ..utils.alea_prng import AleaPRNG
from .contour import BoundaryCurve
from .mesh import Blueprint, MeshData, PlacedInstance
from ..utils.geometry import UP, quaternion_about_y, quaternion_from_unit_vectors, quaternion_multiply

logger = structlog.get_logger()

SEA_LEVEL = 0.0
AREA_UNIT = 100.0


@dataclass
class FoliageOptions:
    density: float = 1.0  # instances per AREA_UNIT
    max_count: Optional[int] = None
    max_slope: float = 35.0  # degrees
    base_scale: float = 1.0
    scale_jitter: tuple = (0.8, 1.2)
    band_width: float = 4.0  # informational, shown in the report


@dataclass
class FoliageReport:
    """What happened to every triangle, and where instances landed."""

    total_faces: int = 0
    rejected_slope: int = 0
    rejected_submerged: int = 0
    rejected_outside_band: int = 0
    rejected_inside_band: int = 0
    accepted: int = 0
    valid_area: float = 0.0
    requested: int = 0
    max_slope: float = 0.0
    band_width: float = 0.0
    pivots: List[np.ndarray] = field(default_factory=list)
    reason: Optional[str] = None

    def format(self, label: str = "Foliage") -> str:
        if not self.pivots:
            return "\n".join([
                f"No {label.lower()} generated.",
                f"Reason: {self.reason or 'No valid surface area found for placement.'}",
                "",
                "Current Settings:",
                f"- Max Slope Allowed:  {self.max_slope:7.1f}°",
                f"- {label} Band Width: {self.band_width:7.1f} units",
                "",
                "Debug Stats:",
                f"- Total surface faces:    {self.total_faces:7d}",
                f"- Rejected (too steep):   {self.rejected_slope:7d}",
                f"- Rejected (underwater):  {self.rejected_submerged:7d}",
                f"- Rejected (outside band):{self.rejected_outside_band:7d}",
                f"- Rejected (inside band): {self.rejected_inside_band:7d}",
                f"- Accepted faces:         {self.accepted:7d}",
                f"- Calculated valid area:  {self.valid_area:7.2f} units²",
            ])
        lines = [f"Generated {len(self.pivots)} {label.lower()} instances."]
        for i, p in enumerate(self.pivots):
            lines.append(f"{i + 1:4d}: ({p[0]:7.2f}, {p[1]:7.2f}, {p[2]:7.2f})")
        return "\n".join(lines)


@dataclass
class FoliageResult:
    instances: List[PlacedInstance]
    report: FoliageReport
    accepted_faces: np.ndarray  # triangle indices that passed every filter


def classify_faces(
    mesh: MeshData,
    outer: BoundaryCurve,
    inner: BoundaryCurve,
    max_slope: float,
    report: FoliageReport,
) -> np.ndarray:
    """
    Return indices of triangles foliage may grow on.

    Rejection reasons are checked in order (slope, submerged, outside the
    outer boundary, inside the inner boundary) and each triangle is counted
    under the first one that applies.
    """
    report.total_faces = mesh.triangle_count
    if mesh.triangle_count == 0:
        return np.zeros(0, dtype=np.int64)

    a, b, c = mesh.triangle_vertices()
    normals = mesh.face_normals()
    centroids = (a + b + c) / 3.0

    too_steep = normals[:, 1] < math.cos(math.radians(max_slope))
    submerged = (a[:, 1] <= SEA_LEVEL) & (b[:, 1] <= SEA_LEVEL) & (c[:, 1] <= SEA_LEVEL)
    outside = ~outer.contains(centroids[:, 0], centroids[:, 2])
    inside = inner.contains(centroids[:, 0], centroids[:, 2])

    remaining = np.ones(mesh.triangle_count, dtype=bool)
    for name, rejected in (
        ("rejected_slope", too_steep),
        ("rejected_submerged", submerged),
        ("rejected_outside_band", outside),
        ("rejected_inside_band", inside),
    ):
        hit = remaining & rejected
        setattr(report, name, int(hit.sum()))
        remaining &= ~rejected

    report.accepted = int(remaining.sum())
    return np.nonzero(remaining)[0]


def scatter_foliage(
    mesh: MeshData,
    outer: BoundaryCurve,
    inner: BoundaryCurve,
    models: Sequence[Blueprint],
    prng: AleaPRNG,
    options: Optional[FoliageOptions] = None,
) -> FoliageResult:
    """
    Scatter foliage instances over the accepted terrain triangles.

    Args:
        mesh: Finished terrain mesh
        outer: Outer band limit (terrain contour)
        inner: Inner band limit (foliage boundary)
        models: Foliage blueprints, used round-robin
        prng: Random source
        options: Density, limits and scale

    Returns:
        FoliageResult with instances and a report; an empty model pool or
        zero usable area gives no instances and a reason in the report
    """
    options = options or FoliageOptions()
    report = FoliageReport(max_slope=options.max_slope, band_width=options.band_width)

    faces = classify_faces(mesh, outer, inner, options.max_slope, report)
    areas = mesh.face_areas()[faces] if len(faces) else np.zeros(0)
    total_area = float(areas.sum())
    report.valid_area = total_area

    count = int(math.floor(total_area / AREA_UNIT * options.density))
    if options.max_count is not None and options.max_count >= 0:
        count = min(count, options.max_count)
    report.requested = count

    if not models:
        report.reason = "No foliage models loaded."
        logger.warning("Foliage skipped", reason=report.reason)
        return FoliageResult([], report, faces)
    if count == 0 or len(faces) == 0:
        report.reason = "No valid surface area found for placement."
        logger.warning("Foliage skipped", reason=report.reason, accepted=report.accepted)
        return FoliageResult([], report, faces)

    cdf = np.cumsum(areas)
    a, b, c = mesh.triangle_vertices()
    normals = mesh.face_normals()
    low, high = options.scale_jitter

    instances: List[PlacedInstance] = []
    for i in range(count):
        draw = prng.random() * total_area
        k = int(np.searchsorted(cdf, draw, side="left"))
        if k >= len(faces):
            continue
        tri = faces[k]

        u = prng.random()
        v = prng.random()
        if u + v > 1:
            u, v = 1 - u, 1 - v
        w = 1 - u - v
        point = u * a[tri] + v * b[tri] + w * c[tri]

        align = quaternion_from_unit_vectors(UP, normals[tri])
        rotation = quaternion_multiply(align, quaternion_about_y(prng.angle()))
        scale = options.base_scale * prng.uniform(low, high)

        instances.append(PlacedInstance(
            blueprint=models[i % len(models)],
            position=point,
            quaternion=rotation,
            scale=np.full(3, scale),
        ))
        report.pivots.append(point)

    logger.info(
        "Foliage scattered",
        instances=len(instances),
        accepted_faces=report.accepted,
        valid_area=round(total_area, 2),
    )
    return FoliageResult(instances, report, faces)
