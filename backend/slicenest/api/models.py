"""
Pydantic data models for the slicing API.

These models define the shapes of requests and responses exchanged
with the host application.  Meshes travel as the flat vertex/index
buffers an external loader produces; slices and sheets come back with
contour points both in 3D and in the documented 2D (u, v) frame so
viewers and exporters never need to re-derive axis conventions.

The ``from_*`` class methods convert service-layer records into API
responses.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..services.errors import PipelineWarning
from ..services.mesh import Mesh, MeshBBox, MeshStats
from ..services.nesting import MaterialSettings, NestResult, PlacedSlice, Sheet
from ..services.pipeline import LaminationResult
from ..services.projection import Slice, SliceBounds


class MeshPayload(BaseModel):
    """Triangle mesh as flat buffers."""

    vertices: List[float] = Field(..., description="Flat list of vertex positions (x, y, z …)")
    indices: List[int] = Field(..., description="Index buffer; every three entries form a triangle")

    def to_mesh(self) -> Mesh:
        return Mesh.from_buffers(self.vertices, self.indices)

    @classmethod
    def from_mesh(cls, mesh: Mesh) -> "MeshPayload":
        vertices, indices = mesh.to_buffers()
        return cls(vertices=vertices, indices=indices)


class MeshBBoxModel(BaseModel):
    """Axis‑aligned bounding box for a mesh."""

    min: List[float] = Field(..., description="Minimum x, y, z coordinates of the mesh")
    max: List[float] = Field(..., description="Maximum x, y, z coordinates of the mesh")

    @classmethod
    def from_bbox(cls, bbox: MeshBBox) -> "MeshBBoxModel":
        return cls(min=list(bbox.min), max=list(bbox.max))


class MeshStatsResponse(BaseModel):
    """Dimensions and counts shown next to a loaded model."""

    dimensions: List[float] = Field(..., description="Bounding box size along x, y, z")
    volume: float = Field(..., description="Bounding box volume")
    triangleCount: int = Field(..., description="Number of triangles in the mesh")
    bbox: MeshBBoxModel

    @classmethod
    def from_mesh(cls, mesh: Mesh) -> "MeshStatsResponse":
        stats: MeshStats = mesh.stats()
        return cls(
            dimensions=list(stats.dimensions),
            volume=stats.volume,
            triangleCount=stats.triangle_count,
            bbox=MeshBBoxModel.from_bbox(mesh.bbox()),
        )


class ResizeRequest(BaseModel):
    """Scale a mesh so its bounding box matches ``dimensions``."""

    mesh: MeshPayload
    dimensions: List[float] = Field(..., min_length=3, max_length=3, description="Target x, y, z size")


class MaterialModel(BaseModel):
    """Sheet stock settings."""

    width: float = Field(default=200.0, gt=0, description="Sheet width")
    length: float = Field(default=200.0, gt=0, description="Sheet length (height of the layout)")
    thickness: float = Field(default=3.0, gt=0, description="Material thickness")
    unit: Literal["mm", "in"] = Field(default="mm", description="Unit of all lengths")
    spacing: float = Field(default=0.0, ge=0, description="Gap kept between neighbouring parts")
    margin: float = Field(default=0.0, ge=0, description="Unusable border on each sheet edge")

    def to_settings(self) -> MaterialSettings:
        return MaterialSettings(
            width=self.width,
            length=self.length,
            thickness=self.thickness,
            unit=self.unit,
            spacing=self.spacing,
            margin=self.margin,
        )

    @classmethod
    def from_settings(cls, material: MaterialSettings) -> "MaterialModel":
        return cls(
            width=material.width,
            length=material.length,
            thickness=material.thickness,
            unit=material.unit,  # type: ignore[arg-type]
            spacing=material.spacing,
            margin=material.margin,
        )


class LaminateRequest(BaseModel):
    """Request body for slicing a mesh and nesting the result.

    Either ``count`` or ``layerHeight`` must be given.  Validation of
    their values (positive, mutually exclusive) happens in the pipeline
    so that it is reported uniformly as an invalid-geometry error.
    """

    mesh: MeshPayload
    axis: Literal["x", "y", "z"] = Field(default="z", description="Slicing axis")
    count: Optional[int] = Field(default=None, description="Number of interior slicing planes")
    layerHeight: Optional[float] = Field(default=None, description="Distance between slicing planes")
    material: MaterialModel = Field(default_factory=MaterialModel)
    maxWorkers: Optional[int] = Field(default=None, ge=1, le=32, description="Threads used for slicing")
    session: Optional[str] = Field(
        default=None,
        description="Job grouping key; a new job cancels the session's running job",
    )


class BoundsModel(BaseModel):
    minX: float
    minY: float
    maxX: float
    maxY: float
    width: float
    height: float

    @classmethod
    def from_bounds(cls, b: SliceBounds) -> "BoundsModel":
        return cls(minX=b.min_x, minY=b.min_y, maxX=b.max_x, maxY=b.max_y, width=b.width, height=b.height)

    def to_bounds(self) -> SliceBounds:
        return SliceBounds(min_x=self.minX, min_y=self.minY, max_x=self.maxX, max_y=self.maxY)


class ContourModel(BaseModel):
    points: List[List[float]] = Field(..., description="3D points on the slice plane")
    points2d: List[List[float]] = Field(..., description="Points in the slice's (u, v) frame")
    closed: bool
    area: float = Field(..., description="Signed area in the (u, v) frame")
    hole: bool


class SliceModel(BaseModel):
    id: int
    offset: float
    axis: str
    contours: List[ContourModel]
    segments: List[List[List[float]]] = Field(..., description="Raw segments as [[x, y, z], [x, y, z]] pairs")
    bounds: BoundsModel
    nonManifold: bool

    @classmethod
    def from_slice(cls, s: Slice) -> "SliceModel":
        contours = []
        for c, pts2d in zip(s.contours, s.contours_2d()):
            contours.append(
                ContourModel(
                    points=[list(p) for p in c.points],
                    points2d=[list(p) for p in pts2d],
                    closed=c.closed,
                    area=c.area,
                    hole=c.is_hole,
                )
            )
        return cls(
            id=s.id,
            offset=s.offset,
            axis=s.axis.value,
            contours=contours,
            segments=[[list(seg.p1), list(seg.p2)] for seg in s.segments],
            bounds=BoundsModel.from_bounds(s.bounds),
            nonManifold=s.non_manifold,
        )


class PlacedSliceModel(BaseModel):
    sliceId: int
    sheetId: int
    x: float
    y: float
    rotation: int = Field(..., description="Counter-clockwise rotation in degrees (0 or 90)")
    width: float
    height: float
    contours: List[List[List[float]]] = Field(..., description="Contour points in sheet coordinates")

    @classmethod
    def from_placed(cls, item: PlacedSlice) -> "PlacedSliceModel":
        return cls(
            sliceId=item.slice.id,
            sheetId=item.sheet_id,
            x=item.x,
            y=item.y,
            rotation=item.rotation,
            width=item.width,
            height=item.height,
            contours=[[list(p) for p in c] for c in item.contours_on_sheet()],
        )


class SheetModel(BaseModel):
    id: int
    width: float
    height: float
    items: List[PlacedSliceModel]

    @classmethod
    def from_sheet(cls, sheet: Sheet) -> "SheetModel":
        return cls(
            id=sheet.id,
            width=sheet.width,
            height=sheet.height,
            items=[PlacedSliceModel.from_placed(it) for it in sheet.items],
        )


class WarningModel(BaseModel):
    kind: str
    message: str
    sliceId: Optional[int] = None

    @classmethod
    def from_warning(cls, w: PipelineWarning) -> "WarningModel":
        return cls(kind=w.kind.value, message=w.message, sliceId=w.slice_id)


class LaminateResponse(BaseModel):
    """Slices and their sheet layout."""

    axis: str
    planes: List[float] = Field(..., description="Offsets of every computed plane")
    material: MaterialModel
    slices: List[SliceModel]
    sheets: List[SheetModel]
    unplaced: List[int] = Field(default_factory=list, description="Slices that fit no sheet")
    warnings: List[WarningModel] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: LaminationResult) -> "LaminateResponse":
        return cls(
            axis=result.axis.value,
            planes=result.planes,
            material=MaterialModel.from_settings(result.material),
            slices=[SliceModel.from_slice(s) for s in result.slices],
            sheets=[SheetModel.from_sheet(sh) for sh in result.sheets],
            unplaced=result.unplaced,
            warnings=[WarningModel.from_warning(w) for w in result.warnings],
        )


class NestItem(BaseModel):
    """A slice footprint to nest without its geometry."""

    id: int
    bounds: BoundsModel


class NestRequest(BaseModel):
    items: List[NestItem]
    material: MaterialModel = Field(default_factory=MaterialModel)


class NestResponse(BaseModel):
    sheets: List[SheetModel]
    unplaced: List[int] = Field(default_factory=list)
    warnings: List[WarningModel] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: NestResult) -> "NestResponse":
        return cls(
            sheets=[SheetModel.from_sheet(sh) for sh in result.sheets],
            unplaced=result.unplaced,
            warnings=[WarningModel.from_warning(w) for w in result.warnings],
        )


class JobInfo(BaseModel):
    """Status of a background slicing job."""

    jobId: str
    session: Optional[str] = None
    status: str = Field(..., description="queued, running, done, failed or cancelled")
    current: int = Field(0, description="Planes processed so far")
    total: int = Field(0, description="Planes in the run")
    error: Optional[str] = None
    result: Optional[LaminateResponse] = None
