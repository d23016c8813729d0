"""
Projection of slice contours into the plane's local 2D frame.

Every slicing axis has a fixed (u, v) convention shared with the viewer
and the exporters so that a flattened part lines up with the 3D model:

- ``Z`` → ``(u, v) = (x, y)``
- ``Y`` → ``(u, v) = (x, z)``
- ``X`` → ``(u, v) = (y, z)``

The dropped coordinate is the plane offset itself, so
:func:`lift_uv_to_3d` recovers the original 3D points exactly.

This module also defines the :class:`Slice` record produced by the
pipeline together with its 2D bounding box.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Sequence, Tuple

from .mesh import Axis, Point3

if TYPE_CHECKING:
    from .contours import Contour
    from .slicing import SliceSegment

Point2 = Tuple[float, float]

# Indices of the (u, v) coordinates for each slicing axis.
AXIS_UV: Dict[Axis, Tuple[int, int]] = {
    Axis.Z: (0, 1),
    Axis.Y: (0, 2),
    Axis.X: (1, 2),
}


def project_point_to_plane_uv(p: Sequence[float], axis: Axis) -> Point2:
    """Project a 3D point onto the (u, v) frame of planes perpendicular to ``axis``."""
    iu, iv = AXIS_UV[axis]
    return (p[iu], p[iv])


def project_points(points: Iterable[Sequence[float]], axis: Axis) -> List[Point2]:
    iu, iv = AXIS_UV[axis]
    return [(p[iu], p[iv]) for p in points]


def lift_uv_to_3d(points_uv: Iterable[Point2], axis: Axis, offset: float) -> List[Point3]:
    """Lift (u, v) points back onto the plane ``axis = offset``."""
    result: List[Point3] = []
    for u, v in points_uv:
        if axis is Axis.Z:
            result.append((u, v, offset))
        elif axis is Axis.Y:
            result.append((u, offset, v))
        else:
            result.append((offset, u, v))
    return result


def polygon_area_2d(points_uv: Sequence[Point2]) -> float:
    """Compute the signed area of a 2D polygon using the shoelace formula.

    The polygon is implicitly closed.  The area is positive for
    counter-clockwise order and negative for clockwise order.
    """
    n = len(points_uv)
    if n < 3:
        return 0.0
    area = 0.0
    for i in range(n):
        u0, v0 = points_uv[i]
        u1, v1 = points_uv[(i + 1) % n]
        area += u0 * v1 - u1 * v0
    return 0.5 * area


@dataclass(frozen=True)
class SliceBounds:
    """Axis-aligned bounding box in a slice's (u, v) frame."""

    min_x: float = 0.0
    min_y: float = 0.0
    max_x: float = 0.0
    max_y: float = 0.0

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def is_empty(self) -> bool:
        return self.width <= 0.0 or self.height <= 0.0


def compute_slice_bounds(contours: Iterable[Sequence[Sequence[float]]], axis: Axis) -> SliceBounds:
    """Union bounding box of all contour points projected for ``axis``.

    A slice without points gets an all-zero box.
    """
    us: List[float] = []
    vs: List[float] = []
    for points in contours:
        for u, v in project_points(points, axis):
            us.append(u)
            vs.append(v)
    if not us:
        return SliceBounds()
    return SliceBounds(min_x=min(us), min_y=min(vs), max_x=max(us), max_y=max(vs))


@dataclass(frozen=True)
class Slice:
    """A planar cross-section of the mesh.

    Attributes:
        id: 1-based index of the plane in offset order.
        offset: Plane offset along ``axis``.
        axis: Slicing axis.
        contours: Reconstructed contours (3D points on the plane).
        segments: Raw intersection segments, kept for wireframe display.
        bounds: Bounding box of all contours in the (u, v) frame.
        non_manifold: True when at least one contour is a best-effort
            open polyline or the linking graph had a branching vertex.
    """

    id: int
    offset: float
    axis: Axis
    contours: List["Contour"] = field(default_factory=list)
    segments: List["SliceSegment"] = field(default_factory=list)
    bounds: SliceBounds = field(default_factory=SliceBounds)
    non_manifold: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.contours or self.bounds.is_empty

    def contours_2d(self) -> List[List[Point2]]:
        """Contour points in the documented (u, v) frame."""
        return [project_points(c.points, self.axis) for c in self.contours]
