"""
Immutable triangle-soup view of a mesh.

A :class:`Mesh` wraps a read-only ``(T, 3, 3)`` NumPy array holding the
three corners of every triangle.  No shared-vertex topology is kept:
slicing only ever needs individual triangles, and the contour
reconstructor recovers connectivity from the intersection points
themselves.  Meshes are supplied once per slicing run and never mutated;
operations such as :meth:`Mesh.resized` return a new instance.

Meshes normally arrive from an external loader as the flat vertex and
index buffers a tessellator produces (``x0, y0, z0, x1, ...`` and
triangle index triplets), so :meth:`Mesh.from_buffers` accepts exactly
that layout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .errors import InvalidGeometryError

logger = logging.getLogger(__name__)

Point3 = Tuple[float, float, float]


class Axis(str, Enum):
    """Slicing direction.  Also selects the 2D projection frame."""

    X = "x"
    Y = "y"
    Z = "z"

    @property
    def index(self) -> int:
        return "xyz".index(self.value)

    @classmethod
    def parse(cls, value: "str | Axis") -> "Axis":
        """Return the axis named by ``value`` (case insensitive)."""
        if isinstance(value, Axis):
            return value
        name = (value or "").strip().lower()
        try:
            return cls(name)
        except ValueError:
            raise InvalidGeometryError(f"Unknown slicing axis '{value}'. Must be one of x, y or z.") from None


@dataclass(frozen=True)
class MeshBBox:
    """Axis-aligned bounding box of a mesh."""

    min: Point3
    max: Point3

    def extent(self, axis: Axis) -> float:
        i = axis.index
        return self.max[i] - self.min[i]

    @property
    def size(self) -> Point3:
        return (
            self.max[0] - self.min[0],
            self.max[1] - self.min[1],
            self.max[2] - self.min[2],
        )


@dataclass(frozen=True)
class MeshStats:
    """Summary statistics shown next to a loaded model.

    ``volume`` is the bounding-box volume, not the enclosed solid volume.
    """

    dimensions: Point3
    volume: float
    triangle_count: int


@dataclass(frozen=True, eq=False)
class Mesh:
    """Read-only triangle soup.

    Attributes:
        triangles: Array of shape ``(T, 3, 3)``; ``triangles[t, k]`` is the
            k-th corner of triangle ``t``.  The array is flagged read-only
            so it can be shared between worker threads without locking.
    """

    triangles: np.ndarray

    def __post_init__(self) -> None:
        arr = np.array(self.triangles, dtype=np.float64, copy=True)
        if arr.size == 0:
            arr = arr.reshape(0, 3, 3)
        if arr.ndim != 3 or arr.shape[1:] != (3, 3):
            raise InvalidGeometryError(f"Triangle array must have shape (T, 3, 3), got {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise InvalidGeometryError("Mesh contains non-finite coordinates")
        arr.setflags(write=False)
        object.__setattr__(self, "triangles", arr)

    @classmethod
    def from_triangles(cls, triangles: Iterable[Sequence[Sequence[float]]]) -> "Mesh":
        """Build a mesh from an iterable of ``(a, b, c)`` corner triples."""
        return cls(np.asarray(list(triangles), dtype=np.float64))

    @classmethod
    def from_buffers(cls, vertices: Sequence[float], indices: Sequence[int]) -> "Mesh":
        """Build a mesh from flat vertex and index buffers.

        Args:
            vertices: Flat list of vertex coordinates (x0, y0, z0, x1, ...).
            indices: Flat list of integer indices; every three entries form
                a triangle.  A trailing incomplete triplet is ignored.

        Raises:
            InvalidGeometryError: If the vertex buffer length is not a
                multiple of three or an index is out of range.
        """
        if len(vertices) % 3 != 0:
            raise InvalidGeometryError("Vertex buffer length must be a multiple of 3")
        verts = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        usable = len(indices) - len(indices) % 3
        if usable != len(indices):
            logger.debug("from_buffers: ignoring %d trailing indices", len(indices) - usable)
        idx = np.asarray(indices[:usable], dtype=np.int64).reshape(-1, 3)
        if idx.size and (idx.min() < 0 or idx.max() >= len(verts)):
            raise InvalidGeometryError("Index buffer references a vertex outside the vertex buffer")
        return cls(verts[idx])

    def to_buffers(self) -> Tuple[List[float], List[int]]:
        """Return flat vertex and index buffers (one vertex per corner)."""
        flat = self.triangles.reshape(-1).tolist()
        return flat, list(range(len(self) * 3))

    def __len__(self) -> int:
        return int(self.triangles.shape[0])

    def bbox(self) -> MeshBBox:
        """Compute the axis-aligned bounding box.

        Raises:
            InvalidGeometryError: If the mesh has no triangles.
        """
        if len(self) == 0:
            raise InvalidGeometryError("Mesh has no triangles")
        pts = self.triangles.reshape(-1, 3)
        lo = pts.min(axis=0)
        hi = pts.max(axis=0)
        return MeshBBox(
            min=(float(lo[0]), float(lo[1]), float(lo[2])),
            max=(float(hi[0]), float(hi[1]), float(hi[2])),
        )

    def extent(self, axis: Axis) -> float:
        return self.bbox().extent(axis)

    def stats(self) -> MeshStats:
        size = self.bbox().size
        return MeshStats(
            dimensions=size,
            volume=size[0] * size[1] * size[2],
            triangle_count=len(self),
        )

    def resized(self, x: float, y: float, z: float) -> "Mesh":
        """Return a copy scaled so its bounding box measures ``(x, y, z)``.

        Scaling is applied about the origin, independently per axis.

        Raises:
            InvalidGeometryError: If the mesh is flat along any axis or a
                target dimension is not positive.
        """
        size = self.bbox().size
        if min(size) <= 0.0:
            raise InvalidGeometryError(f"Cannot resize a mesh with a zero dimension: {size}")
        if min(x, y, z) <= 0.0:
            raise InvalidGeometryError(f"Target dimensions must be positive: {(x, y, z)}")
        factors = np.array([x / size[0], y / size[1], z / size[2]], dtype=np.float64)
        logger.info("Resizing mesh %s -> %s", size, (x, y, z))
        return Mesh(self.triangles * factors)
