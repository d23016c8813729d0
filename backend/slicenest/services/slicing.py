"""
Mesh–plane intersection.

This module defines the slicing plane representation and the helpers
that turn a :class:`~slicenest.services.mesh.Mesh` into raw line
segments for each requested plane.  Planes are always perpendicular to
one of the principal axes, so a ``SlicePlane`` is fully described by its
axis and its offset along that axis; the origin and normal carry the
same information for the per-triangle distance computations.

Plane offsets are spread evenly *inside* the mesh extent: for ``N``
planes over ``[min, max]`` the offsets are ``min + i * range / (N + 1)``
for ``i = 1..N``.  The end caps are excluded because a plane lying on a
flat top or bottom face only touches coplanar triangles and yields a
zero-area cross-section.

Debug logging can be enabled via the ``SLICE_DEBUG`` environment
variable; when set, per-plane triangle statistics are emitted.
"""

from __future__ import annotations

import math
import os
import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from .errors import InvalidGeometryError
from .mesh import Axis, Mesh, Point3

logger = logging.getLogger(__name__)

# Tolerance, in model units, used to treat near-zero plane distances as
# zero and near-equal points as identical.
DEFAULT_EPSILON: float = float(os.getenv("SLICE_EPSILON", "1e-5"))


@dataclass(frozen=True)
class SlicePlane:
    """Axis-aligned slicing plane.

    Attributes:
        axis: Axis the plane is perpendicular to.
        offset: Constant coordinate along ``axis``.  For example a ``Z``
            plane with ``offset=2.5`` holds every point with ``z = 2.5``.
        origin: A point on the plane (the offset on ``axis``, zero elsewhere).
        normal: Unit vector along ``axis``.
    """

    axis: Axis
    offset: float
    origin: Point3
    normal: Point3


@dataclass(frozen=True)
class SliceSegment:
    """A line segment resulting from intersecting a triangle with a plane.

    Each segment is defined by two distinct points ``p1`` and ``p2``
    lying on the slice plane.  Direction carries no meaning.
    """

    p1: Point3
    p2: Point3


def make_slice_plane(axis: "Axis | str", offset: float) -> SlicePlane:
    """Construct a :class:`SlicePlane` perpendicular to ``axis`` at ``offset``."""
    ax = Axis.parse(axis)
    origin = [0.0, 0.0, 0.0]
    normal = [0.0, 0.0, 0.0]
    origin[ax.index] = float(offset)
    normal[ax.index] = 1.0
    plane = SlicePlane(
        axis=ax,
        offset=float(offset),
        origin=(origin[0], origin[1], origin[2]),
        normal=(normal[0], normal[1], normal[2]),
    )
    if os.getenv("SLICE_DEBUG"):
        logger.debug("SlicePlane created: axis=%s offset=%s", plane.axis.value, plane.offset)
    return plane


def compute_plane_offsets(min_value: float, max_value: float, count: int) -> List[float]:
    """Return ``count`` equally spaced offsets strictly inside ``(min, max)``.

    Raises:
        InvalidGeometryError: If the range is not positive or ``count < 1``.
    """
    span = max_value - min_value
    if not span > 0.0:
        raise InvalidGeometryError(f"Mesh has no extent along the slicing axis (range={span})")
    if count < 1:
        raise InvalidGeometryError(f"Slice count must be at least 1, got {count}")
    step = span / (count + 1)
    return [min_value + i * step for i in range(1, count + 1)]


def count_from_layer_height(extent: float, layer_height: float) -> int:
    """Convert a requested layer height into a slice count.

    One plane is placed per layer boundary inside the extent, with a floor
    of two slices so a very coarse layer height still yields a stack.

    Raises:
        InvalidGeometryError: If ``layer_height`` or ``extent`` is not positive.
    """
    if not layer_height > 0.0:
        raise InvalidGeometryError(f"Layer height must be greater than 0, got {layer_height}")
    if not extent > 0.0:
        raise InvalidGeometryError(f"Mesh has no extent along the slicing axis (range={extent})")
    count = math.floor(extent / layer_height - 1)
    if count < 2:
        logger.warning("Layer height %s too large for extent %s; defaulting to 2 slices", layer_height, extent)
        count = 2
    return count


def signed_distance_to_plane(p: Point3, plane: SlicePlane) -> float:
    """Signed distance from ``p`` to ``plane`` (positive along the normal)."""
    o = plane.origin
    n = plane.normal
    return (p[0] - o[0]) * n[0] + (p[1] - o[1]) * n[1] + (p[2] - o[2]) * n[2]


def _dist_sq(p: Point3, q: Point3) -> float:
    return (p[0] - q[0]) ** 2 + (p[1] - q[1]) ** 2 + (p[2] - q[2]) ** 2


def intersect_triangle_with_plane(
    A: Point3,
    B: Point3,
    C: Point3,
    plane: SlicePlane,
    eps: float = DEFAULT_EPSILON,
) -> List[Point3]:
    """Intersect a single triangle with a plane.

    Vertices are classified by signed distance with tolerance ``eps``.
    Edges whose endpoints lie on strictly opposite sides contribute a
    linearly interpolated crossing point; vertices within ``eps`` of the
    plane contribute themselves.  Points closer than ``eps`` to one
    another are merged, so a plane running through a vertex is counted
    once.

    Args:
        A: First vertex of the triangle.
        B: Second vertex of the triangle.
        C: Third vertex of the triangle.
        plane: The slice plane.
        eps: Tolerance for treating distances as zero.

    Returns:
        Zero, one or two intersection points.  Triangles entirely on one
        side of the plane and triangles coplanar with it give ``[]``; a
        triangle touching the plane at a single vertex gives one point.
    """
    dA = signed_distance_to_plane(A, plane)
    dB = signed_distance_to_plane(B, plane)
    dC = signed_distance_to_plane(C, plane)
    if abs(dA) <= eps and abs(dB) <= eps and abs(dC) <= eps:
        return []
    if (dA > eps and dB > eps and dC > eps) or (dA < -eps and dB < -eps and dC < -eps):
        return []
    verts = (A, B, C)
    ds = (dA, dB, dC)
    points: List[Point3] = []
    for i, j in ((0, 1), (1, 2), (2, 0)):
        d_i = ds[i]
        d_j = ds[j]
        if (d_i > eps and d_j < -eps) or (d_i < -eps and d_j > eps):
            P = verts[i]
            Q = verts[j]
            t = d_i / (d_i - d_j)
            R = (
                P[0] + (Q[0] - P[0]) * t,
                P[1] + (Q[1] - P[1]) * t,
                P[2] + (Q[2] - P[2]) * t,
            )
            points.append(R)
    for v, d in zip(verts, ds):
        if abs(d) <= eps:
            points.append(v)
    eps_sq = eps * eps
    unique: List[Point3] = []
    for p in points:
        if all(_dist_sq(p, q) >= eps_sq for q in unique):
            unique.append(p)
    return unique


def _segment_key(seg: SliceSegment, eps: float) -> Tuple[Tuple[int, int, int], Tuple[int, int, int]]:
    k1 = tuple(int(round(c / eps)) for c in seg.p1)
    k2 = tuple(int(round(c / eps)) for c in seg.p2)
    return (k1, k2) if k1 <= k2 else (k2, k1)  # type: ignore[return-value]


def intersect_mesh_with_plane(
    mesh: Mesh,
    plane: SlicePlane,
    eps: float = DEFAULT_EPSILON,
) -> List[SliceSegment]:
    """Intersect an entire mesh with a plane and collect line segments.

    Triangles that cannot reach the plane are rejected in one vectorised
    pass over the triangle array; the remaining candidates are handed to
    :func:`intersect_triangle_with_plane` in mesh order.  Every triangle
    yielding exactly two points produces one :class:`SliceSegment`.  When
    the plane runs along a mesh edge both adjacent triangles report the
    same segment, so duplicates (order-insensitive, within ``eps``) are
    dropped.

    Args:
        mesh: The mesh to slice.
        plane: The slice plane.
        eps: Tolerance used in distance comparisons.

    Returns:
        Segments in mesh triangle order.  A plane outside the mesh extent
        yields an empty list.
    """
    tris = mesh.triangles
    if len(tris) == 0:
        return []
    d = tris[:, :, plane.axis.index] - plane.offset
    above = np.all(d > eps, axis=1)
    below = np.all(d < -eps, axis=1)
    coplanar = np.all(np.abs(d) <= eps, axis=1)
    candidates = np.nonzero(~(above | below | coplanar))[0]

    segs: List[SliceSegment] = []
    seen = set()
    touching = 0
    for t in candidates.tolist():
        a, b, c = (tuple(v) for v in tris[t].tolist())
        pts = intersect_triangle_with_plane(a, b, c, plane, eps=eps)
        if len(pts) != 2:
            touching += 1
            continue
        seg = SliceSegment(p1=pts[0], p2=pts[1])
        key = _segment_key(seg, eps)
        if key in seen:
            continue
        seen.add(key)
        segs.append(seg)
    if os.getenv("SLICE_DEBUG"):
        logger.debug(
            "intersect_mesh_with_plane: axis=%s offset=%.6g inspected=%d candidates=%d coplanar=%d touching=%d segments=%d",
            plane.axis.value,
            plane.offset,
            len(tris),
            len(candidates),
            int(coplanar.sum()),
            touching,
            len(segs),
        )
    return segs
