"""
Contour reconstruction: linking unordered slice segments into loops.

Crossing points computed independently for the two triangles sharing an
edge are numerically close but rarely bit-identical, so endpoints are
first merged through a :class:`SpatialHash` whose cells are ``eps``
wide.  The merged vertices and segments form an undirected graph in
which every vertex of a clean manifold cross-section has degree two;
walking that graph yields one closed loop per connected component.

Broken input (holes in the mesh, self-intersections, non-manifold
edges) never raises.  Walks are bounded by the number of edges, chains
that cannot be closed are emitted as open polylines, and the result is
flagged so the pipeline can report a ``non_manifold_contour`` warning.

After linking, closed loops are oriented by containment depth: outer
boundaries run counter-clockwise in the slice's (u, v) frame and holes
run clockwise.
"""

from __future__ import annotations

import logging
import math
import os
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .mesh import Axis, Point3
from .projection import Point2, polygon_area_2d, project_points
from .slicing import DEFAULT_EPSILON, SliceSegment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Contour:
    """An ordered polyline lying on one slice plane.

    Attributes:
        points: Vertices in traversal order.  For closed contours the
            edge from the last point back to the first is implicit.
        closed: False for best-effort open polylines.
        area: Signed area in the (u, v) frame (0 for open polylines).
        depth: Number of other closed contours enclosing this one.  Odd
            depth marks a hole.
    """

    points: List[Point3]
    closed: bool = True
    area: float = 0.0
    depth: int = 0

    @property
    def is_hole(self) -> bool:
        return self.closed and self.depth % 2 == 1


@dataclass
class ContourResult:
    """Contours recovered from one plane's segments plus diagnostics."""

    contours: List[Contour] = field(default_factory=list)
    open_count: int = 0
    branch_count: int = 0

    @property
    def non_manifold(self) -> bool:
        return self.open_count > 0 or self.branch_count > 0


class SpatialHash:
    """Tolerance-bucketed point index.

    Points are bucketed into cubic cells of side ``eps``.  A lookup scans
    the 27 cells around the query so that any stored point within ``eps``
    is found regardless of where cell boundaries fall.  When several
    stored points match, the earliest inserted one wins, which keeps
    results independent of dictionary iteration order.
    """

    def __init__(self, eps: float) -> None:
        if eps <= 0.0:
            raise ValueError("eps must be positive for snapping")
        self.eps = eps
        self._eps_sq = eps * eps
        self._cells: Dict[Tuple[int, int, int], List[int]] = {}
        self.points: List[Point3] = []

    def _cell(self, p: Sequence[float]) -> Tuple[int, int, int]:
        return (
            math.floor(p[0] / self.eps),
            math.floor(p[1] / self.eps),
            math.floor(p[2] / self.eps),
        )

    def find(self, p: Sequence[float]) -> Optional[int]:
        cx, cy, cz = self._cell(p)
        best: Optional[int] = None
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for dz in (-1, 0, 1):
                    for idx in self._cells.get((cx + dx, cy + dy, cz + dz), ()):
                        q = self.points[idx]
                        d2 = (p[0] - q[0]) ** 2 + (p[1] - q[1]) ** 2 + (p[2] - q[2]) ** 2
                        if d2 < self._eps_sq and (best is None or idx < best):
                            best = idx
        return best

    def insert(self, p: Point3) -> int:
        """Return the index of ``p``, adding it if no stored point is within ``eps``."""
        idx = self.find(p)
        if idx is not None:
            return idx
        idx = len(self.points)
        self.points.append(p)
        self._cells.setdefault(self._cell(p), []).append(idx)
        return idx

    def __len__(self) -> int:
        return len(self.points)


def build_snapped_points(
    segments: Sequence[SliceSegment],
    eps: float,
) -> Tuple[List[Point3], List[Tuple[int, int]]]:
    """Merge segment endpoints within ``eps`` and build an undirected edge list.

    Returns:
        ``(points, edges)``: canonical vertices and ``(i, j)`` pairs with
        ``i < j`` in first-seen order.  Degenerate edges whose endpoints
        collapse onto one vertex and duplicate edges are removed.
    """
    index = SpatialHash(eps)
    edges: List[Tuple[int, int]] = []
    seen = set()
    for seg in segments:
        i = index.insert(seg.p1)
        j = index.insert(seg.p2)
        if i == j:
            continue
        edge = (i, j) if i < j else (j, i)
        if edge in seen:
            continue
        seen.add(edge)
        edges.append(edge)
    return index.points, edges


def _point_line_distance(p: Point3, a: Point3, b: Point3) -> float:
    ab = (b[0] - a[0], b[1] - a[1], b[2] - a[2])
    ap = (p[0] - a[0], p[1] - a[1], p[2] - a[2])
    length = math.sqrt(ab[0] ** 2 + ab[1] ** 2 + ab[2] ** 2)
    if length == 0.0:
        return math.sqrt(ap[0] ** 2 + ap[1] ** 2 + ap[2] ** 2)
    cross = (
        ab[1] * ap[2] - ab[2] * ap[1],
        ab[2] * ap[0] - ab[0] * ap[2],
        ab[0] * ap[1] - ab[1] * ap[0],
    )
    return math.sqrt(cross[0] ** 2 + cross[1] ** 2 + cross[2] ** 2) / length


def drop_collinear_points(points: Sequence[Point3], eps: float) -> List[Point3]:
    """Remove vertices of a closed loop lying within ``eps`` of the line through their neighbours."""
    pts = list(points)
    i = 0
    while len(pts) > 3 and i < len(pts):
        prev_pt = pts[i - 1]
        next_pt = pts[(i + 1) % len(pts)]
        if _point_line_distance(pts[i], prev_pt, next_pt) < eps:
            del pts[i]
            i = max(i - 1, 0)
        else:
            i += 1
    return pts


def _point_in_polygon(pt: Point2, poly: Sequence[Point2]) -> bool:
    """Even-odd ray casting test."""
    x, y = pt
    inside = False
    n = len(poly)
    for k in range(n):
        x0, y0 = poly[k]
        x1, y1 = poly[(k + 1) % n]
        if (y0 > y) != (y1 > y):
            x_cross = x0 + (y - y0) * (x1 - x0) / (y1 - y0)
            if x < x_cross:
                inside = not inside
    return inside


def orient_contours(contours: Sequence[Contour], axis: Axis) -> List[Contour]:
    """Orient closed contours by containment depth.

    Outer boundaries (even depth) become counter-clockwise and holes (odd
    depth) clockwise in the (u, v) frame of ``axis``.  Open polylines are
    passed through unchanged.
    """
    uvs = [project_points(c.points, axis) for c in contours]
    oriented: List[Contour] = []
    for k, contour in enumerate(contours):
        if not contour.closed or len(contour.points) < 3:
            oriented.append(contour)
            continue
        probe = uvs[k][0]
        depth = 0
        for m, other in enumerate(contours):
            if m == k or not other.closed or len(other.points) < 3:
                continue
            if _point_in_polygon(probe, uvs[m]):
                depth += 1
        area = polygon_area_2d(uvs[k])
        want_ccw = depth % 2 == 0
        points = contour.points
        if (area > 0.0) != want_ccw and area != 0.0:
            points = list(reversed(points))
            area = -area
        oriented.append(Contour(points=points, closed=True, area=area, depth=depth))
    return oriented


def link_segments(
    segments: Sequence[SliceSegment],
    axis: Axis,
    eps: float = DEFAULT_EPSILON,
    simplify: bool = True,
) -> ContourResult:
    """Construct contours from one plane's raw segments.

    Args:
        segments: Intersection segments from
            :func:`~slicenest.services.slicing.intersect_mesh_with_plane`.
        axis: Slicing axis, used for the (u, v) frame of the signed area.
        eps: Tolerance for endpoint merging.
        simplify: Drop collinear vertices from closed loops, so that a
            face split into several triangles contributes one straight edge.

    Returns:
        A :class:`ContourResult`.  Contours appear in the order their
        first segment appears in ``segments``.
    """
    result = ContourResult()
    if not segments:
        return result
    points, edges = build_snapped_points(segments, eps)
    adj: Dict[int, List[int]] = {i: [] for i in range(len(points))}
    for ei, (i, j) in enumerate(edges):
        adj[i].append(ei)
        adj[j].append(ei)
    result.branch_count = sum(1 for incident in adj.values() if len(incident) != 2)

    used = [False] * len(edges)
    max_steps = len(edges)

    def advance(vertex: int) -> Optional[int]:
        for ei in adj[vertex]:
            if not used[ei]:
                used[ei] = True
                i, j = edges[ei]
                return j if i == vertex else i
        return None

    for e0, (a, b) in enumerate(edges):
        if used[e0]:
            continue
        used[e0] = True
        chain = deque([a, b])
        closed = False
        steps = 1
        while steps < max_steps:
            nxt = advance(chain[-1])
            if nxt is None:
                break
            steps += 1
            if nxt == chain[0]:
                closed = True
                break
            chain.append(nxt)
        if not closed:
            # Extend the open chain backwards so it is emitted whole.
            while steps < max_steps:
                prv = advance(chain[0])
                if prv is None:
                    break
                steps += 1
                if prv == chain[-1]:
                    closed = True
                    break
                chain.appendleft(prv)
        loop = [points[i] for i in chain]
        if closed:
            if len(set(chain)) < 3:
                continue
            if simplify:
                loop = drop_collinear_points(loop, eps)
            result.contours.append(Contour(points=loop, closed=True))
        elif len(loop) >= 2:
            result.open_count += 1
            result.contours.append(Contour(points=loop, closed=False))

    result.contours = orient_contours(result.contours, axis)
    if result.non_manifold or os.getenv("SLICE_DEBUG"):
        logger.debug(
            "link_segments: segments=%d vertices=%d edges=%d contours=%d open=%d branching=%d",
            len(segments),
            len(points),
            len(edges),
            len(result.contours),
            result.open_count,
            result.branch_count,
        )
    return result
