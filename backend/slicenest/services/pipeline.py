"""
Slicing run orchestration with progress reporting and cancellation.

A run takes an immutable :class:`~slicenest.services.mesh.Mesh`, a
:class:`SliceSettings` request and optionally a
:class:`~slicenest.services.nesting.MaterialSettings`, and produces
slices (and sheets).  Each plane is independent: intersection, contour
linking and projection only touch that plane's own segments, so planes
may be processed sequentially or by a thread pool.  Either way results
are joined in plane offset order.

Long runs cooperate with the host application.  After each plane the
optional ``progress`` callback receives ``(current, total)``.  Every
``YIELD_EVERY`` planes the run reaches a suspension point where it
checks its :class:`CancellationToken` and gives up control: the
coroutine variant awaits ``asyncio.sleep(0)`` so an event loop stays
responsive, the synchronous variant sleeps for zero seconds so other
host threads get the interpreter.  A cancelled run raises
:class:`~slicenest.services.errors.SliceCancelledError` and publishes
no partial slices.

Invalid requests (flat mesh, empty mesh, non-positive count or layer
height, unusable material) raise
:class:`~slicenest.services.errors.InvalidGeometryError` before any
plane is processed.  All other conditions are returned as warnings.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .contours import link_segments
from .errors import (
    InvalidGeometryError,
    PipelineWarning,
    SliceCancelledError,
    WarningKind,
    make_warning,
)
from .mesh import Axis, Mesh
from .nesting import MaterialSettings, Sheet, nest_slices
from .projection import Slice, compute_slice_bounds
from .slicing import (
    DEFAULT_EPSILON,
    compute_plane_offsets,
    count_from_layer_height,
    intersect_mesh_with_plane,
    make_slice_plane,
)

logger = logging.getLogger(__name__)

# Number of planes processed between two suspension points.
YIELD_EVERY: int = max(1, int(os.getenv("SLICE_YIELD_EVERY", "10")))

ProgressCallback = Callable[[int, int], None]


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SliceCancelledError("Slicing run was cancelled")


@dataclass(frozen=True)
class SliceSettings:
    """Slicing request.  Exactly one of ``count`` and ``layer_height`` is given."""

    axis: Axis = Axis.Z
    count: Optional[int] = None
    layer_height: Optional[float] = None

    def resolve_count(self, extent: float) -> int:
        if self.count is not None and self.layer_height is not None:
            raise InvalidGeometryError("Specify either a slice count or a layer height, not both")
        if self.count is not None:
            if self.count < 1:
                raise InvalidGeometryError(f"Slice count must be at least 1, got {self.count}")
            return int(self.count)
        if self.layer_height is not None:
            return count_from_layer_height(extent, self.layer_height)
        raise InvalidGeometryError("A slice count or a layer height is required")


@dataclass
class SliceRun:
    """Output of :func:`slice_mesh`."""

    axis: Axis
    planes: List[float] = field(default_factory=list)
    slices: List[Slice] = field(default_factory=list)
    warnings: List[PipelineWarning] = field(default_factory=list)


@dataclass
class LaminationResult:
    """Slices together with their sheet layout."""

    axis: Axis
    material: MaterialSettings
    planes: List[float] = field(default_factory=list)
    slices: List[Slice] = field(default_factory=list)
    sheets: List[Sheet] = field(default_factory=list)
    unplaced: List[int] = field(default_factory=list)
    warnings: List[PipelineWarning] = field(default_factory=list)


PlaneOutcome = Tuple[Optional[Slice], List[PipelineWarning]]


def plan_planes(mesh: Mesh, settings: SliceSettings) -> Tuple[Axis, List[float]]:
    """Validate a request and compute its plane offsets.

    Raises:
        InvalidGeometryError: For an empty or flat mesh or a bad count/layer height.
    """
    axis = Axis.parse(settings.axis)
    bbox = mesh.bbox()
    lo = bbox.min[axis.index]
    hi = bbox.max[axis.index]
    if not hi - lo > 0.0:
        raise InvalidGeometryError(f"Mesh has no extent along {axis.value} (range={hi - lo})")
    count = settings.resolve_count(hi - lo)
    return axis, compute_plane_offsets(lo, hi, count)


def process_plane(mesh: Mesh, axis: Axis, slice_id: int, offset: float, eps: float = DEFAULT_EPSILON) -> PlaneOutcome:
    """Intersect, link and project a single plane."""
    plane = make_slice_plane(axis, offset)
    segments = intersect_mesh_with_plane(mesh, plane, eps=eps)
    if not segments:
        return None, [
            make_warning(WarningKind.EMPTY_SLICE, f"Plane {axis.value}={offset:.6g} does not cross the mesh", slice_id)
        ]
    linked = link_segments(segments, axis, eps=eps)
    warnings: List[PipelineWarning] = []
    if linked.non_manifold:
        warnings.append(
            make_warning(
                WarningKind.NON_MANIFOLD_CONTOUR,
                f"{linked.open_count} open contour(s) and {linked.branch_count} branching vertex(es) at "
                f"{axis.value}={offset:.6g}",
                slice_id,
            )
        )
    slice_ = Slice(
        id=slice_id,
        offset=offset,
        axis=axis,
        contours=linked.contours,
        segments=list(segments),
        bounds=compute_slice_bounds((c.points for c in linked.contours), axis),
        non_manifold=linked.non_manifold,
    )
    return slice_, warnings


def _collect(axis: Axis, offsets: Sequence[float], outcomes: Sequence[PlaneOutcome]) -> SliceRun:
    run = SliceRun(axis=axis, planes=list(offsets))
    for slice_, warnings in outcomes:
        run.warnings.extend(warnings)
        if slice_ is not None:
            run.slices.append(slice_)
    logger.info(
        "Sliced along %s: planes=%d slices=%d warnings=%d",
        axis.value,
        len(offsets),
        len(run.slices),
        len(run.warnings),
    )
    return run


def _report(progress: Optional[ProgressCallback], current: int, total: int) -> None:
    if progress is not None:
        progress(current, total)


def _check(cancel: Optional[CancellationToken]) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled()


def _is_suspension_point(i: int) -> bool:
    # A cadence below one means every plane.
    return i % max(1, YIELD_EVERY) == 0


def _run_parallel(
    mesh: Mesh,
    axis: Axis,
    offsets: Sequence[float],
    eps: float,
    max_workers: int,
    progress: Optional[ProgressCallback],
    cancel: Optional[CancellationToken],
) -> List[PlaneOutcome]:
    total = len(offsets)
    outcomes: List[PlaneOutcome] = []
    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="slicer")
    cancelled = False
    try:
        futures: List[Future] = [
            executor.submit(process_plane, mesh, axis, i, offset, eps)
            for i, offset in enumerate(offsets, start=1)
        ]
        for i, fut in enumerate(futures, start=1):
            if _is_suspension_point(i):
                _check(cancel)
            outcomes.append(fut.result())
            _report(progress, i, total)
    except SliceCancelledError:
        cancelled = True
        raise
    finally:
        # Pending planes are dropped on cancel; running ones finish unobserved.
        executor.shutdown(wait=not cancelled, cancel_futures=cancelled)
    return outcomes


def slice_mesh(
    mesh: Mesh,
    settings: SliceSettings,
    *,
    eps: float = DEFAULT_EPSILON,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[CancellationToken] = None,
    max_workers: Optional[int] = None,
) -> SliceRun:
    """Slice ``mesh`` according to ``settings``.

    Args:
        mesh: The mesh to slice.  Never modified.
        settings: Axis and count or layer height.
        eps: Numerical tolerance in model units.
        progress: Called with ``(current, total)`` after each plane.
        cancel: Token checked before the run and at every suspension point.
        max_workers: Process planes on this many threads when greater than one.

    Returns:
        A :class:`SliceRun` whose slices are in plane offset order.

    Raises:
        InvalidGeometryError: If the request cannot be sliced.
        SliceCancelledError: If ``cancel`` was triggered.
    """
    axis, offsets = plan_planes(mesh, settings)
    _check(cancel)
    total = len(offsets)
    if max_workers is not None and max_workers > 1:
        outcomes = _run_parallel(mesh, axis, offsets, eps, max_workers, progress, cancel)
    else:
        outcomes = []
        for i, offset in enumerate(offsets, start=1):
            if _is_suspension_point(i):
                _check(cancel)
                time.sleep(0)
            outcomes.append(process_plane(mesh, axis, i, offset, eps))
            _report(progress, i, total)
    _check(cancel)
    return _collect(axis, offsets, outcomes)


async def slice_mesh_async(
    mesh: Mesh,
    settings: SliceSettings,
    *,
    eps: float = DEFAULT_EPSILON,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[CancellationToken] = None,
) -> SliceRun:
    """Coroutine variant of :func:`slice_mesh` yielding to the event loop."""
    axis, offsets = plan_planes(mesh, settings)
    _check(cancel)
    total = len(offsets)
    outcomes: List[PlaneOutcome] = []
    for i, offset in enumerate(offsets, start=1):
        if _is_suspension_point(i):
            await asyncio.sleep(0)
            _check(cancel)
        outcomes.append(process_plane(mesh, axis, i, offset, eps))
        _report(progress, i, total)
    _check(cancel)
    return _collect(axis, offsets, outcomes)


def _combine(run: SliceRun, material: MaterialSettings) -> LaminationResult:
    nested = nest_slices(run.slices, material)
    return LaminationResult(
        axis=run.axis,
        material=material,
        planes=run.planes,
        slices=run.slices,
        sheets=nested.sheets,
        unplaced=nested.unplaced,
        warnings=run.warnings + nested.warnings,
    )


def laminate(
    mesh: Mesh,
    settings: SliceSettings,
    material: MaterialSettings,
    **kwargs,
) -> LaminationResult:
    """Slice ``mesh`` and nest the slices onto ``material`` sheets.

    Keyword arguments are forwarded to :func:`slice_mesh`.  The material
    is validated before slicing starts.
    """
    material.validate()
    return _combine(slice_mesh(mesh, settings, **kwargs), material)


async def laminate_async(
    mesh: Mesh,
    settings: SliceSettings,
    material: MaterialSettings,
    **kwargs,
) -> LaminationResult:
    material.validate()
    run = await slice_mesh_async(mesh, settings, **kwargs)
    return _combine(run, material)
