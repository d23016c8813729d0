"""
End-to-end tests for slicing runs: planes, contours, warnings, progress,
cancellation and the combined slice-and-nest entry point.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from mesh_builders import box_triangles, cube_mesh, frame_mesh
from slicenest.services import pipeline
from slicenest.services.errors import InvalidGeometryError, SliceCancelledError, WarningKind
from slicenest.services.mesh import Axis, Mesh
from slicenest.services.nesting import MaterialSettings
from slicenest.services.pipeline import (
    CancellationToken,
    SliceSettings,
    laminate,
    slice_mesh,
    slice_mesh_async,
)


def test_cube_yields_three_square_slices() -> None:
    run = slice_mesh(cube_mesh(10.0), SliceSettings(axis=Axis.Z, count=3))
    assert run.planes == [2.5, 5.0, 7.5]
    assert [s.id for s in run.slices] == [1, 2, 3]
    assert run.warnings == []
    for s, offset in zip(run.slices, run.planes):
        assert s.offset == offset
        assert len(s.contours) == 1
        contour = s.contours[0]
        assert contour.closed
        assert len(contour.points) == 4
        assert contour.area == pytest.approx(100.0)
        assert (s.bounds.width, s.bounds.height) == pytest.approx((10.0, 10.0))
        assert not s.non_manifold


def test_layer_height_resolves_to_the_same_planes() -> None:
    run = slice_mesh(cube_mesh(10.0), SliceSettings(axis=Axis.Z, layer_height=2.5))
    assert run.planes == [2.5, 5.0, 7.5]


@pytest.mark.parametrize("axis", list(Axis))
def test_contour_points_lie_on_their_plane(axis: Axis) -> None:
    run = slice_mesh(cube_mesh(10.0), SliceSettings(axis=axis, count=4))
    assert len(run.slices) == 4
    for s in run.slices:
        for contour in s.contours:
            for p in contour.points:
                assert abs(p[axis.index] - s.offset) <= 1e-5


def test_frame_slice_has_outer_and_hole_with_opposite_winding() -> None:
    run = slice_mesh(frame_mesh(), SliceSettings(axis=Axis.Z, count=1))
    (s,) = run.slices
    assert len(s.contours) == 2
    areas = sorted(c.area for c in s.contours)
    assert areas == pytest.approx([-100.0, 900.0])
    outer = next(c for c in s.contours if c.area > 0)
    hole = next(c for c in s.contours if c.area < 0)
    assert not outer.is_hole
    assert hole.is_hole
    assert (s.bounds.width, s.bounds.height) == pytest.approx((30.0, 30.0))


@pytest.mark.parametrize(
    "settings",
    [
        SliceSettings(count=0),
        SliceSettings(count=-3),
        SliceSettings(layer_height=0.0),
        SliceSettings(layer_height=-1.0),
        SliceSettings(),
        SliceSettings(count=3, layer_height=1.0),
    ],
)
def test_invalid_requests_fail_before_any_plane(settings: SliceSettings) -> None:
    calls = []
    with pytest.raises(InvalidGeometryError):
        slice_mesh(cube_mesh(), settings, progress=lambda cur, tot: calls.append(cur))
    assert calls == []


def test_flat_mesh_is_invalid_geometry() -> None:
    flat = Mesh.from_triangles([((0, 0, 0), (1, 0, 0), (0, 1, 0))])
    with pytest.raises(InvalidGeometryError):
        slice_mesh(flat, SliceSettings(axis=Axis.Z, count=2))
    # The same triangle has extent along x
    assert len(slice_mesh(flat, SliceSettings(axis=Axis.X, count=1)).planes) == 1


def test_progress_is_reported_after_each_plane() -> None:
    calls = []
    slice_mesh(cube_mesh(), SliceSettings(count=3), progress=lambda cur, tot: calls.append((cur, tot)))
    assert calls == [(1, 3), (2, 3), (3, 3)]


def test_cancel_before_start_raises_without_progress() -> None:
    token = CancellationToken()
    token.cancel()
    calls = []
    with pytest.raises(SliceCancelledError):
        slice_mesh(cube_mesh(), SliceSettings(count=3), cancel=token, progress=lambda c, t: calls.append(c))
    assert calls == []


def test_cancel_is_observed_at_next_suspension_point(monkeypatch) -> None:
    monkeypatch.setattr(pipeline, "YIELD_EVERY", 10)
    token = CancellationToken()
    seen = []

    def on_progress(current: int, total: int) -> None:
        seen.append(current)
        if current == 5:
            token.cancel()

    with pytest.raises(SliceCancelledError):
        slice_mesh(cube_mesh(), SliceSettings(count=25), progress=on_progress, cancel=token)
    assert seen == list(range(1, 10))


@pytest.mark.parametrize("cadence", [0, -3])
def test_non_positive_yield_cadence_suspends_after_every_plane(monkeypatch, cadence: int) -> None:
    monkeypatch.setattr(pipeline, "YIELD_EVERY", cadence)
    token = CancellationToken()
    seen = []

    def on_progress(current: int, total: int) -> None:
        seen.append(current)
        if current == 2:
            token.cancel()

    with pytest.raises(SliceCancelledError):
        slice_mesh(cube_mesh(), SliceSettings(count=6), progress=on_progress, cancel=token)
    assert seen == [1, 2]
    assert len(asyncio.run(slice_mesh_async(cube_mesh(), SliceSettings(count=3))).slices) == 3


def test_async_cancel_is_observed(monkeypatch) -> None:
    monkeypatch.setattr(pipeline, "YIELD_EVERY", 2)
    token = CancellationToken()

    def on_progress(current: int, total: int) -> None:
        if current == 3:
            token.cancel()

    with pytest.raises(SliceCancelledError):
        asyncio.run(slice_mesh_async(cube_mesh(), SliceSettings(count=8), progress=on_progress, cancel=token))


def test_parallel_run_matches_sequential() -> None:
    settings = SliceSettings(axis=Axis.Y, count=12)
    sequential = slice_mesh(frame_mesh(), settings)
    parallel = slice_mesh(frame_mesh(), settings, max_workers=4)
    assert parallel == sequential


def test_parallel_run_can_be_cancelled(monkeypatch) -> None:
    monkeypatch.setattr(pipeline, "YIELD_EVERY", 4)
    token = CancellationToken()
    token.cancel()
    with pytest.raises(SliceCancelledError):
        slice_mesh(cube_mesh(), SliceSettings(count=20), cancel=token, max_workers=3)


def test_async_run_matches_sync() -> None:
    settings = SliceSettings(axis=Axis.X, count=15)
    sync_run = slice_mesh(frame_mesh(), settings)
    async_run = asyncio.run(slice_mesh_async(frame_mesh(), settings))
    assert async_run == sync_run


def test_runs_are_idempotent() -> None:
    mesh = frame_mesh()
    settings = SliceSettings(axis=Axis.Z, count=5)
    material = MaterialSettings(100, 100)
    assert laminate(mesh, settings, material) == laminate(mesh, settings, material)


def test_plane_in_a_gap_is_omitted_with_warning() -> None:
    tris = box_triangles(hi=(10.0, 10.0, 4.0)) + box_triangles(lo=(0.0, 0.0, 6.0), hi=(10.0, 10.0, 10.0))
    run = slice_mesh(Mesh.from_triangles(tris), SliceSettings(axis=Axis.Z, count=3))
    assert run.planes == [2.5, 5.0, 7.5]
    assert [s.id for s in run.slices] == [1, 3]
    assert [(w.kind, w.slice_id) for w in run.warnings] == [(WarningKind.EMPTY_SLICE, 2)]


def test_open_mesh_gives_flagged_open_contour() -> None:
    tris = box_triangles()
    del tris[4:6]  # front face (y=0)
    run = slice_mesh(Mesh.from_triangles(tris), SliceSettings(axis=Axis.Z, count=1))
    (s,) = run.slices
    assert s.non_manifold
    assert len(s.contours) == 1
    assert not s.contours[0].closed
    assert len(s.contours[0].points) >= 4
    assert [w.kind for w in run.warnings] == [WarningKind.NON_MANIFOLD_CONTOUR]


def test_laminate_nests_slices_on_one_large_sheet() -> None:
    result = laminate(cube_mesh(10.0), SliceSettings(count=3), MaterialSettings(200, 200))
    assert len(result.slices) == 3
    assert len(result.sheets) == 1
    items = result.sheets[0].items
    assert [it.slice.id for it in items] == [1, 2, 3]
    assert [it.x for it in items] == pytest.approx([0.0, 10.0, 20.0])
    assert all(it.y == 0.0 and it.rotation == 0 for it in items)
    assert result.unplaced == []


def test_laminate_opens_one_sheet_per_part_on_small_stock() -> None:
    result = laminate(cube_mesh(10.0), SliceSettings(count=3), MaterialSettings(15, 15))
    assert len(result.sheets) == 3
    assert [sheet.id for sheet in result.sheets] == [0, 1, 2]


def test_laminate_validates_material_before_slicing() -> None:
    calls = []
    with pytest.raises(InvalidGeometryError):
        laminate(
            cube_mesh(),
            SliceSettings(count=3),
            MaterialSettings(0, 10),
            progress=lambda c, t: calls.append(c),
        )
    assert calls == []
