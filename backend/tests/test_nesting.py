"""
Tests for the shelf packer in nesting.py.

Slices are built directly from bounding boxes; the packer never looks at
contour geometry, only at footprints.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from slicenest.services.errors import InvalidGeometryError, WarningKind
from slicenest.services.mesh import Axis
from slicenest.services.nesting import MaterialSettings, nest_slices, sheets_overlap_free
from slicenest.services.projection import Slice, SliceBounds


def make_slice(slice_id: int, width: float, height: float, min_x: float = 0.0, min_y: float = 0.0) -> Slice:
    bounds = SliceBounds(min_x=min_x, min_y=min_y, max_x=min_x + width, max_y=min_y + height)
    return Slice(id=slice_id, offset=float(slice_id), axis=Axis.Z, bounds=bounds)


def placements(result) -> dict:
    return {
        item.slice.id: (item.sheet_id, item.x, item.y, item.rotation)
        for sheet in result.sheets
        for item in sheet.items
    }


def test_two_squares_too_wide_for_one_sheet_open_a_second() -> None:
    result = nest_slices([make_slice(1, 10, 10), make_slice(2, 10, 10)], MaterialSettings(15, 15))
    assert len(result.sheets) == 2
    assert placements(result) == {1: (0, 0.0, 0.0, 0), 2: (1, 0.0, 0.0, 0)}
    assert result.unplaced == []
    assert sheets_overlap_free(result.sheets)


def test_item_too_wide_upright_is_rotated() -> None:
    result = nest_slices([make_slice(1, 12, 4)], MaterialSettings(10, 20))
    assert len(result.sheets) == 1
    (item,) = result.sheets[0].items
    assert item.rotation == 90
    assert (item.width, item.height) == (4, 12)
    # Rotation is counter-clockwise about the footprint corner
    assert item.transform_point(0.0, 0.0) == (4.0, 0.0)
    assert item.transform_point(12.0, 0.0) == (4.0, 12.0)
    assert item.transform_point(0.0, 4.0) == (0.0, 0.0)


def test_rotated_placement_honours_bounds_origin() -> None:
    result = nest_slices([make_slice(1, 12, 4, min_x=-6.0, min_y=3.0)], MaterialSettings(10, 20))
    item = result.sheets[0].items[0]
    assert item.transform_point(-6.0, 7.0) == (0.0, 0.0)
    assert item.transform_point(6.0, 3.0) == (4.0, 12.0)


def test_unplaceable_item_is_reported_and_others_still_nested() -> None:
    slices = [make_slice(1, 30, 30), make_slice(2, 5, 5)]
    result = nest_slices(slices, MaterialSettings(20, 20))
    assert result.unplaced == [1]
    assert [w.kind for w in result.warnings] == [WarningKind.UNPLACEABLE_ITEM]
    assert result.warnings[0].slice_id == 1
    assert placements(result) == {2: (0, 0.0, 0.0, 0)}


def test_items_sorted_by_height_fill_the_current_shelf() -> None:
    slices = [make_slice(1, 4, 3), make_slice(2, 5, 6), make_slice(3, 2, 3)]
    result = nest_slices(slices, MaterialSettings(20, 20))
    assert placements(result) == {
        2: (0, 0.0, 0.0, 0),
        1: (0, 5.0, 0.0, 0),
        3: (0, 9.0, 0.0, 0),
    }


def test_spacing_and_margin_offset_placements() -> None:
    slices = [make_slice(1, 4, 3), make_slice(2, 5, 6), make_slice(3, 2, 3)]
    result = nest_slices(slices, MaterialSettings(20, 20, spacing=1.0, margin=2.0))
    assert placements(result) == {
        2: (0, 2.0, 2.0, 0),
        1: (0, 8.0, 2.0, 0),
        3: (0, 13.0, 2.0, 0),
    }


def test_full_shelf_starts_a_new_one_below() -> None:
    slices = [make_slice(1, 9, 5), make_slice(2, 9, 4), make_slice(3, 9, 4)]
    result = nest_slices(slices, MaterialSettings(20, 20))
    assert placements(result) == {
        1: (0, 0.0, 0.0, 0),
        2: (0, 9.0, 0.0, 0),
        3: (0, 0.0, 5.0, 0),
    }


def test_earlier_shelf_with_room_is_reused_before_a_new_sheet() -> None:
    slices = [make_slice(1, 12, 10), make_slice(2, 18, 9), make_slice(3, 8, 5)]
    result = nest_slices(slices, MaterialSettings(20, 20))
    assert len(result.sheets) == 1
    assert placements(result) == {
        1: (0, 0.0, 0.0, 0),
        2: (0, 0.0, 10.0, 0),
        3: (0, 12.0, 0.0, 0),
    }
    assert sheets_overlap_free(result.sheets)


def test_earlier_shelf_accepts_rotated_item_within_its_height() -> None:
    slices = [make_slice(1, 14, 10), make_slice(2, 20, 8), make_slice(3, 9, 5)]
    result = nest_slices(slices, MaterialSettings(20, 20))
    assert len(result.sheets) == 1
    assert placements(result)[3] == (0, 14.0, 0.0, 90)
    assert sheets_overlap_free(result.sheets)


def test_upper_shelf_rejects_item_taller_than_itself() -> None:
    # Shelf 0 is 4 high with shelf 1 right below it.  Item 3 only fits its
    # remaining width rotated, where it is 11 high and would spill into
    # shelf 1, so it goes to a new shelf instead.
    slices = [make_slice(1, 10, 4), make_slice(2, 20, 4), make_slice(3, 11, 3)]
    result = nest_slices(slices, MaterialSettings(20, 12))
    assert placements(result)[3] == (0, 0.0, 8.0, 0)
    assert sheets_overlap_free(result.sheets)


def test_every_fitting_item_is_placed_without_overlap() -> None:
    slices = [make_slice(i, 3 + (i * 7) % 11, 2 + (i * 5) % 9) for i in range(1, 41)]
    result = nest_slices(slices, MaterialSettings(30, 25, spacing=0.5))
    assert result.unplaced == []
    assert sum(len(s.items) for s in result.sheets) == len(slices)
    assert sheets_overlap_free(result.sheets)
    for sheet in result.sheets:
        for item in sheet.items:
            assert item.sheet_id == sheet.id


def test_nesting_is_deterministic() -> None:
    slices = [make_slice(i, 3 + (i * 7) % 11, 2 + (i * 5) % 9) for i in range(1, 21)]
    material = MaterialSettings(30, 25)
    assert nest_slices(slices, material) == nest_slices(slices, material)


def test_empty_footprint_is_skipped_with_warning() -> None:
    empty = Slice(id=4, offset=4.0, axis=Axis.Z)
    result = nest_slices([empty, make_slice(5, 2, 2)], MaterialSettings(10, 10))
    assert [w.kind for w in result.warnings] == [WarningKind.EMPTY_SLICE]
    assert result.warnings[0].slice_id == 4
    assert result.unplaced == []
    assert list(placements(result)) == [5]


def test_no_slices_gives_no_sheets() -> None:
    result = nest_slices([], MaterialSettings(10, 10))
    assert result.sheets == []


@pytest.mark.parametrize(
    "material",
    [
        MaterialSettings(0, 10),
        MaterialSettings(10, -5),
        MaterialSettings(10, 10, margin=5.0),
        MaterialSettings(10, 10, spacing=-1.0),
        MaterialSettings(10, 10, unit="cm"),
    ],
)
def test_invalid_material_raises(material: MaterialSettings) -> None:
    with pytest.raises(InvalidGeometryError):
        nest_slices([make_slice(1, 1, 1)], material)
