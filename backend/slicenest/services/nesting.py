"""
Sheet nesting: packing slice footprints onto rectangular stock.

The packer is a deterministic greedy shelf heuristic working on the 2D
bounding box of every slice:

1. Slices with an empty bounding box are skipped.
2. The remaining slices are sorted by decreasing bounding-box height;
   the sort is stable so ties keep their original slice order.
3. Each item is offered to the open sheets in creation order.  On a
   sheet it tries the x cursor of every shelf from the top down, then a
   new shelf below the last one, each time with rotation 0° before 90°.
   An item must fit within the height of a shelf that has another shelf
   below it; the last shelf may grow down to the usable area's edge.
4. When no open sheet accepts the item a new sheet is opened.
5. An item that does not fit an empty sheet in either rotation is
   reported as unplaceable and skipped; packing continues.

Placements never overlap and always stay inside the sheet minus its
margin.  Items on a shelf are separated by the material ``spacing``
(kerf allowance); with the default spacing of zero neighbouring boxes
may touch but never overlap.

The engine is a pure function of ``(slices, material)``; it keeps no
state between calls and must simply be re-run when either changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .errors import InvalidGeometryError, PipelineWarning, WarningKind, make_warning
from .projection import Point2, Slice

logger = logging.getLogger(__name__)

# Slack for float comparisons against sheet limits.
FIT_TOLERANCE: float = 1e-9

ROTATIONS: Tuple[int, int] = (0, 90)


@dataclass(frozen=True)
class MaterialSettings:
    """Stock dimensions and cutting allowances.

    Attributes:
        width: Sheet width (x extent).
        length: Sheet length (y extent); becomes the sheet height.
        thickness: Material thickness, carried through as metadata.
        unit: ``"mm"`` or ``"in"``, carried through as metadata.
        spacing: Gap kept between neighbouring parts.
        margin: Unusable border on every side of the sheet.
    """

    width: float
    length: float
    thickness: float = 3.0
    unit: str = "mm"
    spacing: float = 0.0
    margin: float = 0.0

    def validate(self) -> None:
        if not (self.width > 0.0 and self.length > 0.0):
            raise InvalidGeometryError(
                f"Material dimensions must be positive, got {self.width} x {self.length}"
            )
        if self.spacing < 0.0 or self.margin < 0.0:
            raise InvalidGeometryError("Material spacing and margin must not be negative")
        if self.width - 2 * self.margin <= 0.0 or self.length - 2 * self.margin <= 0.0:
            raise InvalidGeometryError("Material margin leaves no usable area")
        if self.unit not in ("mm", "in"):
            raise InvalidGeometryError(f"Unknown material unit '{self.unit}'")


@dataclass(frozen=True)
class PlacedSlice:
    """A slice positioned on a sheet.

    ``(x, y)`` is the corner of the rotated footprint closest to the sheet
    origin; ``rotation`` is 0 or 90 degrees counter-clockwise.
    """

    slice: Slice
    sheet_id: int
    x: float
    y: float
    rotation: int = 0

    @property
    def width(self) -> float:
        b = self.slice.bounds
        return b.height if self.rotation == 90 else b.width

    @property
    def height(self) -> float:
        b = self.slice.bounds
        return b.width if self.rotation == 90 else b.height

    def transform_point(self, u: float, v: float) -> Point2:
        """Map a point of the slice's (u, v) frame to sheet coordinates."""
        b = self.slice.bounds
        if self.rotation == 90:
            return (self.x + (b.max_y - v), self.y + (u - b.min_x))
        return (self.x + (u - b.min_x), self.y + (v - b.min_y))

    def contours_on_sheet(self) -> List[List[Point2]]:
        return [[self.transform_point(u, v) for u, v in c] for c in self.slice.contours_2d()]


@dataclass
class Sheet:
    """One piece of stock with the parts placed on it."""

    id: int
    width: float
    height: float
    items: List[PlacedSlice] = field(default_factory=list)


@dataclass
class NestResult:
    sheets: List[Sheet] = field(default_factory=list)
    unplaced: List[int] = field(default_factory=list)
    warnings: List[PipelineWarning] = field(default_factory=list)


@dataclass
class _Shelf:
    y: float
    height: float
    cursor: float = 0.0
    count: int = 0


class _SheetState:
    """Shelf bookkeeping for one open sheet, in usable-area coordinates."""

    def __init__(self, sheet: Sheet, usable_w: float, usable_h: float, spacing: float) -> None:
        self.sheet = sheet
        self.usable_w = usable_w
        self.usable_h = usable_h
        self.spacing = spacing
        self.shelves: List[_Shelf] = []

    def try_shelf(self, index: int, w: float, h: float) -> Optional[Tuple[float, float]]:
        """Slot at the x cursor of shelf ``index``.

        Earlier shelves have a fixed height because the next shelf starts
        right below them; only the last shelf may grow, up to the bottom
        of the usable area.
        """
        shelf = self.shelves[index]
        x = shelf.cursor + (self.spacing if shelf.count else 0.0)
        if x + w > self.usable_w + FIT_TOLERANCE:
            return None
        if index == len(self.shelves) - 1:
            limit = self.usable_h - shelf.y
        else:
            limit = shelf.height
        if h <= limit + FIT_TOLERANCE:
            return (x, shelf.y)
        return None

    def try_new_shelf(self, w: float, h: float) -> Optional[Tuple[float, float]]:
        if self.shelves:
            last = self.shelves[-1]
            y = last.y + last.height + self.spacing
        else:
            y = 0.0
        if w <= self.usable_w + FIT_TOLERANCE and y + h <= self.usable_h + FIT_TOLERANCE:
            return (0.0, y)
        return None

    def commit(self, index: Optional[int], x: float, w: float, h: float, y: float = 0.0) -> None:
        """Record a placement on shelf ``index``, or on a new shelf at ``y`` when ``index`` is None."""
        if index is None:
            self.shelves.append(_Shelf(y=y, height=h))
            index = len(self.shelves) - 1
        shelf = self.shelves[index]
        shelf.cursor = x + w
        shelf.height = max(shelf.height, h)
        shelf.count += 1


def _footprint(slice_: Slice, rotation: int) -> Tuple[float, float]:
    b = slice_.bounds
    return (b.height, b.width) if rotation == 90 else (b.width, b.height)


Slot = Tuple[Optional[int], float, float, int]


def _find_slot(state: _SheetState, slice_: Slice) -> Optional[Slot]:
    """First free slot on ``state`` as ``(shelf index or None, x, y, rotation)``."""
    for index in range(len(state.shelves)):
        for rotation in ROTATIONS:
            w, h = _footprint(slice_, rotation)
            pos = state.try_shelf(index, w, h)
            if pos is not None:
                return (index, pos[0], pos[1], rotation)
    for rotation in ROTATIONS:
        w, h = _footprint(slice_, rotation)
        pos = state.try_new_shelf(w, h)
        if pos is not None:
            return (None, pos[0], pos[1], rotation)
    return None


def nest_slices(slices: Sequence[Slice], material: MaterialSettings) -> NestResult:
    """Assign every non-empty slice to a sheet position.

    Args:
        slices: Slices in their original (plane) order.
        material: Stock dimensions and allowances.

    Returns:
        A :class:`NestResult` with sheets in creation order, the ids of
        slices that could not be placed and the collected warnings.

    Raises:
        InvalidGeometryError: If the material settings are unusable.
    """
    material.validate()
    result = NestResult()
    usable_w = material.width - 2 * material.margin
    usable_h = material.length - 2 * material.margin

    items: List[Slice] = []
    for s in slices:
        if s.bounds.is_empty:
            result.warnings.append(
                make_warning(WarningKind.EMPTY_SLICE, "Slice has an empty footprint; not nested", s.id)
            )
            continue
        items.append(s)
    items.sort(key=lambda s: -s.bounds.height)

    states: List[_SheetState] = []
    for s in items:
        w, h = s.bounds.width, s.bounds.height
        fits_upright = w <= usable_w + FIT_TOLERANCE and h <= usable_h + FIT_TOLERANCE
        fits_rotated = h <= usable_w + FIT_TOLERANCE and w <= usable_h + FIT_TOLERANCE
        if not (fits_upright or fits_rotated):
            result.unplaced.append(s.id)
            result.warnings.append(
                make_warning(
                    WarningKind.UNPLACEABLE_ITEM,
                    f"Footprint {w:.3f} x {h:.3f} does not fit usable sheet area {usable_w:.3f} x {usable_h:.3f}",
                    s.id,
                )
            )
            continue
        target: Optional[_SheetState] = None
        slot: Optional[Slot] = None
        for state in states:
            slot = _find_slot(state, s)
            if slot is not None:
                target = state
                break
        if target is None:
            sheet = Sheet(id=len(states), width=material.width, height=material.length)
            target = _SheetState(sheet, usable_w, usable_h, material.spacing)
            states.append(target)
            slot = _find_slot(target, s)
            if slot is None:  # pragma: no cover - guarded by the fit check above
                raise RuntimeError(f"slice {s.id} fits an empty sheet but no slot was found")
        index, x, y, rotation = slot
        fw, fh = _footprint(s, rotation)
        target.commit(index, x, fw, fh, y=y)
        target.sheet.items.append(
            PlacedSlice(
                slice=s,
                sheet_id=target.sheet.id,
                x=material.margin + x,
                y=material.margin + y,
                rotation=rotation,
            )
        )

    result.sheets = [st.sheet for st in states]
    logger.info(
        "Nested %d slices onto %d sheet(s) of %sx%s %s; unplaced=%d",
        len(items) - len(result.unplaced),
        len(result.sheets),
        material.width,
        material.length,
        material.unit,
        len(result.unplaced),
    )
    return result


def sheets_overlap_free(sheets: Sequence[Sheet], tol: float = 1e-9) -> bool:
    """Check that no two items on a sheet overlap and all stay in bounds."""
    for sheet in sheets:
        boxes = [(it.x, it.y, it.x + it.width, it.y + it.height) for it in sheet.items]
        for x0, y0, x1, y1 in boxes:
            if x0 < -tol or y0 < -tol or x1 > sheet.width + tol or y1 > sheet.height + tol:
                return False
        for i in range(len(boxes)):
            a = boxes[i]
            for j in range(i + 1, len(boxes)):
                b = boxes[j]
                if a[0] < b[2] - tol and b[0] < a[2] - tol and a[1] < b[3] - tol and b[1] < a[3] - tol:
                    return False
    return True
