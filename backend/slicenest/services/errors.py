"""
Error kinds raised and collected by the slicing pipeline.

Only two conditions stop a run: :class:`InvalidGeometryError`, which is
raised before any slice is produced, and :class:`SliceCancelledError`,
which is raised when a caller requests a cooperative abort.  Everything
else (empty planes, broken contours, parts that do not fit on a sheet)
is recorded as a :class:`PipelineWarning` and returned alongside the
successful output so the host application can surface it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class SlicingError(Exception):
    """Base class for all slicing pipeline errors."""


class InvalidGeometryError(SlicingError, ValueError):
    """The mesh or the requested parameters cannot be sliced.

    Raised for a zero or negative extent along the slicing axis, an empty
    mesh, a non-positive slice count or layer height and for material
    sheets with unusable dimensions.
    """


class SliceCancelledError(SlicingError):
    """A run was aborted through its cancellation token."""


class WarningKind(str, Enum):
    """Non-fatal conditions collected during a run."""

    EMPTY_SLICE = "empty_slice"
    NON_MANIFOLD_CONTOUR = "non_manifold_contour"
    UNPLACEABLE_ITEM = "unplaceable_item"


@dataclass(frozen=True)
class PipelineWarning:
    """A non-fatal condition attached to a run result.

    Attributes:
        kind: Category of the condition.
        message: Human readable description.
        slice_id: Identifier of the affected slice, if any.
    """

    kind: WarningKind
    message: str
    slice_id: Optional[int] = None


def make_warning(kind: WarningKind, message: str, slice_id: Optional[int] = None) -> PipelineWarning:
    """Create a warning and log it at WARNING level."""
    logger.warning("%s (slice=%s): %s", kind.value, slice_id, message)
    return PipelineWarning(kind=kind, message=message, slice_id=slice_id)
