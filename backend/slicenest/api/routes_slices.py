"""
Routes for mesh statistics, slicing and nesting.

The slicing endpoint runs the whole pipeline inside the request and
yields to the event loop between planes, so other requests keep being
served during long runs.  When ``maxWorkers`` asks for more than one
thread the run moves to the thread pool instead.  Nesting is exposed separately so a client can
re-layout existing slices after changing the material without slicing
again.  Long runs that need progress reporting or cancellation should go
through the job endpoints in :mod:`.routes_jobs` instead.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool

from .models import (
    LaminateRequest,
    LaminateResponse,
    MeshPayload,
    MeshStatsResponse,
    NestRequest,
    NestResponse,
    ResizeRequest,
)
from ..services.errors import InvalidGeometryError
from ..services.mesh import Axis
from ..services.nesting import nest_slices
from ..services.pipeline import SliceSettings, laminate, laminate_async
from ..services.projection import Slice

logger = logging.getLogger(__name__)

router = APIRouter()


def settings_from_request(body: LaminateRequest) -> SliceSettings:
    return SliceSettings(axis=Axis.parse(body.axis), count=body.count, layer_height=body.layerHeight)


@router.post("/mesh/stats", response_model=MeshStatsResponse)
async def mesh_stats(body: MeshPayload) -> MeshStatsResponse:
    """Return bounding box dimensions, volume and triangle count of a mesh."""
    try:
        return MeshStatsResponse.from_mesh(body.to_mesh())
    except InvalidGeometryError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.post("/mesh/resize", response_model=MeshPayload)
async def mesh_resize(body: ResizeRequest) -> MeshPayload:
    """Scale a mesh so its bounding box matches the requested dimensions.

    The response is a new mesh; clients should discard any slices computed
    for the previous geometry.
    """
    try:
        mesh = body.mesh.to_mesh().resized(*body.dimensions)
    except InvalidGeometryError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return MeshPayload.from_mesh(mesh)


@router.post("/slices", response_model=LaminateResponse)
async def create_slices(body: LaminateRequest) -> LaminateResponse:
    """Slice a mesh and nest the slices onto material sheets.

    Returns:
        LaminateResponse: Slices in plane order, sheets in creation order
        and every non-fatal warning raised on the way.

    Raises:
        HTTPException: 422 for invalid geometry or parameters.
    """
    try:
        mesh = body.mesh.to_mesh()
        settings = settings_from_request(body)
        material = body.material.to_settings()
        if body.maxWorkers is not None and body.maxWorkers > 1:
            result = await run_in_threadpool(laminate, mesh, settings, material, max_workers=body.maxWorkers)
        else:
            result = await laminate_async(mesh, settings, material)
    except InvalidGeometryError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except Exception as exc:
        logger.exception("slicing endpoint error: %s", exc)
        raise HTTPException(status_code=500, detail=f"Failed to slice mesh: {exc}")
    return LaminateResponse.from_result(result)


@router.post("/nest", response_model=NestResponse)
async def nest(body: NestRequest) -> NestResponse:
    """Lay out slice footprints on sheets without re-slicing.

    Only bounding boxes travel in this request, so the placed items carry
    no contour geometry; clients combine the placements with the slices
    they already hold.
    """
    slices = [
        Slice(id=item.id, offset=0.0, axis=Axis.Z, bounds=item.bounds.to_bounds())
        for item in body.items
    ]
    try:
        result = nest_slices(slices, body.material.to_settings())
    except InvalidGeometryError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return NestResponse.from_result(result)
