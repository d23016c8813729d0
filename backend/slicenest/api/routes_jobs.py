"""
Routes for background slicing jobs.

``POST /jobs`` validates the mesh, registers a job and schedules the run
with FastAPI's background tasks.  Clients poll ``GET /jobs/{id}`` for
progress and the final result and may cancel with ``DELETE /jobs/{id}``.
Cancellation is cooperative: the run stops at its next suspension point
and discards everything it computed.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, HTTPException

from .models import JobInfo, LaminateRequest, LaminateResponse
from .routes_slices import settings_from_request
from ..services.errors import InvalidGeometryError
from ..services.jobs import SliceJob, cancel_job, create_job, get_job, list_jobs, run_job

router = APIRouter()


def _job_info(job: SliceJob) -> JobInfo:
    return JobInfo(
        jobId=job.id,
        session=job.session,
        status=job.status,
        current=job.current,
        total=job.total,
        error=job.error,
        result=LaminateResponse.from_result(job.result) if job.result is not None else None,
    )


@router.post("/jobs", response_model=JobInfo, status_code=202)
async def start_job(body: LaminateRequest, background_tasks: BackgroundTasks) -> JobInfo:
    """Start slicing in the background and return the queued job."""
    try:
        mesh = body.mesh.to_mesh()
        settings = settings_from_request(body)
        material = body.material.to_settings()
        material.validate()
    except InvalidGeometryError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    job = create_job(session=body.session)
    background_tasks.add_task(run_job, job.id, mesh, settings, material, max_workers=body.maxWorkers)
    return _job_info(job)


@router.get("/jobs", response_model=list[JobInfo])
async def get_jobs() -> list[JobInfo]:
    """List known jobs without their results."""
    return [
        JobInfo(jobId=j.id, session=j.session, status=j.status, current=j.current, total=j.total, error=j.error)
        for j in list_jobs()
    ]


@router.get("/jobs/{job_id}", response_model=JobInfo)
async def get_job_status(job_id: str) -> JobInfo:
    job = get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_info(job)


@router.delete("/jobs/{job_id}", response_model=JobInfo, status_code=202)
async def delete_job(job_id: str) -> JobInfo:
    """Request cancellation of a job."""
    job = cancel_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_info(job)
