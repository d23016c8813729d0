"""
In-memory registry of background slicing jobs.

The HTTP layer starts long slicing runs as background tasks and lets
clients poll their progress or cancel them.  Each :class:`SliceJob`
owns a :class:`~slicenest.services.pipeline.CancellationToken` and is
updated from the worker thread through the pipeline's progress
callback.

Jobs may be grouped by a client-supplied ``session`` key.  Starting a
job for a session cancels whatever job is still in flight for that
session: a change of mesh or settings simply discards the previous run
and starts over.

The registry is an ``OrderedDict`` guarded by a reentrant lock.  When it
grows beyond ``MAX_JOBS`` entries the oldest finished jobs are evicted.
Nothing is persisted; restarting the process forgets every job.

Usage::

    job = create_job(session="tab-1")
    background_tasks.add_task(run_job, job.id, mesh, settings, material)
    ...
    job = get_job(job.id)
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from threading import RLock
from typing import List, Optional

from .errors import InvalidGeometryError, SliceCancelledError
from .mesh import Mesh
from .nesting import MaterialSettings
from .pipeline import CancellationToken, LaminationResult, SliceSettings, laminate

logger = logging.getLogger(__name__)

QUEUED = "queued"
RUNNING = "running"
DONE = "done"
FAILED = "failed"
CANCELLED = "cancelled"

FINISHED_STATES = frozenset({DONE, FAILED, CANCELLED})

# Maximum number of jobs retained.  Finished jobs beyond this limit are
# evicted oldest first; running jobs are never evicted.
MAX_JOBS: int = int(os.getenv("SLICE_MAX_JOBS", "32"))


@dataclass
class SliceJob:
    """State of one background run.

    Attributes:
        id: Unique identifier (uuid hex).
        session: Optional grouping key supplied by the client.
        status: One of ``queued``, ``running``, ``done``, ``failed`` or
            ``cancelled``.
        current: Number of planes processed so far.
        total: Number of planes in the run (0 until known).
        error: Failure message for ``failed`` jobs.
        result: Output of a ``done`` job.
    """

    id: str
    session: Optional[str] = None
    status: str = QUEUED
    current: int = 0
    total: int = 0
    error: Optional[str] = None
    result: Optional[LaminationResult] = None
    token: CancellationToken = field(default_factory=CancellationToken)
    created_at: float = field(default_factory=time.time)

    @property
    def finished(self) -> bool:
        return self.status in FINISHED_STATES


_jobs: "OrderedDict[str, SliceJob]" = OrderedDict()
_lock = RLock()


def _evict() -> None:
    excess = len(_jobs) - MAX_JOBS
    if excess <= 0:
        return
    for job_id in [jid for jid, job in _jobs.items() if job.finished][:excess]:
        del _jobs[job_id]


def create_job(session: Optional[str] = None) -> SliceJob:
    """Register a new queued job, cancelling the session's in-flight job."""
    with _lock:
        if session is not None:
            for other in _jobs.values():
                if other.session == session and not other.finished:
                    logger.info("Superseding job %s of session %s", other.id, session)
                    _request_cancel(other)
        job = SliceJob(id=uuid.uuid4().hex, session=session)
        _jobs[job.id] = job
        _evict()
        return job


def get_job(job_id: str) -> Optional[SliceJob]:
    with _lock:
        return _jobs.get(job_id)


def list_jobs() -> List[SliceJob]:
    with _lock:
        return list(_jobs.values())


def _request_cancel(job: SliceJob) -> None:
    job.token.cancel()
    if job.status == QUEUED:
        job.status = CANCELLED


def cancel_job(job_id: str) -> Optional[SliceJob]:
    """Request cancellation.  Returns ``None`` for unknown ids."""
    with _lock:
        job = _jobs.get(job_id)
        if job is None:
            return None
        if not job.finished:
            _request_cancel(job)
        return job


def clear_jobs() -> None:
    """Drop every job (used by tests)."""
    with _lock:
        _jobs.clear()


def run_job(
    job_id: str,
    mesh: Mesh,
    settings: SliceSettings,
    material: MaterialSettings,
    max_workers: Optional[int] = None,
) -> None:
    """Execute a registered job to completion, recording the outcome on it."""
    job = get_job(job_id)
    if job is None:
        logger.warning("run_job: unknown job %s", job_id)
        return
    with _lock:
        if job.token.cancelled:
            job.status = CANCELLED
            return
        job.status = RUNNING

    def on_progress(current: int, total: int) -> None:
        with _lock:
            job.current = current
            job.total = total

    started = time.perf_counter()
    try:
        result = laminate(
            mesh,
            settings,
            material,
            progress=on_progress,
            cancel=job.token,
            max_workers=max_workers,
        )
    except SliceCancelledError:
        with _lock:
            job.status = CANCELLED
        logger.info("Job %s cancelled after %d/%d planes", job_id, job.current, job.total)
        return
    except InvalidGeometryError as exc:
        with _lock:
            job.status = FAILED
            job.error = str(exc)
        logger.warning("Job %s rejected: %s", job_id, exc)
        return
    except Exception as exc:
        logger.exception("Job %s failed: %s", job_id, exc)
        with _lock:
            job.status = FAILED
            job.error = f"Slicing failed: {exc}"
        return
    with _lock:
        job.result = result
        job.status = DONE
    logger.info(
        "Job %s done in %.3fs: slices=%d sheets=%d",
        job_id,
        time.perf_counter() - started,
        len(result.slices),
        len(result.sheets),
    )
