"""API routes for triggering and observing synchronization jobs."""
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel.ext.asyncio.session import AsyncSession

from gp_backend.api.dependencies import get_db, get_github_token
from gp_backend.core.config import get_settings
from gp_backend.services.sync_job_service import (
    STATUS_CANCELLED,
    STATUS_RUNNING,
    finish_job,
    get_job,
    get_latest_job,
    start_job,
)
from gp_backend.services.sync_service import request_cancel, start_background_sync
from gp_database.models import SyncJob

router = APIRouter()


# Response Models

class SyncJobResponse(BaseModel):
    id: UUID
    status: str
    progress: float
    started_at: datetime
    finished_at: datetime | None
    summary: dict[str, Any] | None
    error: str | None


class SyncStatusResponse(BaseModel):
    running: bool
    progress: float
    job: SyncJobResponse | None


class CancelResponse(BaseModel):
    cancel_requested: bool
    job: SyncJobResponse


def _job_response(job: SyncJob) -> SyncJobResponse:
    return SyncJobResponse(
        id=job.id,
        status=job.status,
        progress=job.progress,
        started_at=job.started_at,
        finished_at=job.finished_at,
        summary=job.summary,
        error=job.error,
    )


# Endpoints

@router.post("", response_model=SyncJobResponse, status_code=202)
async def start_sync_endpoint(
    token: str = Depends(get_github_token),
    db: AsyncSession = Depends(get_db),
) -> SyncJobResponse:
    """
    Starts a sync in the background using the caller's GitHub token.

    Returns 409 while another job is running.
    """
    settings = get_settings()
    job = await start_job(db, stale_after=timedelta(minutes=settings.sync_job_stale_minutes))
    start_background_sync(job.id, token)
    return _job_response(job)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status_endpoint(
    db: AsyncSession = Depends(get_db),
) -> SyncStatusResponse:
    job = await get_latest_job(db)
    if job is None:
        return SyncStatusResponse(running=False, progress=0.0, job=None)

    return SyncStatusResponse(
        running=job.status == STATUS_RUNNING,
        progress=job.progress,
        job=_job_response(job),
    )


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel_sync_endpoint(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> CancelResponse:
    """
    Requests cancellation. Repositories already in flight finish and persist.

    A running job with no live orchestrator in this process is an orphan and
    is marked cancelled directly.
    """
    job = await get_job(db, job_id)
    if job.status != STATUS_RUNNING:
        return CancelResponse(cancel_requested=False, job=_job_response(job))

    if not request_cancel(job_id):
        job = await finish_job(db, job_id, STATUS_CANCELLED, error="Cancelled without a live worker")

    return CancelResponse(cancel_requested=True, job=_job_response(job))
