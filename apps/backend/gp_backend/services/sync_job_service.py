"""
Sync job bookkeeping. One job row per run; at most one running at a time.
Used by the API routes and by the worker entrypoint.
"""
import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from gp_backend.core.errors import SyncAlreadyRunningError, SyncJobNotFoundError
from gp_backend.ingestion.windows import as_utc
from gp_database.models import SyncJob

logger = logging.getLogger(__name__)

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED})

DEFAULT_STALE_AFTER = timedelta(hours=2)


async def get_running_job(db: AsyncSession) -> SyncJob | None:
    result = await db.exec(
        select(SyncJob)
        .where(SyncJob.status == STATUS_RUNNING)
        .order_by(SyncJob.started_at.desc())
    )
    return result.first()


async def get_latest_job(db: AsyncSession) -> SyncJob | None:
    result = await db.exec(select(SyncJob).order_by(SyncJob.started_at.desc()))
    return result.first()


async def get_job(db: AsyncSession, job_id: UUID) -> SyncJob:
    job = await db.get(SyncJob, job_id)
    if job is None:
        raise SyncJobNotFoundError(f"Sync job {job_id} does not exist")
    return job


async def start_job(
    db: AsyncSession,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
    now: datetime | None = None,
) -> SyncJob:
    """
    Raises SyncAlreadyRunningError while another job is running. A running
    row older than stale_after was left by a process that died mid-run and
    is marked failed so a new job can start.

    The select is only a fast path; the partial unique index on running
    rows decides between concurrent starters.
    """
    now = now or datetime.now(UTC)

    running = await get_running_job(db)
    if running is not None:
        if now - as_utc(running.started_at) <= stale_after:
            raise SyncAlreadyRunningError(f"Sync job {running.id} is still running")

        logger.warning(
            f"Marking stale sync job {running.id} as failed",
            extra={"job_id": str(running.id), "started_at": running.started_at.isoformat()},
        )
        running.status = STATUS_FAILED
        running.finished_at = now
        running.error = "Job did not report completion"
        db.add(running)

    job = SyncJob(status=STATUS_RUNNING, progress=0.0, started_at=now)
    try:
        # Stale row must leave the running index before the new row enters it
        await db.flush()
        db.add(job)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise SyncAlreadyRunningError("Another sync job started concurrently") from e
    await db.refresh(job)

    logger.info(f"Sync job {job.id} started", extra={"job_id": str(job.id)})
    return job


async def update_progress(db: AsyncSession, job_id: UUID, progress: float) -> None:
    job = await db.get(SyncJob, job_id)
    if job is None or job.status != STATUS_RUNNING:
        return
    job.progress = max(0.0, min(progress, 1.0))
    db.add(job)
    await db.commit()


async def finish_job(
    db: AsyncSession,
    job_id: UUID,
    status: str,
    summary: dict[str, Any] | None = None,
    error: str | None = None,
) -> SyncJob:
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"Not a terminal job status: {status}")

    job = await get_job(db, job_id)
    job.status = status
    job.finished_at = datetime.now(UTC)
    if status == STATUS_COMPLETED:
        job.progress = 1.0
    if summary is not None:
        job.summary = summary
    job.error = error
    db.add(job)
    await db.commit()
    await db.refresh(job)

    logger.info(
        f"Sync job {job_id} finished: {status}",
        extra={"job_id": str(job_id), "status": status, "error": error},
    )
    return job
