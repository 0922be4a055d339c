"""
Sync job: refresh commits, issues and pull requests for every scope the
worker credential can see.

1. Record a SyncJob row (refuses to start while another job is running)
2. Run the orchestrator with the worker's token
3. Record the outcome and return the report summary

Repository failures are reported in the summary; only an expired
credential fails the job.
"""

import asyncio
import logging
import time
from datetime import timedelta

from gp_backend.core.config import get_settings
from gp_backend.services import sync_job_service
from gp_backend.services.sync_service import execute_sync, request_cancel
from gp_database.session import async_session_factory, create_tables

logger = logging.getLogger(__name__)


async def run_sync_job(shutdown_event=None) -> dict:
    """
    Returns stats dict with the job id, processed counts per kind and failures.
    Setting shutdown_event requests cancellation of the running job.
    """
    job_start = time.monotonic()
    settings = get_settings()

    if not settings.git_token:
        raise ValueError("GIT_TOKEN environment variable is required")

    logger.info(
        "Sync config",
        extra={
            "sync_concurrency": settings.sync_concurrency,
            "initial_history_window": settings.initial_history_window,
            "sync_overlap_minutes": settings.sync_overlap_minutes,
            "use_rest_issues": settings.use_rest_issues,
        },
    )

    if settings.create_tables_on_start:
        await create_tables()

    async with async_session_factory() as session:
        job = await sync_job_service.start_job(
            session,
            stale_after=timedelta(minutes=settings.sync_job_stale_minutes),
        )
    job_id = job.id

    watcher = None
    if shutdown_event is not None:
        async def cancel_on_shutdown() -> None:
            await shutdown_event.wait()
            logger.info(f"Shutdown requested, cancelling sync job {job_id}")
            request_cancel(job_id)

        watcher = asyncio.create_task(cancel_on_shutdown())

    try:
        report = await execute_sync(job_id, settings.git_token, settings=settings)
    finally:
        if watcher is not None:
            watcher.cancel()

    job_elapsed = time.monotonic() - job_start
    summary = report.to_summary()
    logger.info(
        f"Sync job complete in {job_elapsed:.1f}s",
        extra={"sync_job_id": str(job_id), "total_duration_s": round(job_elapsed, 1), **summary},
    )

    return {
        "job_id": str(job_id),
        "status": "cancelled" if report.cancelled else "completed",
        "processed": summary["processed"],
        "repositories_failed": summary["repositories_failed"],
        "duration_s": round(job_elapsed, 1),
    }
