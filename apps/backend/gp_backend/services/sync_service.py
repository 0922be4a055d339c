"""
Runs a sync job end to end: builds the per-job clients around the caller's
credential, drives the orchestrator, and records the outcome on the job row.
"""
import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import timedelta
from functools import partial
from uuid import UUID

from gp_backend.core.config import Settings, get_settings
from gp_backend.ingestion.github_client import GitHubGraphQLClient
from gp_backend.ingestion.orchestrator import SyncOrchestrator, SyncReport
from gp_backend.ingestion.persistence import SyncStore
from gp_backend.ingestion.query_adapter import PaginatedQueryAdapter
from gp_backend.ingestion.rate_limiter import CostAwareLimiter
from gp_backend.ingestion.rest_issues import RestIssuesClient
from gp_backend.services import sync_job_service
from gp_database import async_session_factory

logger = logging.getLogger(__name__)

# Orchestrators of jobs running in this process, for cancellation
_active: dict[UUID, SyncOrchestrator] = {}
# Strong references so background tasks are not garbage collected mid-run
_background_tasks: set[asyncio.Task] = set()


def build_orchestrator(
    adapter: PaginatedQueryAdapter,
    store: SyncStore,
    settings: Settings,
    progress_callback=None,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        adapter,
        store,
        concurrency=settings.sync_concurrency,
        initial_history_window=settings.initial_history_window,
        overlap=timedelta(minutes=settings.sync_overlap_minutes),
        use_rest_issues=settings.use_rest_issues,
        rate_limit_max_retries=settings.rate_limit_max_retries,
        rate_limit_max_wait_seconds=settings.rate_limit_max_wait_seconds,
        repo_max_retries=settings.repo_max_retries,
        retry_delay_seconds=settings.repo_retry_delay_seconds,
        progress_callback=progress_callback,
    )


async def _record_progress(session_factory, job_id: UUID, progress: float) -> None:
    async with session_factory() as db:
        await sync_job_service.update_progress(db, job_id, progress)


async def _finish(session_factory, job_id: UUID, status: str, summary=None, error=None) -> None:
    async with session_factory() as db:
        await sync_job_service.finish_job(db, job_id, status, summary=summary, error=error)


async def execute_sync(
    job_id: UUID,
    token: str,
    settings: Settings | None = None,
    session_factory=None,
) -> SyncReport:
    """
    Raises whatever aborted the run (AuthenticationExpired in particular)
    after marking the job failed. Repository failures only show up in the
    returned report.
    """
    settings = settings or get_settings()
    session_factory = session_factory or async_session_factory

    try:
        async with AsyncExitStack() as stack:
            client = await stack.enter_async_context(GitHubGraphQLClient(token, CostAwareLimiter()))
            rest_client = None
            if settings.use_rest_issues:
                rest_client = await stack.enter_async_context(RestIssuesClient(token))

            adapter = PaginatedQueryAdapter(client, rest_client, page_size=settings.page_size)
            store = SyncStore(session_factory, batch_size=settings.store_batch_size)
            orchestrator = build_orchestrator(
                adapter,
                store,
                settings,
                progress_callback=partial(_record_progress, session_factory, job_id),
            )

            _active[job_id] = orchestrator
            try:
                report = await orchestrator.run()
            finally:
                _active.pop(job_id, None)
    except Exception as e:
        logger.error(f"Sync job {job_id} aborted: {e}", extra={"job_id": str(job_id)})
        await _finish(session_factory, job_id, sync_job_service.STATUS_FAILED, error=str(e))
        raise

    status = sync_job_service.STATUS_CANCELLED if report.cancelled else sync_job_service.STATUS_COMPLETED
    await _finish(session_factory, job_id, status, summary=report.to_summary())
    return report


async def _run_in_background(job_id: UUID, token: str) -> None:
    try:
        await execute_sync(job_id, token)
    except Exception:
        # Already recorded on the job row by execute_sync
        logger.exception(f"Background sync job {job_id} failed")


def start_background_sync(job_id: UUID, token: str) -> asyncio.Task:
    task = asyncio.create_task(_run_in_background(job_id, token))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def request_cancel(job_id: UUID) -> bool:
    """True when the job runs in this process and was asked to stop"""
    orchestrator = _active.get(job_id)
    if orchestrator is None:
        return False
    orchestrator.cancel()
    return True


def is_active(job_id: UUID) -> bool:
    return job_id in _active
