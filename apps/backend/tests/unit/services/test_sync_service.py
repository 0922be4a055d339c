"""Unit tests for sync job execution"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from gp_backend.core.config import Settings
from gp_backend.core.errors import AuthenticationExpired
from gp_backend.ingestion.orchestrator import SyncReport
from gp_backend.services import sync_service
from gp_backend.services.sync_job_service import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    get_job,
    start_job,
)


@pytest.fixture
def settings():
    return Settings(_env_file=None, git_token="ghp_test")


@pytest.fixture
async def job(session_factory):
    async with session_factory() as session:
        return await start_job(session)


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.run = AsyncMock(return_value=SyncReport(repositories_synced=2))
    mock.cancel = MagicMock()
    return mock


@pytest.fixture
def mock_build(orchestrator):
    with patch("gp_backend.services.sync_service.build_orchestrator", return_value=orchestrator) as build:
        yield build


async def _load(session_factory, job_id):
    async with session_factory() as session:
        return await get_job(session, job_id)


class TestExecuteSync:
    async def test_completed_run_records_summary(self, job, session_factory, settings, mock_build):
        report = await sync_service.execute_sync(job.id, "ghp_token", settings=settings, session_factory=session_factory)

        stored = await _load(session_factory, job.id)
        assert report.repositories_synced == 2
        assert stored.status == STATUS_COMPLETED
        assert stored.summary["repositories_synced"] == 2
        assert not sync_service.is_active(job.id)

    async def test_cancelled_report_marks_job_cancelled(self, job, session_factory, settings, mock_build, orchestrator):
        orchestrator.run.return_value = SyncReport(cancelled=True)

        await sync_service.execute_sync(job.id, "ghp_token", settings=settings, session_factory=session_factory)

        assert (await _load(session_factory, job.id)).status == STATUS_CANCELLED

    async def test_expired_credential_fails_job_and_propagates(self, job, session_factory, settings, mock_build, orchestrator):
        orchestrator.run.side_effect = AuthenticationExpired("token revoked")

        with pytest.raises(AuthenticationExpired):
            await sync_service.execute_sync(job.id, "ghp_token", settings=settings, session_factory=session_factory)

        stored = await _load(session_factory, job.id)
        assert stored.status == STATUS_FAILED
        assert "token revoked" in stored.error
        assert not sync_service.is_active(job.id)

    async def test_graphql_only_by_default(self, job, session_factory, settings, mock_build):
        await sync_service.execute_sync(job.id, "ghp_token", settings=settings, session_factory=session_factory)

        adapter = mock_build.call_args.args[0]
        assert adapter._rest_client is None

    async def test_rest_issues_client_when_enabled(self, job, session_factory, mock_build):
        settings = Settings(_env_file=None, use_rest_issues=True)

        await sync_service.execute_sync(job.id, "ghp_token", settings=settings, session_factory=session_factory)

        adapter = mock_build.call_args.args[0]
        assert adapter._rest_client is not None

    async def test_progress_callback_updates_job(self, job, session_factory, settings, mock_build, orchestrator):
        async def run():
            callback = mock_build.call_args.kwargs["progress_callback"]
            await callback(0.5)
            assert (await _load(session_factory, job.id)).progress == 0.5
            return SyncReport()

        orchestrator.run.side_effect = run

        await sync_service.execute_sync(job.id, "ghp_token", settings=settings, session_factory=session_factory)


class TestRequestCancel:
    async def test_cancels_active_orchestrator(self, job, session_factory, settings, mock_build, orchestrator):
        async def run():
            assert sync_service.request_cancel(job.id) is True
            return SyncReport(cancelled=True)

        orchestrator.run.side_effect = run

        await sync_service.execute_sync(job.id, "ghp_token", settings=settings, session_factory=session_factory)

        orchestrator.cancel.assert_called_once()

    def test_unknown_job_is_not_cancelled(self):
        assert sync_service.request_cancel(uuid.uuid4()) is False


class TestStartBackgroundSync:
    async def test_runs_execute_sync_in_task(self):
        job_id = uuid.uuid4()
        with patch("gp_backend.services.sync_service.execute_sync", new_callable=AsyncMock) as mock_execute:
            task = sync_service.start_background_sync(job_id, "ghp_token")
            await task

        mock_execute.assert_awaited_once_with(job_id, "ghp_token")

    async def test_background_failure_is_logged_not_raised(self):
        with patch(
            "gp_backend.services.sync_service.execute_sync",
            new_callable=AsyncMock,
            side_effect=AuthenticationExpired("expired"),
        ):
            task = sync_service.start_background_sync(uuid.uuid4(), "ghp_token")
            await task

        assert task.exception() is None
