"""Drives a full, idempotent refresh of commits, issues and pull requests across every scope"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from gp_backend.core.errors import (
    AuthenticationExpired,
    RateLimited,
    StoreWriteFailure,
    TransientNetworkError,
)

from .entities import EntityKind, RepositoryData, Scope
from .normalizer import normalize_many
from .windows import resolve

if TYPE_CHECKING:
    from .persistence import SyncStore
    from .query_adapter import Page, PaginatedQueryAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYNC_KINDS: tuple[EntityKind, ...] = (EntityKind.COMMIT, EntityKind.ISSUE, EntityKind.PULL_REQUEST)

ProgressCallback = Callable[[float], Awaitable[None]]


@dataclass
class RepoOutcome:
    scope: str
    repository: str
    kind: EntityKind
    status: str  # synced, failed, cancelled
    processed: int = 0
    reason: str | None = None


@dataclass
class ScopeFailure:
    scope: str
    kind: str
    reason: str
    repository: str | None = None


@dataclass
class SyncReport:
    processed: dict[str, int] = field(default_factory=lambda: {str(k): 0 for k in SYNC_KINDS})
    repositories_synced: int = 0
    repositories_failed: int = 0
    failures: list[ScopeFailure] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)
    cancelled: bool = False
    progress: float = 0.0

    @property
    def succeeded(self) -> bool:
        return not self.failures and not self.cancelled

    def record(self, outcome: RepoOutcome) -> None:
        if outcome.status == "synced":
            self.repositories_synced += 1
            self.processed[str(outcome.kind)] = self.processed.get(str(outcome.kind), 0) + outcome.processed
        elif outcome.status == "failed":
            self.repositories_failed += 1
            self.failures.append(
                ScopeFailure(
                    scope=outcome.scope,
                    kind=str(outcome.kind),
                    reason=outcome.reason or "unknown error",
                    repository=outcome.repository,
                )
            )

    def to_summary(self) -> dict:
        return {
            "processed": dict(self.processed),
            "repositories_synced": self.repositories_synced,
            "repositories_failed": self.repositories_failed,
            "failures": [asdict(f) for f in self.failures],
            "scopes": list(self.scopes),
            "cancelled": self.cancelled,
            "progress": round(self.progress, 4),
        }


class SyncOrchestrator:
    """
    Per kind: scopes -> repositories -> history pages -> normalize -> upsert.

    Repository tasks of a scope run in a TaskGroup under a semaphore, so the
    concurrency limit queues work instead of rejecting it. Every task returns
    an outcome; only AuthenticationExpired escapes and aborts the job.
    """

    CONCURRENCY: int = 10
    RATE_LIMIT_MAX_RETRIES: int = 3
    RATE_LIMIT_MAX_WAIT_SECONDS: float = 900.0
    REPO_MAX_RETRIES: int = 2
    RETRY_DELAY_SECONDS: float = 2.0
    PROGRESS_STEP: float = 0.01

    def __init__(
        self,
        adapter: PaginatedQueryAdapter,
        store: SyncStore,
        *,
        concurrency: int | None = None,
        initial_history_window: str | None = None,
        overlap: timedelta = timedelta(minutes=10),
        use_rest_issues: bool = False,
        rate_limit_max_retries: int | None = None,
        rate_limit_max_wait_seconds: float | None = None,
        repo_max_retries: int | None = None,
        retry_delay_seconds: float | None = None,
        progress_callback: ProgressCallback | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._adapter = adapter
        self._store = store
        self._concurrency = concurrency or self.CONCURRENCY
        self._initial_history_window = initial_history_window
        self._overlap = overlap
        self._use_rest_issues = use_rest_issues
        self._rate_limit_max_retries = (
            rate_limit_max_retries if rate_limit_max_retries is not None else self.RATE_LIMIT_MAX_RETRIES
        )
        self._rate_limit_max_wait = rate_limit_max_wait_seconds or self.RATE_LIMIT_MAX_WAIT_SECONDS
        self._repo_max_retries = repo_max_retries if repo_max_retries is not None else self.REPO_MAX_RETRIES
        self._retry_delay = retry_delay_seconds if retry_delay_seconds is not None else self.RETRY_DELAY_SECONDS
        self._progress_callback = progress_callback
        self._clock = clock or (lambda: datetime.now(UTC))

        self._cancelled = asyncio.Event()
        self._started_at: datetime = self._clock()
        self._repositories: dict[Scope, list[RepositoryData]] = {}
        self._last_reported_progress = 0.0

    def cancel(self) -> None:
        """Stops scheduling new repository tasks; in-flight ones finish and persist"""
        if not self._cancelled.is_set():
            logger.info("Sync cancellation requested")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def run(self, kinds: Sequence[EntityKind] = SYNC_KINDS) -> SyncReport:
        self._started_at = self._clock()
        job_start = time.monotonic()
        report = SyncReport()

        scopes = await self._with_retry(self._adapter.fetch_scopes, "scopes")
        report.scopes = [scope.login for scope in scopes]
        total_units = max(1, len(scopes) * len(kinds))
        units_done = 0

        logger.info(
            f"Sync starting: {len(scopes)} scopes x {len(kinds)} kinds, concurrency={self._concurrency}",
            extra={"scopes": report.scopes, "concurrency": self._concurrency},
        )

        for kind in kinds:
            for scope in scopes:
                if self.cancelled:
                    report.cancelled = True
                    break

                await self._sync_scope(scope, kind, report, units_done, total_units)
                units_done += 1
                await self._report_progress(units_done / total_units, force=True)

        report.cancelled = report.cancelled or self.cancelled
        report.progress = units_done / total_units

        elapsed = time.monotonic() - job_start
        logger.info(
            f"Sync complete in {elapsed:.1f}s: {report.repositories_synced} repository passes synced, "
            f"{report.repositories_failed} failed",
            extra={**report.to_summary(), "duration_s": round(elapsed, 1)},
        )
        return report

    async def _sync_scope(
        self,
        scope: Scope,
        kind: EntityKind,
        report: SyncReport,
        units_done: int,
        total_units: int,
    ) -> None:
        if kind is EntityKind.ISSUE and self._use_rest_issues:
            await self._sync_scope_rest_issues(scope, report)
            return

        try:
            repos = await self._repositories_for(scope)
        except AuthenticationExpired:
            raise
        except Exception as e:
            logger.warning(
                f"Sync: could not enumerate repositories of {scope}: {e}",
                extra={"scope": scope.login, "kind": str(kind), "error": str(e)},
            )
            report.failures.append(ScopeFailure(scope=scope.login, kind=str(kind), reason=str(e)))
            return

        if not repos:
            return

        outcomes = await self._sync_repositories(scope, repos, kind, units_done, total_units)
        for outcome in outcomes:
            report.record(outcome)
            if outcome.status == "cancelled":
                report.cancelled = True

    async def _sync_repositories(
        self,
        scope: Scope,
        repos: list[RepositoryData],
        kind: EntityKind,
        units_done: int,
        total_units: int,
    ) -> list[RepoOutcome]:
        semaphore = asyncio.Semaphore(self._concurrency)
        completed = 0

        async def worker(repo: RepositoryData) -> RepoOutcome:
            nonlocal completed
            outcome = await self._repo_worker(scope, repo, kind, semaphore)
            completed += 1
            await self._report_progress((units_done + completed / len(repos)) / total_units)
            return outcome

        try:
            async with asyncio.TaskGroup() as tg:
                tasks = [tg.create_task(worker(repo)) for repo in repos]
        except BaseExceptionGroup as eg:
            auth_errors = eg.subgroup(AuthenticationExpired)
            if auth_errors is not None:
                raise _first_leaf(auth_errors) from eg
            raise

        return [task.result() for task in tasks]

    async def _repo_worker(
        self,
        scope: Scope,
        repo: RepositoryData,
        kind: EntityKind,
        semaphore: asyncio.Semaphore,
    ) -> RepoOutcome:
        if self.cancelled:
            return RepoOutcome(scope.login, repo.ref.full_name, kind, "cancelled")

        async with semaphore:
            if self.cancelled:
                return RepoOutcome(scope.login, repo.ref.full_name, kind, "cancelled")

            fetch_start = time.monotonic()
            try:
                processed = await self._sync_repository(repo, kind)
            except AuthenticationExpired:
                raise
            except Exception as e:
                logger.warning(
                    f"Sync: {kind} of {repo.ref.full_name} failed: {e}",
                    extra={"scope": scope.login, "repo": repo.ref.full_name, "kind": str(kind), "error": str(e)},
                )
                return RepoOutcome(scope.login, repo.ref.full_name, kind, "failed", reason=str(e))

            if processed:
                logger.debug(
                    f"Sync: {repo.ref.full_name} yielded {processed} {kind} rows in {time.monotonic() - fetch_start:.1f}s",
                    extra={"repo": repo.ref.full_name, "kind": str(kind), "count": processed},
                )
            return RepoOutcome(scope.login, repo.ref.full_name, kind, "synced", processed=processed)

    async def _sync_repository(self, repo: RepositoryData, kind: EntityKind) -> int:
        since = None
        if kind is EntityKind.COMMIT:
            # Tag or empty default branch: no history, not an error
            if not repo.has_history:
                return 0
            since = await self._commit_cutoff(repo)

        entities = []
        cursor: str | None = None
        while True:
            page = await self._fetch_page(repo.ref, kind, cursor, since)
            entities.extend(normalize_many(page.nodes, kind, repo_id=repo.id))
            if not page.has_next:
                break
            cursor = page.next_cursor

        await self._persist(entities, repo.ref.full_name)

        if kind is EntityKind.COMMIT:
            await self._store.mark_commits_synced(repo.id, self._started_at)
        return len(entities)

    async def _sync_scope_rest_issues(self, scope: Scope, report: SyncReport) -> None:
        """REST listing is scope-wide; the store resolves owning repositories by name"""
        # Bounded by update time, like the first commit pass of a repository
        since = resolve(self._initial_history_window, now=self._started_at)
        try:
            items = []
            cursor: str | None = None
            while True:
                page = await self._fetch_page(scope, EntityKind.REST_ISSUE, cursor, since)
                items.extend(normalize_many(page.nodes, EntityKind.REST_ISSUE))
                if not page.has_next:
                    break
                cursor = page.next_cursor
            processed = await self._persist(items, scope.login)
        except AuthenticationExpired:
            raise
        except Exception as e:
            logger.warning(f"Sync: REST issues of {scope} failed: {e}", extra={"scope": scope.login})
            report.failures.append(ScopeFailure(scope=scope.login, kind=str(EntityKind.ISSUE), reason=str(e)))
            return

        report.processed[str(EntityKind.ISSUE)] += processed

    async def _repositories_for(self, scope: Scope) -> list[RepositoryData]:
        """Enumerated and upserted once per scope per run, then reused across kinds"""
        if scope in self._repositories:
            return self._repositories[scope]

        repos: list[RepositoryData] = []
        cursor: str | None = None
        while True:
            page = await self._fetch_page(scope, EntityKind.REPOSITORY, cursor, None)
            for repo in normalize_many(page.nodes, EntityKind.REPOSITORY, scope=scope):
                # Personal scope lists owned repos; org-owned ones are synced under their org
                if scope.is_personal and repo.is_in_organization:
                    continue
                repos.append(repo)
            if not page.has_next:
                break
            cursor = page.next_cursor

        await self._persist(repos, scope.login)
        logger.info(
            f"Sync: {scope} has {len(repos)} repositories",
            extra={"scope": scope.login, "repo_count": len(repos)},
        )
        self._repositories[scope] = repos
        return repos

    async def _commit_cutoff(self, repo: RepositoryData) -> datetime | None:
        cursor = await self._store.get_commit_cursor(repo.id)
        if cursor is not None:
            return cursor - self._overlap
        return resolve(self._initial_history_window, now=self._started_at)

    async def _fetch_page(
        self,
        target,
        kind: EntityKind,
        cursor: str | None,
        since: datetime | None,
    ) -> Page:
        return await self._with_retry(
            lambda: self._adapter.fetch_page(target, kind, cursor=cursor, since=since),
            f"{kind} page of {target}",
        )

    async def _persist(self, entities: list, label: str) -> int:
        """One retry per batch; a second failure fails the owning scope"""
        if not entities:
            return 0
        try:
            return await self._store.upsert_batch(entities)
        except StoreWriteFailure as e:
            logger.warning(f"Sync: store write for {label} failed, retrying once: {e}")
            return await self._store.upsert_batch(entities)

    async def _with_retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        rate_limited = 0
        transient = 0

        while True:
            try:
                return await operation()
            except RateLimited as e:
                rate_limited += 1
                if rate_limited > self._rate_limit_max_retries:
                    raise
                delay = self._rate_limit_delay(e)
                logger.info(
                    f"Sync: rate limited on {label}, waiting {delay:.0f}s ({rate_limited}/{self._rate_limit_max_retries})",
                    extra={"label": label, "delay_s": round(delay, 1)},
                )
                await asyncio.sleep(delay)
            except TransientNetworkError as e:
                transient += 1
                if transient > self._repo_max_retries:
                    raise
                delay = self._retry_delay * transient
                logger.debug(f"Sync: transient failure on {label}, retry {transient} after {delay}s: {e}")
                await asyncio.sleep(delay)

    def _rate_limit_delay(self, error: RateLimited) -> float:
        if not error.reset_at:
            return max(1.0, self._retry_delay)
        wait = error.reset_at - time.time()
        return min(max(1.0, wait), self._rate_limit_max_wait)

    async def _report_progress(self, progress: float, force: bool = False) -> None:
        if self._progress_callback is None:
            return
        if not force and progress - self._last_reported_progress < self.PROGRESS_STEP:
            return
        self._last_reported_progress = progress
        try:
            await self._progress_callback(min(progress, 1.0))
        except Exception as e:
            logger.warning(f"Sync: progress update failed: {e}")


def _first_leaf(group: BaseExceptionGroup) -> BaseException:
    exc: BaseException = group
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    return exc
