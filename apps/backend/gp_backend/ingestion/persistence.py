"""Idempotent persistence for synchronized entities, keyed by GitHub node id"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from gp_backend.core.errors import StoreWriteFailure
from gp_database.models import Commit, Issue, PullRequest, Repository

from .entities import CommitData, IssueData, PullRequestData, RepositoryData, RestIssueData
from .windows import as_utc

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = logging.getLogger(__name__)

# Columns rewritten on conflict; commits_synced_at is owned by the orchestrator
REPOSITORY_UPDATE_COLUMNS = ("name", "organization", "is_personal", "default_branch", "last_synced_at")
COMMIT_UPDATE_COLUMNS = ("repo_id", "author", "committed_at", "lines_added", "lines_removed", "lines_modified")
LIFECYCLE_UPDATE_COLUMNS = ("repo_id", "state", "created_at", "closed_at")


@dataclass
class RepositorySnapshot:
    """A repository with its related rows, as read for presentation and aggregation"""

    repository: Repository
    commits: list[Commit] = field(default_factory=list)
    issues: list[Issue] = field(default_factory=list)
    pull_requests: list[PullRequest] = field(default_factory=list)


class SyncStore:
    """
    Insert-or-overwrite by id through the dialect's ON CONFLICT DO UPDATE.
    Opens one session per write so concurrent repository tasks never share one.
    """

    BATCH_SIZE: int = 200

    def __init__(self, session_factory: sessionmaker, batch_size: int | None = None):
        self._session_factory = session_factory
        self._batch_size = batch_size or self.BATCH_SIZE

    async def upsert(self, entity: Any) -> int:
        return await self.upsert_batch([entity])

    async def upsert_batch(self, entities: Iterable[Any]) -> int:
        """Mixed entity kinds allowed; repositories are written first for the FK"""
        repos: list[RepositoryData] = []
        commits: list[CommitData] = []
        issues: list[IssueData] = []
        pull_requests: list[PullRequestData] = []
        rest_issues: list[RestIssueData] = []

        for entity in entities:
            match entity:
                case RepositoryData():
                    repos.append(entity)
                case CommitData():
                    commits.append(entity)
                case IssueData():
                    issues.append(entity)
                case PullRequestData():
                    pull_requests.append(entity)
                case RestIssueData():
                    rest_issues.append(entity)
                case _:
                    raise TypeError(f"Cannot persist {type(entity).__name__}")

        total = 0
        total += await self.upsert_repositories(repos)
        total += await self.upsert_commits(commits)
        total += await self.upsert_issues(issues)
        total += await self.upsert_pull_requests(pull_requests)
        total += await self.upsert_rest_issues(rest_issues)
        return total

    async def upsert_repositories(
        self,
        repos: Sequence[RepositoryData],
        synced_at: datetime | None = None,
    ) -> int:
        if not repos:
            return 0

        synced_at = synced_at or datetime.now(UTC)
        rows = [
            {
                "id": repo.id,
                "name": repo.name,
                "organization": repo.organization,
                "is_personal": repo.is_personal,
                "default_branch": repo.default_branch,
                "last_synced_at": synced_at,
            }
            for repo in repos
        ]
        await self._upsert_rows(Repository, rows, REPOSITORY_UPDATE_COLUMNS)
        logger.debug(f"Upserted {len(rows)} repositories")
        return len(rows)

    async def upsert_commits(self, commits: Sequence[CommitData]) -> int:
        if not commits:
            return 0
        rows = [asdict(commit) for commit in commits]
        await self._upsert_rows(Commit, rows, COMMIT_UPDATE_COLUMNS)
        logger.debug(f"Upserted {len(rows)} commits")
        return len(rows)

    async def upsert_issues(self, issues: Sequence[IssueData]) -> int:
        if not issues:
            return 0
        rows = [asdict(issue) for issue in issues]
        await self._upsert_rows(Issue, rows, LIFECYCLE_UPDATE_COLUMNS)
        logger.debug(f"Upserted {len(rows)} issues")
        return len(rows)

    async def upsert_pull_requests(self, pull_requests: Sequence[PullRequestData]) -> int:
        if not pull_requests:
            return 0
        rows = [asdict(pr) for pr in pull_requests]
        await self._upsert_rows(PullRequest, rows, LIFECYCLE_UPDATE_COLUMNS)
        logger.debug(f"Upserted {len(rows)} pull requests")
        return len(rows)

    async def upsert_rest_issues(self, items: Sequence[RestIssueData]) -> int:
        """Resolves repo ids by (organization, name); items for unknown repositories are skipped"""
        if not items:
            return 0

        names = {item.repository_name for item in items}
        organizations = {item.organization for item in items}
        async with self._session_factory() as session:
            result = await session.exec(
                select(Repository.id, Repository.organization, Repository.name).where(
                    Repository.name.in_(names),
                    Repository.organization.in_(organizations),
                )
            )
            repo_ids = {(org, name): repo_id for repo_id, org, name in result.all()}

        issues: list[IssueData] = []
        skipped = 0
        for item in items:
            repo_id = repo_ids.get((item.organization, item.repository_name))
            if repo_id is None:
                skipped += 1
                continue
            issues.append(
                IssueData(
                    id=item.id,
                    repo_id=repo_id,
                    state=item.state,
                    created_at=item.created_at,
                    closed_at=item.closed_at,
                )
            )

        if skipped:
            logger.info(
                f"Skipped {skipped} REST issues for repositories not yet synchronized",
                extra={"skipped": skipped},
            )
        return await self.upsert_issues(issues)

    async def get_commit_cursor(self, repo_id: str) -> datetime | None:
        async with self._session_factory() as session:
            result = await session.exec(
                select(Repository.commits_synced_at).where(Repository.id == repo_id)
            )
            value = result.first()
        return as_utc(value) if value is not None else None

    async def mark_commits_synced(self, repo_id: str, synced_at: datetime) -> None:
        async with self._session_factory() as session:
            try:
                await session.execute(
                    update(Repository)
                    .where(Repository.id == repo_id)
                    .values(commits_synced_at=as_utc(synced_at))
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreWriteFailure(f"Could not advance commit cursor for {repo_id}: {e}") from e

    async def find_by(
        self,
        organization: str,
        repo_names: Iterable[str] | None = None,
        since: datetime | None = None,
    ) -> list[RepositorySnapshot]:
        """
        Repositories of one organization (optionally restricted by name) with
        nested rows. With `since`, commits are limited to committed_at > since
        and repositories without a commit in that range are left out.
        """
        names = list(repo_names) if repo_names is not None else None
        if names is not None and not names:
            return []

        async with self._session_factory() as session:
            stmt = select(Repository).where(Repository.organization == organization)
            if names is not None:
                stmt = stmt.where(Repository.name.in_(names))
            repos = list((await session.exec(stmt.order_by(Repository.name))).all())
            if not repos:
                return []

            repo_ids = [repo.id for repo in repos]

            commit_stmt = select(Commit).where(Commit.repo_id.in_(repo_ids))
            if since is not None:
                commit_stmt = commit_stmt.where(Commit.committed_at > as_utc(since))
            commits = (await session.exec(commit_stmt.order_by(Commit.committed_at.desc()))).all()
            issues = (await session.exec(select(Issue).where(Issue.repo_id.in_(repo_ids)))).all()
            pull_requests = (
                await session.exec(select(PullRequest).where(PullRequest.repo_id.in_(repo_ids)))
            ).all()

        snapshots = {repo.id: RepositorySnapshot(repository=repo) for repo in repos}
        for commit in commits:
            commit.committed_at = as_utc(commit.committed_at)
            snapshots[commit.repo_id].commits.append(commit)
        for issue in issues:
            _coerce_lifecycle(issue)
            snapshots[issue.repo_id].issues.append(issue)
        for pr in pull_requests:
            _coerce_lifecycle(pr)
            snapshots[pr.repo_id].pull_requests.append(pr)

        result = list(snapshots.values())
        if since is not None:
            result = [snapshot for snapshot in result if snapshot.commits]
        return result

    def _insert(self, session: AsyncSession, model: type):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model.__table__)
        if dialect == "sqlite":
            return sqlite_insert(model.__table__)
        raise StoreWriteFailure(f"Upsert not supported for dialect {dialect}")

    async def _upsert_rows(
        self,
        model: type,
        rows: list[dict[str, Any]],
        update_columns: Sequence[str],
    ) -> None:
        """Chunked; each chunk commits on its own so a failure never leaves a half-written chunk"""
        for start in range(0, len(rows), self._batch_size):
            chunk = [_utc_row(row) for row in rows[start:start + self._batch_size]]
            async with self._session_factory() as session:
                try:
                    stmt = self._insert(session, model).values(chunk)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["id"],
                        set_={column: stmt.excluded[column] for column in update_columns},
                    )
                    await session.execute(stmt)
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(
                        f"Upsert into {model.__tablename__} failed for {len(chunk)} rows: {e}",
                        extra={"table": model.__tablename__, "rows": len(chunk)},
                    )
                    raise StoreWriteFailure(f"Upsert into {model.__tablename__} failed: {e}") from e


def _utc_row(row: dict[str, Any]) -> dict[str, Any]:
    return {key: as_utc(value) if isinstance(value, datetime) else value for key, value in row.items()}


def _coerce_lifecycle(row: Issue | PullRequest) -> None:
    row.created_at = as_utc(row.created_at)
    if row.closed_at is not None:
        row.closed_at = as_utc(row.closed_at)
