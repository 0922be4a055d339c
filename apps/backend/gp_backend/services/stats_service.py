"""
Organization statistics read path: window resolver -> store -> aggregation.
"""
import logging
from datetime import datetime

from pydantic import BaseModel

from gp_backend.ingestion.aggregation import aggregate
from gp_backend.ingestion.persistence import RepositorySnapshot, SyncStore
from gp_backend.ingestion.windows import TimeWindow

logger = logging.getLogger(__name__)


class CommitItem(BaseModel):
    id: str
    author: str | None
    committed_at: datetime
    lines_added: int
    lines_removed: int
    lines_modified: int


class LifecycleItem(BaseModel):
    """Issue or pull request state."""
    id: str
    state: str
    created_at: datetime
    closed_at: datetime | None


class RepositoryStats(BaseModel):
    id: str
    name: str
    organization: str
    is_personal: bool
    default_branch: str | None
    last_synced_at: datetime | None
    commits: list[CommitItem]
    issues: list[LifecycleItem]
    pull_requests: list[LifecycleItem]


class OrgStats(BaseModel):
    organization: str
    window: str | None
    since: datetime | None
    repositories: list[RepositoryStats]


class ContributorItem(BaseModel):
    author: str
    lines_added: int
    lines_removed: int
    lines_modified: int
    commit_count: int
    activity_count: int


class ContributorStats(BaseModel):
    organization: str
    window: str | None
    since: datetime | None
    contributors: list[ContributorItem]


def _repository_stats(snapshot: RepositorySnapshot) -> RepositoryStats:
    repo = snapshot.repository
    return RepositoryStats(
        id=repo.id,
        name=repo.name,
        organization=repo.organization,
        is_personal=repo.is_personal,
        default_branch=repo.default_branch,
        last_synced_at=repo.last_synced_at,
        commits=[
            CommitItem(
                id=c.id,
                author=c.author,
                committed_at=c.committed_at,
                lines_added=c.lines_added,
                lines_removed=c.lines_removed,
                lines_modified=c.lines_modified,
            )
            for c in snapshot.commits
        ],
        issues=[
            LifecycleItem(id=i.id, state=i.state, created_at=i.created_at, closed_at=i.closed_at)
            for i in snapshot.issues
        ],
        pull_requests=[
            LifecycleItem(id=p.id, state=p.state, created_at=p.created_at, closed_at=p.closed_at)
            for p in snapshot.pull_requests
        ],
    )


async def get_org_stats(
    store: SyncStore,
    organization: str,
    repo_names: list[str] | None = None,
    window_name: str | None = None,
    now: datetime | None = None,
) -> OrgStats:
    """
    Repositories of an organization with nested rows. An unrecognized
    window name is treated as no window.
    """
    window = TimeWindow.named(window_name, now)
    snapshots = await store.find_by(organization, repo_names, since=window.cutoff)

    logger.debug(
        f"Org stats for {organization}: {len(snapshots)} repositories",
        extra={"organization": organization, "window": window_name},
    )
    return OrgStats(
        organization=organization,
        window=window_name if window.is_bounded else None,
        since=window.cutoff,
        repositories=[_repository_stats(s) for s in snapshots],
    )


async def get_contributor_stats(
    store: SyncStore,
    organization: str,
    repo_names: list[str] | None = None,
    window_name: str | None = None,
    now: datetime | None = None,
) -> ContributorStats:
    window = TimeWindow.named(window_name, now)
    snapshots = await store.find_by(organization, repo_names, since=window.cutoff)
    aggregates = aggregate(snapshots, window)

    return ContributorStats(
        organization=organization,
        window=window_name if window.is_bounded else None,
        since=window.cutoff,
        contributors=[
            ContributorItem(
                author=a.author,
                lines_added=a.lines_added,
                lines_removed=a.lines_removed,
                lines_modified=a.lines_modified,
                commit_count=a.commit_count,
                activity_count=a.activity_count,
            )
            for a in aggregates
        ],
    )
