"""API routes for organization statistics."""
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from gp_backend.api.dependencies import get_store
from gp_backend.ingestion.persistence import SyncStore
from gp_backend.services.stats_service import (
    ContributorStats,
    OrgStats,
    get_contributor_stats,
    get_org_stats,
)

router = APIRouter()


def _repo_names(repositories: list[str] | None) -> list[str] | None:
    """Accepts repeated and comma separated values; absent means every repository"""
    if repositories is None:
        return None
    return [name.strip() for value in repositories for name in value.split(",") if name.strip()]


@router.get("/{organization}", response_model=OrgStats)
async def get_org_stats_endpoint(
    organization: str,
    repositories: Annotated[Optional[list[str]], Query(description="Repository names to include")] = None,
    window: Annotated[Optional[str], Query(description="last day, last week, last month, last 3 months, last 6 months")] = None,
    store: SyncStore = Depends(get_store),
) -> OrgStats:
    """
    Repositories of an organization with nested commits, issues and pull requests.

    With a window, commits are limited to the window and repositories
    without commits in it are omitted.
    """
    return await get_org_stats(
        store,
        organization,
        repo_names=_repo_names(repositories),
        window_name=window,
    )


@router.get("/{organization}/contributors", response_model=ContributorStats)
async def get_contributors_endpoint(
    organization: str,
    repositories: Annotated[Optional[list[str]], Query(description="Repository names to include")] = None,
    window: Annotated[Optional[str], Query(description="last day, last week, last month, last 3 months, last 6 months")] = None,
    store: SyncStore = Depends(get_store),
) -> ContributorStats:
    """Per-author rollup ordered by lines added, ties by author name."""
    return await get_contributor_stats(
        store,
        organization,
        repo_names=_repo_names(repositories),
        window_name=window,
    )
