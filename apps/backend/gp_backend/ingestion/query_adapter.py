"""Single-page fetches over the GitHub APIs; no sync semantics"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from gp_backend.core.errors import UpstreamNotFound

from . import queries
from .entities import CommitHistoryTarget, EntityKind, RepositoryRef, Scope, ScopeKind
from .normalizer import parse_branch_target

if TYPE_CHECKING:
    from .github_client import GitHubGraphQLClient
    from .rest_issues import RestIssuesClient

logger = logging.getLogger(__name__)


@dataclass
class Page:
    nodes: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None

    @property
    def has_next(self) -> bool:
        return self.next_cursor is not None


def _page_from_connection(connection: dict | None) -> Page:
    if not connection:
        return Page()
    nodes = [n for n in (connection.get("nodes") or []) if n is not None]
    page_info = connection.get("pageInfo") or {}
    next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
    return Page(nodes=nodes, next_cursor=next_cursor)


def _git_timestamp(since: datetime) -> str:
    if since.tzinfo is None:
        since = since.replace(tzinfo=UTC)
    return since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class PaginatedQueryAdapter:
    """
    fetch_page(target, kind, cursor, since) -> Page. target is a Scope for
    repository listings and REST issues, a RepositoryRef for history.
    Errors from the clients propagate unchanged.
    """

    PAGE_SIZE: int = 100

    def __init__(
        self,
        client: GitHubGraphQLClient,
        rest_client: RestIssuesClient | None = None,
        page_size: int | None = None,
    ):
        self._client = client
        self._rest_client = rest_client
        self._page_size = min(page_size or self.PAGE_SIZE, self.PAGE_SIZE)

    async def fetch_scopes(self) -> list[Scope]:
        """Personal account first, then every organization the viewer belongs to"""
        scopes: list[Scope] = []
        cursor: str | None = None

        while True:
            data = await self._client.execute_query(
                queries.VIEWER_ORGANIZATIONS,
                variables={"first": self._page_size, "after": cursor},
            )
            viewer = data.get("viewer") or {}
            if not scopes:
                login = viewer.get("login")
                if login:
                    scopes.append(Scope(login=login, kind=ScopeKind.PERSONAL))

            page = _page_from_connection(viewer.get("organizations"))
            for node in page.nodes:
                if node.get("login"):
                    scopes.append(Scope(login=node["login"], kind=ScopeKind.ORGANIZATION))

            if not page.has_next:
                break
            cursor = page.next_cursor

        logger.info(f"Adapter: resolved {len(scopes)} scopes", extra={"scope_count": len(scopes)})
        return scopes

    async def fetch_page(
        self,
        target: Scope | RepositoryRef,
        kind: EntityKind,
        cursor: str | None = None,
        since: datetime | None = None,
    ) -> Page:
        match kind:
            case EntityKind.REPOSITORY:
                return await self._fetch_repositories(self._as_scope(target), cursor)
            case EntityKind.COMMIT:
                return await self._fetch_commits(self._as_repo(target), cursor, since)
            case EntityKind.ISSUE:
                return await self._fetch_repo_connection(
                    queries.REPOSITORY_ISSUES, "issues", self._as_repo(target), cursor
                )
            case EntityKind.PULL_REQUEST:
                return await self._fetch_repo_connection(
                    queries.REPOSITORY_PULL_REQUESTS, "pullRequests", self._as_repo(target), cursor
                )
            case EntityKind.REST_ISSUE:
                return await self._fetch_rest_issues(self._as_scope(target), cursor, since)
            case _:
                raise ValueError(f"Unsupported entity kind: {kind}")

    async def iterate_pages(
        self,
        target: Scope | RepositoryRef,
        kind: EntityKind,
        since: datetime | None = None,
    ) -> AsyncIterator[Page]:
        """Follows the cursor chain in order; stops when no next cursor is returned"""
        cursor: str | None = None
        while True:
            page = await self.fetch_page(target, kind, cursor=cursor, since=since)
            yield page
            if not page.has_next:
                return
            cursor = page.next_cursor

    async def _fetch_repositories(self, scope: Scope, cursor: str | None) -> Page:
        variables: dict[str, Any] = {"first": self._page_size, "after": cursor}

        if scope.is_personal:
            data = await self._client.execute_query(queries.VIEWER_REPOSITORIES, variables=variables)
            return _page_from_connection((data.get("viewer") or {}).get("repositories"))

        variables["login"] = scope.login
        data = await self._client.execute_query(queries.ORGANIZATION_REPOSITORIES, variables=variables)
        organization = data.get("organization")
        if organization is None:
            raise UpstreamNotFound(f"Organization not found: {scope.login}")
        return _page_from_connection(organization.get("repositories"))

    async def _fetch_commits(
        self,
        repo: RepositoryRef,
        cursor: str | None,
        since: datetime | None,
    ) -> Page:
        variables: dict[str, Any] = {
            "owner": repo.owner,
            "name": repo.name,
            "first": self._page_size,
            "after": cursor,
        }
        if since is not None:
            variables["since"] = _git_timestamp(since)

        data = await self._client.execute_query(queries.COMMIT_HISTORY, variables=variables, estimated_cost=2)
        repository = data.get("repository")
        if repository is None:
            raise UpstreamNotFound(f"Repository not found: {repo.full_name}")

        default_branch_ref = repository.get("defaultBranchRef")
        if not isinstance(parse_branch_target(default_branch_ref), CommitHistoryTarget):
            return Page()
        return _page_from_connection(default_branch_ref["target"].get("history"))

    async def _fetch_repo_connection(
        self,
        query: str,
        connection_key: str,
        repo: RepositoryRef,
        cursor: str | None,
    ) -> Page:
        data = await self._client.execute_query(
            query,
            variables={
                "owner": repo.owner,
                "name": repo.name,
                "first": self._page_size,
                "after": cursor,
            },
        )
        repository = data.get("repository")
        if repository is None:
            raise UpstreamNotFound(f"Repository not found: {repo.full_name}")
        return _page_from_connection(repository.get(connection_key))

    async def _fetch_rest_issues(self, scope: Scope, cursor: str | None, since: datetime | None) -> Page:
        if self._rest_client is None:
            raise RuntimeError("REST issues require a RestIssuesClient")
        organization = None if scope.is_personal else scope.login
        items, next_link = await self._rest_client.fetch_page(organization, cursor=cursor, since=since)
        return Page(nodes=items, next_cursor=next_link)

    @staticmethod
    def _as_scope(target: Scope | RepositoryRef) -> Scope:
        if not isinstance(target, Scope):
            raise TypeError(f"Expected a Scope, got {type(target).__name__}")
        return target

    @staticmethod
    def _as_repo(target: Scope | RepositoryRef) -> RepositoryRef:
        if not isinstance(target, RepositoryRef):
            raise TypeError(f"Expected a RepositoryRef, got {type(target).__name__}")
        return target
