"""
Pure mapping from raw GitHub nodes to normalized entities.

Every nullable decision (missing author, open issue without closedAt,
default branch that is not a commit) is made here once, so the store and
the aggregation engine only ever see explicit None values.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from gp_backend.core.errors import MappingAnomaly

from .entities import (
    BranchTarget,
    CommitData,
    CommitHistoryTarget,
    EntityKind,
    IssueData,
    NoHistoryTarget,
    PullRequestData,
    RepositoryData,
    RestIssueData,
    Scope,
)

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any, field: str) -> datetime:
    if not isinstance(value, str) or not value:
        raise MappingAnomaly(f"{field} missing or not a string: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise MappingAnomaly(f"{field} is not ISO 8601: {value!r}") from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _optional_timestamp(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    return parse_timestamp(value, field)


def _required_id(node: dict, key: str = "id") -> str:
    node_id = node.get(key)
    if not isinstance(node_id, str) or not node_id:
        raise MappingAnomaly(f"node without {key}: {node!r}")
    return node_id


def _object(node: dict, key: str) -> dict:
    value = node.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MappingAnomaly(f"{key} is not an object: {value!r}")
    return value


def _optional_str(value: Any, field: str) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise MappingAnomaly(f"{field} is not a string: {value!r}")
    return value


def _line_count(value: Any, field: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise MappingAnomaly(f"{field} is not an integer: {value!r}")
    return value


def _state(value: Any) -> str:
    # GitHub returns OPEN / CLOSED / MERGED; REST returns lowercase already
    if not isinstance(value, str) or not value:
        return "open"
    return value.lower()


def parse_branch_target(default_branch_ref: dict | None) -> BranchTarget:
    """Only a Commit target carries walkable history"""
    if not default_branch_ref:
        return NoHistoryTarget()
    if not isinstance(default_branch_ref, dict):
        raise MappingAnomaly(f"defaultBranchRef is not an object: {default_branch_ref!r}")
    target = _object(default_branch_ref, "target")
    typename = _optional_str(target.get("__typename"), "__typename")
    if typename == "Commit":
        return CommitHistoryTarget(oid=_optional_str(target.get("oid"), "target.oid"))
    return NoHistoryTarget(typename=typename)


def normalize_repository(node: dict, scope: Scope) -> RepositoryData:
    repo_id = _required_id(node)
    name = node.get("name")
    if not isinstance(name, str) or not name:
        raise MappingAnomaly(f"repository {repo_id} without name")

    owner = _optional_str(_object(node, "owner").get("login"), "owner.login") or scope.login
    default_branch_ref = _object(node, "defaultBranchRef")
    branch_target = parse_branch_target(default_branch_ref)

    return RepositoryData(
        id=repo_id,
        name=name,
        organization=scope.login,
        owner=owner,
        is_personal=scope.is_personal,
        default_branch=_optional_str(default_branch_ref.get("name"), "defaultBranchRef.name"),
        branch_target=branch_target,
        is_in_organization=bool(node.get("isInOrganization")),
    )


def normalize_commit(node: dict, repo_id: str) -> CommitData:
    commit_id = _required_id(node)
    added = _line_count(node.get("additions"), "additions")
    removed = _line_count(node.get("deletions"), "deletions")
    author = _optional_str(_object(node, "author").get("name"), "author.name")

    return CommitData(
        id=commit_id,
        repo_id=repo_id,
        author=author,
        committed_at=parse_timestamp(node.get("committedDate"), "committedDate"),
        lines_added=added,
        lines_removed=removed,
        lines_modified=added - removed,
    )


def normalize_issue(node: dict, repo_id: str) -> IssueData:
    return IssueData(
        id=_required_id(node),
        repo_id=repo_id,
        state=_state(node.get("state")),
        created_at=parse_timestamp(node.get("createdAt"), "createdAt"),
        closed_at=_optional_timestamp(node.get("closedAt"), "closedAt"),
    )


def normalize_pull_request(node: dict, repo_id: str) -> PullRequestData:
    return PullRequestData(
        id=_required_id(node),
        repo_id=repo_id,
        state=_state(node.get("state")),
        created_at=parse_timestamp(node.get("createdAt"), "createdAt"),
        closed_at=_optional_timestamp(node.get("closedAt"), "closedAt"),
    )


def repository_from_url(repository_url: Any) -> tuple[str, str]:
    """https://api.github.com/repos/{owner}/{name} -> (owner, name)"""
    if not isinstance(repository_url, str) or not repository_url:
        raise MappingAnomaly(f"repository_url missing: {repository_url!r}")
    parts = [p for p in urlparse(repository_url).path.split("/") if p]
    if len(parts) < 2:
        raise MappingAnomaly(f"repository_url has no owner/name: {repository_url!r}")
    return parts[-2], parts[-1]


def normalize_rest_issue(item: dict) -> RestIssueData | None:
    # The REST issues listing also returns pull requests
    if item.get("pull_request"):
        return None

    owner, name = repository_from_url(item.get("repository_url"))
    return RestIssueData(
        id=_required_id(item, "node_id"),
        organization=owner,
        repository_name=name,
        state=_state(item.get("state")),
        created_at=parse_timestamp(item.get("created_at"), "created_at"),
        closed_at=_optional_timestamp(item.get("closed_at"), "closed_at"),
    )


def normalize(
    raw_node: Any,
    kind: EntityKind,
    *,
    scope: Scope | None = None,
    repo_id: str | None = None,
):
    """Maps one node; returns None (skip) for anything it cannot interpret"""
    if not isinstance(raw_node, dict):
        logger.warning(f"Normalizer: skipping non-object {kind} node: {raw_node!r}")
        return None

    try:
        match kind:
            case EntityKind.REPOSITORY:
                if scope is None:
                    raise ValueError("scope is required for repository nodes")
                return normalize_repository(raw_node, scope)
            case EntityKind.COMMIT:
                return normalize_commit(raw_node, _context_repo_id(repo_id))
            case EntityKind.ISSUE:
                return normalize_issue(raw_node, _context_repo_id(repo_id))
            case EntityKind.PULL_REQUEST:
                return normalize_pull_request(raw_node, _context_repo_id(repo_id))
            case EntityKind.REST_ISSUE:
                return normalize_rest_issue(raw_node)
            case _:
                raise ValueError(f"Unknown entity kind: {kind}")
    except MappingAnomaly as e:
        logger.warning(
            f"Normalizer: skipping {kind} node: {e}",
            extra={"kind": str(kind), "node_id": raw_node.get("id") or raw_node.get("node_id")},
        )
        return None


def normalize_many(
    raw_nodes: Iterable[Any],
    kind: EntityKind,
    *,
    scope: Scope | None = None,
    repo_id: str | None = None,
) -> list:
    entities = []
    for node in raw_nodes:
        entity = normalize(node, kind, scope=scope, repo_id=repo_id)
        if entity is not None:
            entities.append(entity)
    return entities


def _context_repo_id(repo_id: str | None) -> str:
    if not repo_id:
        raise ValueError("repo_id is required for repository-owned nodes")
    return repo_id
