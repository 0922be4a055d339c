"""Normalized entities flowing from the normalizer into the store"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class EntityKind(StrEnum):
    REPOSITORY = "repository"
    COMMIT = "commit"
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"
    REST_ISSUE = "rest_issue"


class ScopeKind(StrEnum):
    ORGANIZATION = "organization"
    PERSONAL = "personal"


@dataclass(frozen=True)
class Scope:
    """An organization or the viewer's personal account"""

    login: str
    kind: ScopeKind

    @property
    def is_personal(self) -> bool:
        return self.kind is ScopeKind.PERSONAL

    def __str__(self) -> str:
        return self.login


@dataclass(frozen=True)
class RepositoryRef:
    """Minimal addressing info for per-repository queries"""

    id: str
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class CommitHistoryTarget:
    """Default branch points at a commit; history is walkable"""

    oid: str | None = None


@dataclass(frozen=True)
class NoHistoryTarget:
    """Default branch missing or pointing at a non-commit object (tag, tree, blob)"""

    typename: str | None = None


BranchTarget = CommitHistoryTarget | NoHistoryTarget


@dataclass
class RepositoryData:
    id: str
    name: str
    organization: str
    owner: str
    is_personal: bool
    default_branch: str | None
    branch_target: BranchTarget = field(default_factory=NoHistoryTarget)
    is_in_organization: bool = False

    @property
    def has_history(self) -> bool:
        return isinstance(self.branch_target, CommitHistoryTarget)

    @property
    def ref(self) -> RepositoryRef:
        return RepositoryRef(id=self.id, owner=self.owner, name=self.name)


@dataclass
class CommitData:
    id: str
    repo_id: str
    author: str | None
    committed_at: datetime
    lines_added: int
    lines_removed: int
    lines_modified: int


@dataclass
class IssueData:
    id: str
    repo_id: str
    state: str
    created_at: datetime
    closed_at: datetime | None = None


@dataclass
class PullRequestData:
    id: str
    repo_id: str
    state: str
    created_at: datetime
    closed_at: datetime | None = None


@dataclass
class RestIssueData:
    """REST issue item; owning repository resolved by name, not id"""

    id: str
    organization: str
    repository_name: str
    state: str
    created_at: datetime
    closed_at: datetime | None = None


Entity = RepositoryData | CommitData | IssueData | PullRequestData
