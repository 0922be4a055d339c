"""Per-contributor rollups over persisted commits"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from datetime import datetime

    from .windows import TimeWindow


class CommitLike(Protocol):
    author: str | None
    committed_at: datetime
    lines_added: int
    lines_removed: int
    lines_modified: int


class HasCommits(Protocol):
    commits: list


@dataclass
class ContributorAggregate:
    author: str
    lines_added: int = 0
    lines_removed: int = 0
    lines_modified: int = 0
    commit_count: int = 0
    activity_count: int = 0

    def add(self, commit: CommitLike) -> None:
        self.lines_added += commit.lines_added
        self.lines_removed += commit.lines_removed
        self.lines_modified += commit.lines_modified
        self.commit_count += 1
        self.activity_count += 1


def aggregate_commits(commits: Iterable[CommitLike], window: TimeWindow) -> list[ContributorAggregate]:
    """Authorless commits have no identity to aggregate under and are dropped"""
    buckets: dict[str, ContributorAggregate] = {}

    for commit in commits:
        if commit.author is None or not window.contains(commit.committed_at):
            continue
        bucket = buckets.get(commit.author)
        if bucket is None:
            bucket = buckets[commit.author] = ContributorAggregate(author=commit.author)
        bucket.add(commit)

    return sorted(buckets.values(), key=lambda a: (-a.lines_added, a.author))


def aggregate(repositories: Iterable[HasCommits], window: TimeWindow) -> list[ContributorAggregate]:
    """Ordered by lines added descending, ties by author ascending"""
    return aggregate_commits(
        (commit for repository in repositories for commit in repository.commits),
        window,
    )
