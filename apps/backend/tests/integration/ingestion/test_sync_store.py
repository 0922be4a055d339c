"""Integration tests for the idempotent store on SQLite"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlmodel import select

from gp_backend.core.errors import StoreWriteFailure
from gp_backend.ingestion.entities import (
    CommitData,
    IssueData,
    PullRequestData,
    RepositoryData,
    RestIssueData,
)
from gp_backend.ingestion.persistence import SyncStore
from gp_database.models import Commit, Issue

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _repo(repo_id="R_1", name="api", organization="acme", branch="main"):
    return RepositoryData(
        id=repo_id,
        name=name,
        organization=organization,
        owner=organization,
        is_personal=False,
        default_branch=branch,
    )


def _commit(commit_id, repo_id="R_1", author="alice", added=1, removed=0, at=NOW - timedelta(days=1)):
    return CommitData(
        id=commit_id,
        repo_id=repo_id,
        author=author,
        committed_at=at,
        lines_added=added,
        lines_removed=removed,
        lines_modified=added - removed,
    )


async def _all(session_factory, model):
    async with session_factory() as session:
        return list((await session.exec(select(model))).all())


class TestUpsert:
    async def test_same_entity_twice_leaves_one_row(self, store, session_factory):
        await store.upsert(_repo())
        await store.upsert(_commit("C_1"))
        await store.upsert(_commit("C_1"))

        assert len(await _all(session_factory, Commit)) == 1

    async def test_latest_write_wins(self, store, session_factory):
        await store.upsert_batch([_repo(), _commit("C_1", added=1)])
        await store.upsert_batch([_commit("C_1", added=9, removed=2)])

        (commit,) = await _all(session_factory, Commit)
        assert (commit.lines_added, commit.lines_removed, commit.lines_modified) == (9, 2, 7)

    async def test_batch_with_mixed_kinds_and_chunks(self, store, session_factory):
        count = await store.upsert_batch([
            _commit("C_1"),
            _commit("C_2"),
            _commit("C_3"),
            IssueData(id="I_1", repo_id="R_1", state="open", created_at=NOW),
            PullRequestData(id="PR_1", repo_id="R_1", state="merged", created_at=NOW, closed_at=NOW),
            _repo(),
        ])

        assert count == 6
        assert len(await _all(session_factory, Commit)) == 3
        assert len(await _all(session_factory, Issue)) == 1

    async def test_issue_state_change_overwrites(self, store, session_factory):
        await store.upsert_batch([_repo(), IssueData(id="I_1", repo_id="R_1", state="open", created_at=NOW)])
        await store.upsert(IssueData(id="I_1", repo_id="R_1", state="closed", created_at=NOW, closed_at=NOW))

        (issue,) = await _all(session_factory, Issue)
        assert issue.state == "closed"

    async def test_unsupported_entity_raises(self, store):
        with pytest.raises(TypeError):
            await store.upsert({"id": "x"})

    async def test_concurrent_upserts_do_not_duplicate(self, store, session_factory):
        await store.upsert(_repo())
        batch = [_commit(f"C_{i}") for i in range(10)]

        await asyncio.gather(*(store.upsert_batch(batch) for _ in range(4)))

        assert len(await _all(session_factory, Commit)) == 10

    async def test_missing_table_raises_store_write_failure(self, session_factory, db_engine):
        async with db_engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE pull_request")

        with pytest.raises(StoreWriteFailure):
            await SyncStore(session_factory).upsert(
                PullRequestData(id="PR_1", repo_id="R_1", state="open", created_at=NOW)
            )


class TestCommitCursor:
    async def test_repository_upsert_preserves_cursor(self, store):
        await store.upsert(_repo())
        await store.mark_commits_synced("R_1", NOW)

        await store.upsert(_repo(branch="trunk"))

        assert await store.get_commit_cursor("R_1") == NOW

    async def test_unknown_repository_has_no_cursor(self, store):
        assert await store.get_commit_cursor("R_missing") is None

    async def test_cursor_is_timezone_aware(self, store):
        await store.upsert(_repo())
        await store.mark_commits_synced("R_1", NOW)

        cursor = await store.get_commit_cursor("R_1")
        assert cursor.tzinfo is not None


class TestRestIssues:
    async def test_resolves_repository_and_skips_unknown(self, store, session_factory):
        await store.upsert(_repo())

        count = await store.upsert_rest_issues([
            RestIssueData(id="I_1", organization="acme", repository_name="api", state="open", created_at=NOW),
            RestIssueData(id="I_2", organization="acme", repository_name="web", state="open", created_at=NOW),
        ])

        assert count == 1
        (issue,) = await _all(session_factory, Issue)
        assert issue.repo_id == "R_1"


class TestFindBy:
    @pytest.fixture
    async def seeded(self, store):
        await store.upsert_batch([
            _repo("R_1", "api"),
            _repo("R_2", "web"),
            _repo("R_3", "cli", organization="other"),
            _commit("C_recent", "R_1", at=NOW - timedelta(days=2)),
            _commit("C_boundary", "R_1", at=NOW - timedelta(hours=168)),
            _commit("C_old", "R_2", at=NOW - timedelta(days=60)),
            _commit("C_other", "R_3"),
            IssueData(id="I_1", repo_id="R_2", state="open", created_at=NOW),
        ])
        return store

    async def test_all_repositories_of_organization(self, seeded):
        snapshots = await seeded.find_by("acme")

        assert [s.repository.name for s in snapshots] == ["api", "web"]
        assert {c.id for c in snapshots[0].commits} == {"C_recent", "C_boundary"}
        assert [i.id for i in snapshots[1].issues] == ["I_1"]

    async def test_filters_by_repository_names(self, seeded):
        snapshots = await seeded.find_by("acme", repo_names=["web"])

        assert [s.repository.name for s in snapshots] == ["web"]

    async def test_empty_name_list_matches_nothing(self, seeded):
        assert await seeded.find_by("acme", repo_names=[]) == []

    async def test_since_is_exclusive_and_drops_inactive_repositories(self, seeded):
        snapshots = await seeded.find_by("acme", since=NOW - timedelta(hours=168))

        assert [s.repository.name for s in snapshots] == ["api"]
        assert [c.id for c in snapshots[0].commits] == ["C_recent"]

    async def test_returned_timestamps_are_utc(self, seeded):
        snapshots = await seeded.find_by("acme")

        for commit in snapshots[0].commits:
            assert commit.committed_at.tzinfo is not None

    async def test_unknown_organization(self, seeded):
        assert await seeded.find_by("nobody") == []
