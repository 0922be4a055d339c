"""Unit tests for raw GitHub node normalization"""

from datetime import UTC, datetime

import pytest

from gp_backend.core.errors import MappingAnomaly
from gp_backend.ingestion.entities import (
    CommitData,
    CommitHistoryTarget,
    EntityKind,
    IssueData,
    NoHistoryTarget,
    PullRequestData,
    RepositoryData,
    RestIssueData,
    Scope,
    ScopeKind,
)
from gp_backend.ingestion.normalizer import (
    normalize,
    normalize_many,
    parse_branch_target,
    parse_timestamp,
    repository_from_url,
)

ORG = Scope(login="acme", kind=ScopeKind.ORGANIZATION)
PERSONAL = Scope(login="octocat", kind=ScopeKind.PERSONAL)


def _commit_node(**overrides):
    node = {
        "id": "C_1",
        "committedDate": "2024-03-01T10:00:00Z",
        "additions": 10,
        "deletions": 3,
        "author": {"name": "alice"},
    }
    node.update(overrides)
    return node


class TestParseTimestamp:
    def test_z_suffix_is_utc(self):
        assert parse_timestamp("2024-03-01T10:00:00Z", "f") == datetime(2024, 3, 1, 10, tzinfo=UTC)

    def test_offset_converted_to_utc(self):
        assert parse_timestamp("2024-03-01T12:00:00+02:00", "f") == datetime(2024, 3, 1, 10, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", 12345, "yesterday"])
    def test_invalid_values_raise(self, value):
        with pytest.raises(MappingAnomaly):
            parse_timestamp(value, "committedDate")


class TestParseBranchTarget:
    def test_commit_target_has_history(self):
        target = parse_branch_target({"name": "main", "target": {"__typename": "Commit", "oid": "abc"}})
        assert target == CommitHistoryTarget(oid="abc")

    def test_tag_target_has_no_history(self):
        target = parse_branch_target({"name": "v1", "target": {"__typename": "Tag"}})
        assert target == NoHistoryTarget(typename="Tag")

    def test_missing_default_branch(self):
        assert parse_branch_target(None) == NoHistoryTarget()

    @pytest.mark.parametrize("ref", [{"name": "main", "target": "abc"}, {"name": "main", "target": ["Commit"]}, "main"])
    def test_malformed_target_raises(self, ref):
        with pytest.raises(MappingAnomaly):
            parse_branch_target(ref)


class TestNormalizeRepository:
    def test_org_repository(self):
        repo = normalize(
            {
                "id": "R_1",
                "name": "api",
                "owner": {"login": "acme"},
                "isInOrganization": True,
                "defaultBranchRef": {"name": "main", "target": {"__typename": "Commit", "oid": "a"}},
            },
            EntityKind.REPOSITORY,
            scope=ORG,
        )

        assert isinstance(repo, RepositoryData)
        assert repo.organization == "acme"
        assert repo.is_personal is False
        assert repo.default_branch == "main"
        assert repo.has_history
        assert repo.ref.full_name == "acme/api"

    def test_personal_repository_without_branch(self):
        repo = normalize({"id": "R_2", "name": "dotfiles"}, EntityKind.REPOSITORY, scope=PERSONAL)

        assert repo.organization == "octocat"
        assert repo.owner == "octocat"
        assert repo.is_personal is True
        assert repo.default_branch is None
        assert not repo.has_history

    def test_missing_name_is_skipped(self):
        assert normalize({"id": "R_3"}, EntityKind.REPOSITORY, scope=ORG) is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"owner": "acme"},
            {"owner": {"login": 42}},
            {"defaultBranchRef": "main"},
            {"defaultBranchRef": {"name": "main", "target": "abc"}},
            {"defaultBranchRef": {"name": ["main"], "target": {"__typename": "Commit"}}},
        ],
    )
    def test_malformed_nested_fields_are_skipped(self, overrides):
        node = {"id": "R_4", "name": "web", **overrides}
        assert normalize(node, EntityKind.REPOSITORY, scope=ORG) is None


class TestNormalizeCommit:
    def test_computes_lines_modified(self):
        commit = normalize(_commit_node(), EntityKind.COMMIT, repo_id="R_1")

        assert commit == CommitData(
            id="C_1",
            repo_id="R_1",
            author="alice",
            committed_at=datetime(2024, 3, 1, 10, tzinfo=UTC),
            lines_added=10,
            lines_removed=3,
            lines_modified=7,
        )

    def test_lines_modified_can_be_negative(self):
        commit = normalize(_commit_node(additions=1, deletions=5), EntityKind.COMMIT, repo_id="R_1")
        assert commit.lines_modified == -4

    def test_missing_author_becomes_none(self):
        assert normalize(_commit_node(author=None), EntityKind.COMMIT, repo_id="R_1").author is None
        assert normalize(_commit_node(author={"name": ""}), EntityKind.COMMIT, repo_id="R_1").author is None

    def test_missing_line_counts_default_to_zero(self):
        commit = normalize(_commit_node(additions=None, deletions=None), EntityKind.COMMIT, repo_id="R_1")
        assert (commit.lines_added, commit.lines_removed, commit.lines_modified) == (0, 0, 0)

    def test_non_integer_additions_are_skipped(self):
        assert normalize(_commit_node(additions="ten"), EntityKind.COMMIT, repo_id="R_1") is None

    def test_bad_date_is_skipped(self):
        assert normalize(_commit_node(committedDate="soon"), EntityKind.COMMIT, repo_id="R_1") is None

    @pytest.mark.parametrize("author", ["octocat", ["octocat"], {"name": 7}, {"name": {"first": "Mona"}}])
    def test_malformed_author_is_skipped(self, author):
        assert normalize(_commit_node(author=author), EntityKind.COMMIT, repo_id="R_1") is None

    def test_requires_repo_id(self):
        with pytest.raises(ValueError):
            normalize(_commit_node(), EntityKind.COMMIT)


class TestNormalizeLifecycle:
    def test_open_issue_has_no_closed_at(self):
        issue = normalize(
            {"id": "I_1", "state": "OPEN", "createdAt": "2024-01-01T00:00:00Z", "closedAt": None},
            EntityKind.ISSUE,
            repo_id="R_1",
        )

        assert isinstance(issue, IssueData)
        assert issue.state == "open"
        assert issue.closed_at is None

    def test_merged_pull_request(self):
        pr = normalize(
            {
                "id": "PR_1",
                "state": "MERGED",
                "createdAt": "2024-01-01T00:00:00Z",
                "closedAt": "2024-01-02T00:00:00Z",
            },
            EntityKind.PULL_REQUEST,
            repo_id="R_1",
        )

        assert isinstance(pr, PullRequestData)
        assert pr.state == "merged"
        assert pr.closed_at == datetime(2024, 1, 2, tzinfo=UTC)


class TestNormalizeRestIssue:
    def test_maps_repository_from_url(self):
        item = normalize(
            {
                "node_id": "I_kw1",
                "repository_url": "https://api.github.com/repos/acme/api",
                "state": "closed",
                "created_at": "2024-01-01T00:00:00Z",
                "closed_at": "2024-01-03T00:00:00Z",
            },
            EntityKind.REST_ISSUE,
        )

        assert item == RestIssueData(
            id="I_kw1",
            organization="acme",
            repository_name="api",
            state="closed",
            created_at=datetime(2024, 1, 1, tzinfo=UTC),
            closed_at=datetime(2024, 1, 3, tzinfo=UTC),
        )

    def test_pull_requests_in_listing_are_skipped(self):
        item = {
            "node_id": "PR_kw1",
            "repository_url": "https://api.github.com/repos/acme/api",
            "pull_request": {"url": "https://api.github.com/repos/acme/api/pulls/1"},
            "created_at": "2024-01-01T00:00:00Z",
        }
        assert normalize(item, EntityKind.REST_ISSUE) is None

    def test_repository_from_url_rejects_short_paths(self):
        with pytest.raises(MappingAnomaly):
            repository_from_url("https://api.github.com/")


class TestNormalizeMany:
    def test_skips_anomalies_and_non_objects(self):
        nodes = [_commit_node(id="C_1"), None, "garbage", _commit_node(id="C_2", committedDate=None), _commit_node(id="C_3")]

        commits = normalize_many(nodes, EntityKind.COMMIT, repo_id="R_1")

        assert [c.id for c in commits] == ["C_1", "C_3"]

    def test_malformed_author_does_not_abort_batch(self):
        nodes = [_commit_node(id="C_1"), _commit_node(id="C_2", author="octocat"), _commit_node(id="C_3")]

        commits = normalize_many(nodes, EntityKind.COMMIT, repo_id="R_1")

        assert [c.id for c in commits] == ["C_1", "C_3"]

    def test_malformed_repository_does_not_abort_listing(self):
        nodes = [
            {"id": "R_1", "name": "api"},
            {"id": "R_2", "name": "web", "defaultBranchRef": {"name": "main", "target": "abc"}},
            {"id": "R_3", "name": "docs"},
        ]

        repos = normalize_many(nodes, EntityKind.REPOSITORY, scope=ORG)

        assert [r.id for r in repos] == ["R_1", "R_3"]
