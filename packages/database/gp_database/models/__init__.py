"""Database models for gitpulse."""

from gp_database.models.jobs import SyncJob
from gp_database.models.sync import Commit, Issue, PullRequest, Repository

__all__ = [
    # Synchronized entities
    "Repository",
    "Commit",
    "Issue",
    "PullRequest",
    # Jobs
    "SyncJob",
]
