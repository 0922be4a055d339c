from typing import List, Optional
from datetime import datetime
import sqlalchemy as sa
from sqlmodel import SQLModel, Field, Relationship


class Repository(SQLModel, table=True):
    __tablename__ = "repository"

    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    # Organization login, or the owner login for personal repositories
    organization: str = Field(index=True)
    is_personal: bool = Field(default=False)
    default_branch: Optional[str] = Field(default=None)

    # Incremental commit cursor; only advanced after a successful commit pass
    commits_synced_at: Optional[datetime] = Field(
        default=None,
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=True),
    )
    last_synced_at: Optional[datetime] = Field(
        default=None,
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=True, index=True),
    )

    commits: List["Commit"] = Relationship(back_populates="repository")
    issues: List["Issue"] = Relationship(back_populates="repository")
    pull_requests: List["PullRequest"] = Relationship(back_populates="repository")


class Commit(SQLModel, table=True):
    __tablename__ = "commit"
    __table_args__ = (
        sa.Index("ix_commit_repo_committed_at", "repo_id", "committed_at"),
    )

    id: str = Field(primary_key=True)
    repo_id: str = Field(foreign_key="repository.id", index=True)

    # History nodes may omit author identity
    author: Optional[str] = Field(default=None, index=True)
    committed_at: datetime = Field(
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=False)
    )

    lines_added: int = Field(default=0)
    lines_removed: int = Field(default=0)
    lines_modified: int = Field(default=0)

    repository: Repository = Relationship(back_populates="commits")


class Issue(SQLModel, table=True):
    __tablename__ = "issue"

    id: str = Field(primary_key=True)
    repo_id: str = Field(foreign_key="repository.id", index=True)

    state: str = Field(default="open", index=True)
    created_at: datetime = Field(
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=False)
    )
    closed_at: Optional[datetime] = Field(
        default=None,
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=True),
    )

    repository: Repository = Relationship(back_populates="issues")


class PullRequest(SQLModel, table=True):
    __tablename__ = "pull_request"

    id: str = Field(primary_key=True)
    repo_id: str = Field(foreign_key="repository.id", index=True)

    state: str = Field(default="open", index=True)
    created_at: datetime = Field(
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=False)
    )
    closed_at: Optional[datetime] = Field(
        default=None,
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=True),
    )

    repository: Repository = Relationship(back_populates="pull_requests")
