import uuid
from uuid import UUID
from datetime import UTC, datetime
from typing import Optional, Dict, Any
import sqlalchemy as sa
from sqlmodel import SQLModel, Field, Column


class SyncJob(SQLModel, table=True):
    __tablename__ = "sync_job"
    # At most one running job at a time
    __table_args__ = (
        sa.Index(
            "uq_sync_job_single_running",
            "status",
            unique=True,
            postgresql_where=sa.text("status = 'running'"),
            sqlite_where=sa.text("status = 'running'"),
        ),
    )

    id: UUID = Field(primary_key=True, default_factory=uuid.uuid4)

    status: str = Field(default="running", index=True)  # running, completed, failed, cancelled
    progress: float = Field(default=0.0)

    started_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=False, index=True),
    )
    finished_at: Optional[datetime] = Field(
        default=None,
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=True),
    )

    summary: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(sa.JSON))
    error: Optional[str] = Field(default=None)
