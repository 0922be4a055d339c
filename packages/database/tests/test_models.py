"""Tests for table models on SQLite."""

from datetime import UTC, datetime

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from gp_database.models import Commit, Repository, SyncJob
from gp_database.session import create_tables


@pytest.fixture
async def session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'models.db'}")
    await create_tables(engine)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


async def test_create_tables_builds_every_table(session):
    session.add(Repository(id="R_1", name="api", organization="acme"))
    session.add(
        Commit(
            id="C_1",
            repo_id="R_1",
            author=None,
            committed_at=datetime(2024, 1, 1, tzinfo=UTC),
            lines_added=3,
            lines_removed=1,
            lines_modified=2,
        )
    )
    session.add(SyncJob())
    await session.commit()

    repo = await session.get(Repository, "R_1")
    commits = (await session.exec(select(Commit).where(Commit.repo_id == "R_1"))).all()
    jobs = (await session.exec(select(SyncJob))).all()

    assert repo.commits_synced_at is None
    assert repo.is_personal is False
    assert [c.author for c in commits] == [None]
    assert jobs[0].status == "running"
    assert jobs[0].progress == 0.0


async def test_only_one_running_sync_job(session):
    session.add(SyncJob(status="completed"))
    session.add(SyncJob(status="completed"))
    session.add(SyncJob(status="running"))
    await session.commit()

    session.add(SyncJob(status="running"))
    with pytest.raises(IntegrityError):
        await session.commit()
