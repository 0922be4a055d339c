from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException
from sqlmodel.ext.asyncio.session import AsyncSession

from gp_backend.core.config import get_settings
from gp_backend.ingestion.persistence import SyncStore
from gp_database import async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session


def get_store() -> SyncStore:
    """Store opens its own sessions per write; safe to share across tasks"""
    return SyncStore(async_session_factory, batch_size=get_settings().store_batch_size)


def get_github_token(authorization: str | None = Header(default=None)) -> str:
    """GitHub credential from `Authorization: Bearer <token>`; issued elsewhere"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token.strip()
