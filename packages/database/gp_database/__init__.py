"""gp_database - Database models and session management for gitpulse."""

from gp_database.session import async_session_factory, create_tables, engine, get_async_session

__all__ = [
    "async_session_factory",
    "create_tables",
    "engine",
    "get_async_session",
]
