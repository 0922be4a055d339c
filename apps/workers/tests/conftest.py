"""Shared fixtures for worker tests"""

import os

import pytest

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest.fixture(autouse=True)
def reset_settings_cache():
    from gp_backend.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
