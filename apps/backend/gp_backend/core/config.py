from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = ""

    environment: str = "development"
    cors_origins: str = "http://localhost:3000"

    # Worker credential; API-triggered syncs use the caller's bearer token
    git_token: str = ""

    # Sync fan-out
    sync_concurrency: int = 10  # Max concurrent repository tasks per scope
    page_size: int = 100  # GraphQL page size (GitHub caps at 100)

    # Incremental commit fetch
    initial_history_window: str = "last 6 months"  # Unknown name means full history
    sync_overlap_minutes: int = 10  # Re-read this much history behind the cursor

    # Retry policy at the repository boundary
    rate_limit_max_wait_seconds: float = 900.0
    rate_limit_max_retries: int = 3
    repo_max_retries: int = 2
    repo_retry_delay_seconds: float = 2.0

    # Persistence
    store_batch_size: int = 200

    # Issues via the REST listing instead of GraphQL
    use_rest_issues: bool = False

    # A running job older than this is treated as orphaned by a crashed process
    sync_job_stale_minutes: int = 120

    create_tables_on_start: bool = False

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
