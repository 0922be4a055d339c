"""
Error taxonomy for synchronization and the HTTP mapping used by the API.
Repository-scoped errors are collected by the orchestrator; only
AuthenticationExpired escapes a sync job.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base class for sync errors with user message and status code."""
    status_code: int = 500
    user_message: str = "Synchronization failed. Please try again."

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(detail or self.user_message)


class TransientNetworkError(SyncError):
    """Timeouts, connection failures and 5xx responses; safe to retry."""
    status_code = 502
    user_message = "GitHub is unreachable right now"


class RateLimited(SyncError):
    """Quota exhausted; retry no earlier than reset_at (unix seconds)."""
    status_code = 429
    user_message = "GitHub rate limit exceeded"

    def __init__(self, reset_at: int | None = None, detail: str | None = None):
        self.reset_at = reset_at
        super().__init__(detail)


class AuthenticationExpired(SyncError):
    status_code = 401
    user_message = "GitHub authentication failed. Please sign in again."


class UpstreamNotFound(SyncError):
    status_code = 404
    user_message = "Resource not found on GitHub"


class UpstreamQueryError(SyncError):
    status_code = 502
    user_message = "GitHub rejected the query"


class MappingAnomaly(SyncError):
    """A node shape the normalizer cannot interpret."""
    status_code = 500
    user_message = "Unexpected node shape"


class StoreWriteFailure(SyncError):
    status_code = 500
    user_message = "Could not persist synchronized data"


class SyncAlreadyRunningError(SyncError):
    status_code = 409
    user_message = "A synchronization is already running"


class SyncJobNotFoundError(SyncError):
    status_code = 404
    user_message = "Sync job not found"


async def sync_exception_handler(request: Request, exc: SyncError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc.detail}", extra={"path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.user_message},
    )
