"""Per-credential GraphQL quota gate shared by the repository tasks of one sync job"""

from __future__ import annotations

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class CostAwareLimiter:
    """
    Tracks the GraphQL point budget reported by GitHub and parks callers once
    the budget drops under a reserve. Resets lazily when reset_at passes,
    so no background timer is needed.
    """

    HOURLY_QUOTA: int = 5000
    MAX_SLEEP_SECONDS: float = 60.0

    def __init__(self, reserve: int = 50, initial_remaining: int | None = None):
        self._reserve = reserve
        self._remaining = initial_remaining if initial_remaining is not None else self.HOURLY_QUOTA
        self._reset_at: float = 0.0
        self._lock = asyncio.Lock()
        self._waits: int = 0

    def _maybe_reset_quota(self) -> None:
        """Must be called while holding _lock"""
        if self._reset_at > 0 and time.time() >= self._reset_at:
            self._remaining = self.HOURLY_QUOTA
            self._reset_at = 0.0

    async def _seconds_until_affordable(self, estimated_cost: int) -> float:
        async with self._lock:
            self._maybe_reset_quota()
            if self._remaining - estimated_cost >= self._reserve:
                return 0.0
            if self._reset_at <= 0:
                # Budget unknown to be refilled; poll until a response updates it
                return 1.0
            return max(1.0, self._reset_at - time.time() + 1)

    async def wait_until_affordable(self, estimated_cost: int) -> None:
        while True:
            delay = await self._seconds_until_affordable(estimated_cost)
            if delay == 0.0:
                return
            self._waits += 1
            logger.info(
                f"GraphQL budget below reserve ({self._remaining} left), sleeping {delay:.0f}s",
                extra={"remaining": self._remaining, "reserve": self._reserve},
            )
            await asyncio.sleep(min(delay, self.MAX_SLEEP_SECONDS))

    async def set_remaining_from_response(self, remaining: int, reset_at: int) -> None:
        async with self._lock:
            self._remaining = remaining
            self._reset_at = float(reset_at)

    async def get_remaining_points(self) -> int:
        async with self._lock:
            self._maybe_reset_quota()
            return self._remaining

    @property
    def wait_count(self) -> int:
        return self._waits
