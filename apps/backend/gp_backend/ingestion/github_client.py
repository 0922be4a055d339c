"""GitHub GraphQL API client with cost aware rate limiting"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from gp_backend.core.errors import (
    AuthenticationExpired,
    RateLimited,
    TransientNetworkError,
    UpstreamNotFound,
    UpstreamQueryError,
)

if TYPE_CHECKING:
    from .rate_limiter import CostAwareLimiter

logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"


@dataclass
class RateLimitInfo:
    remaining: int
    limit: int
    reset_at: int
    used: int


@dataclass
class QueryCostInfo:
    cost: int
    remaining: int
    limit: int
    reset_at: int
    node_count: int


class GitHubGraphQLClient:
    """One instance per credential; accepts optional CostAwareLimiter to coordinate quota"""

    MAX_RETRIES: int = 3
    RETRY_DELAY_SECONDS: float = 1.0
    TIMEOUT_SECONDS: float = 30.0

    RATE_LIMIT_FRAGMENT: str = """
        rateLimit {
            cost
            remaining
            limit
            resetAt
            nodeCount
        }
    """

    def __init__(self, token: str, limiter: CostAwareLimiter | None = None):
        if not token:
            raise ValueError("GitHub token is required")

        self._token = token
        self._limiter = limiter
        self._header_rate_limit: RateLimitInfo | None = None
        self._query_cost: QueryCostInfo | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubGraphQLClient:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.TIMEOUT_SECONDS),
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_rate_limit_fragment(self, query: str) -> str:
        """Auto injects rateLimit fragment for cost tracking if caller omits it"""
        if "rateLimit" in query:
            return query

        last_brace = query.rfind("}")
        if last_brace == -1:
            return query  # Malformed query, let GitHub return the error

        return query[:last_brace] + self.RATE_LIMIT_FRAGMENT + query[last_brace:]

    async def execute_query(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        estimated_cost: int = 1,
    ) -> dict[str, Any]:
        """Retries transient failures; auth, rate limit and query errors surface immediately"""
        if not self._client:
            raise RuntimeError("Client not initialized; use async context manager")

        query = self._ensure_rate_limit_fragment(query)

        if self._limiter:
            await self._limiter.wait_until_affordable(estimated_cost)

        payload = {"query": query}
        if variables:
            payload["variables"] = variables

        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await self._client.post(GITHUB_GRAPHQL_URL, json=payload)
                self._update_header_rate_limit(response)

                if response.status_code == 401:
                    raise AuthenticationExpired("GitHub rejected the credential")

                if response.status_code in (403, 429):
                    if self._query_cost and self._query_cost.remaining == 0:
                        raise RateLimited(reset_at=self._query_cost.reset_at)
                    if self._header_rate_limit and self._header_rate_limit.remaining == 0:
                        raise RateLimited(reset_at=self._header_rate_limit.reset_at)
                    if response.status_code == 429 or "retry-after" in response.headers:
                        raise RateLimited(reset_at=self._retry_after_reset(response))
                    raise UpstreamQueryError(f"Forbidden: {response.status_code}")

                if response.status_code >= 500:
                    last_error = TransientNetworkError(f"Server error: {response.status_code}")
                    await asyncio.sleep(self.RETRY_DELAY_SECONDS * (attempt + 1))
                    continue

                response.raise_for_status()
                full_response = response.json()

                self._update_query_cost(full_response)

                if self._limiter and self._query_cost:
                    await self._limiter.set_remaining_from_response(
                        self._query_cost.remaining,
                        self._query_cost.reset_at,
                    )

                if "errors" in full_response:
                    self._raise_for_graphql_errors(full_response["errors"])

                return full_response.get("data") or {}

            except httpx.TimeoutException as e:
                last_error = TransientNetworkError(f"Request timeout: {e}")
                await asyncio.sleep(self.RETRY_DELAY_SECONDS * (attempt + 1))
            except httpx.HTTPStatusError as e:
                raise UpstreamQueryError(f"Unexpected status: {e.response.status_code}") from e
            except httpx.RequestError as e:
                last_error = TransientNetworkError(f"Request failed: {e}")
                await asyncio.sleep(self.RETRY_DELAY_SECONDS * (attempt + 1))

        raise last_error or TransientNetworkError("Max retries exceeded")

    def _raise_for_graphql_errors(self, errors: list[dict[str, Any]]) -> None:
        """GraphQL reports NOT_FOUND and RATE_LIMITED in the body with a 200 status"""
        error_types = {e.get("type") for e in errors}
        error_messages = [e.get("message", "Unknown") for e in errors]
        joined = "; ".join(error_messages)

        if "RATE_LIMITED" in error_types:
            reset_at = self._query_cost.reset_at if self._query_cost else None
            raise RateLimited(reset_at=reset_at, detail=f"GraphQL rate limited: {joined}")
        if "NOT_FOUND" in error_types:
            raise UpstreamNotFound(f"GraphQL not found: {joined}")
        raise UpstreamQueryError(f"GraphQL errors: {joined}")

    def _retry_after_reset(self, response: httpx.Response) -> int | None:
        try:
            retry_after = int(response.headers.get("retry-after", ""))
        except (ValueError, TypeError):
            return None
        return int(time.time()) + retry_after

    def _update_header_rate_limit(self, response: httpx.Response) -> None:
        try:
            remaining = response.headers.get("x-ratelimit-remaining")
            limit = response.headers.get("x-ratelimit-limit")
            reset_at = response.headers.get("x-ratelimit-reset")
            used = response.headers.get("x-ratelimit-used")

            if all([remaining, limit, reset_at, used]):
                self._header_rate_limit = RateLimitInfo(
                    remaining=int(remaining),
                    limit=int(limit),
                    reset_at=int(reset_at),
                    used=int(used),
                )
        except (ValueError, TypeError):
            pass

    def _update_query_cost(self, response: dict[str, Any]) -> None:
        """Checks data,rateLimit then falls back to extensions,rateLimit"""
        try:
            data = response.get("data") or {}
            rate_limit = data.get("rateLimit") or response.get("extensions", {}).get("rateLimit")

            if not rate_limit:
                return

            reset_at = self._parse_reset_at(rate_limit.get("resetAt", ""))

            self._query_cost = QueryCostInfo(
                cost=int(rate_limit.get("cost", 0)),
                remaining=int(rate_limit.get("remaining", 5000)),
                limit=int(rate_limit.get("limit", 5000)),
                reset_at=reset_at,
                node_count=int(rate_limit.get("nodeCount", 0)),
            )

            logger.debug(
                f"Query cost: {self._query_cost.cost} points, "
                f"{self._query_cost.remaining}/{self._query_cost.limit} remaining"
            )

            if self._query_cost.remaining < 200:
                logger.warning(
                    f"GitHub rate limit critically low: {self._query_cost.remaining}/{self._query_cost.limit} remaining",
                    extra={
                        "remaining": self._query_cost.remaining,
                        "limit": self._query_cost.limit,
                        "reset_at": self._query_cost.reset_at,
                    },
                )
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Failed to parse query cost: {e}")

    def _parse_reset_at(self, reset_at_str: str) -> int:
        if not reset_at_str:
            return 0
        try:
            dt = datetime.fromisoformat(reset_at_str.replace("Z", "+00:00"))
            return int(dt.timestamp())
        except (ValueError, AttributeError, TypeError):
            logger.warning(f"Unexpected resetAt format: {reset_at_str!r}")
            return 0

    def get_rate_limit_remaining(self) -> int | None:
        """Prefers query cost over header based remaining"""
        if self._query_cost:
            return self._query_cost.remaining
        if self._header_rate_limit:
            return self._header_rate_limit.remaining
        return None

    def get_query_cost_info(self) -> QueryCostInfo | None:
        return self._query_cost
