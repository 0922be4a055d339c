"""GitHub REST issues listing, the alternate source for issue state"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

import httpx

from gp_backend.core.errors import (
    AuthenticationExpired,
    RateLimited,
    TransientNetworkError,
    UpstreamNotFound,
    UpstreamQueryError,
)

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


class RestIssuesClient:
    """
    Paginates /orgs/{org}/issues and /user/issues with the Link header.
    Items carry repository_url only, so the owning repository is derived
    by the normalizer.
    """

    MAX_RETRIES: int = 3
    RETRY_DELAY_SECONDS: float = 1.0
    TIMEOUT_SECONDS: float = 30.0
    PER_PAGE: int = 100

    def __init__(self, token: str):
        if not token:
            raise ValueError("GitHub token is required")

        self._token = token
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> RestIssuesClient:
        self._client = httpx.AsyncClient(
            base_url=GITHUB_API_URL,
            timeout=httpx.Timeout(self.TIMEOUT_SECONDS),
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def first_page_request(
        self,
        organization: str | None,
        since: datetime | None = None,
    ) -> tuple[str, dict[str, Any]]:
        """organization=None lists issues across the viewer's own repositories"""
        path = f"/orgs/{organization}/issues" if organization else "/user/issues"
        params: dict[str, Any] = {
            "filter": "all",
            "state": "all",
            "per_page": self.PER_PAGE,
        }
        if since is not None:
            params["since"] = since.isoformat()
        return path, params

    async def fetch_page(
        self,
        organization: str | None,
        cursor: str | None = None,
        since: datetime | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """cursor is the absolute `next` URL from the previous page's Link header"""
        if not self._client:
            raise RuntimeError("Client not initialized; use async context manager")

        if cursor:
            url, params = cursor, None
        else:
            url, params = self.first_page_request(organization, since)

        response = await self._get_with_retry(url, params)
        items = response.json()
        if not isinstance(items, list):
            raise UpstreamQueryError(f"Expected a list of issues from {url}")

        next_link = response.links.get("next", {}).get("url")
        return items, next_link

    async def _get_with_retry(self, url: str, params: dict[str, Any] | None) -> httpx.Response:
        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await self._client.get(url, params=params)
            except httpx.TimeoutException as e:
                last_error = TransientNetworkError(f"Request timeout: {e}")
                await asyncio.sleep(self.RETRY_DELAY_SECONDS * (attempt + 1))
                continue
            except httpx.RequestError as e:
                last_error = TransientNetworkError(f"Request failed: {e}")
                await asyncio.sleep(self.RETRY_DELAY_SECONDS * (attempt + 1))
                continue

            if response.status_code == 401:
                raise AuthenticationExpired("GitHub rejected the credential")

            if response.status_code in (403, 429):
                remaining = response.headers.get("x-ratelimit-remaining")
                if response.status_code == 429 or remaining == "0":
                    reset_raw = response.headers.get("x-ratelimit-reset")
                    raise RateLimited(reset_at=int(reset_raw) if reset_raw and reset_raw.isdigit() else None)
                raise UpstreamQueryError(f"Forbidden: {url}")

            if response.status_code == 404:
                raise UpstreamNotFound(f"Not found: {url}")

            if response.status_code >= 500:
                last_error = TransientNetworkError(f"Server error: {response.status_code}")
                await asyncio.sleep(self.RETRY_DELAY_SECONDS * (attempt + 1))
                continue

            if response.status_code >= 400:
                raise UpstreamQueryError(f"Unexpected status {response.status_code}: {url}")

            return response

        raise last_error or TransientNetworkError("Max retries exceeded")
