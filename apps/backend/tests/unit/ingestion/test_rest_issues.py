"""Unit tests for the REST issues listing client"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from gp_backend.core.errors import (
    AuthenticationExpired,
    RateLimited,
    TransientNetworkError,
    UpstreamNotFound,
)
from gp_backend.ingestion.rest_issues import GITHUB_API_URL, RestIssuesClient


def _client_with(handler) -> RestIssuesClient:
    rest = RestIssuesClient(token="test_token")
    rest._client = httpx.AsyncClient(base_url=GITHUB_API_URL, transport=httpx.MockTransport(handler))
    return rest


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("gp_backend.ingestion.rest_issues.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


class TestFirstPageRequest:
    def test_org_listing(self):
        path, params = RestIssuesClient(token="t").first_page_request("acme")
        assert path == "/orgs/acme/issues"
        assert params == {"filter": "all", "state": "all", "per_page": 100}

    def test_personal_listing_with_since(self):
        since = datetime(2024, 1, 1, tzinfo=UTC)
        path, params = RestIssuesClient(token="t").first_page_request(None, since)
        assert path == "/user/issues"
        assert params["since"] == since.isoformat()


class TestFetchPage:
    async def test_follows_link_header(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[{"node_id": "I_2"}])
            return httpx.Response(
                200,
                json=[{"node_id": "I_1"}],
                headers={"link": '<https://api.github.com/orgs/acme/issues?page=2>; rel="next"'},
            )

        rest = _client_with(handler)
        items, next_link = await rest.fetch_page("acme")
        assert items == [{"node_id": "I_1"}]
        assert next_link == "https://api.github.com/orgs/acme/issues?page=2"

        items, next_link = await rest.fetch_page("acme", cursor=next_link)
        assert items == [{"node_id": "I_2"}]
        assert next_link is None
        assert requests[0].url.path == "/orgs/acme/issues"

    async def test_401_raises_authentication_expired(self):
        rest = _client_with(lambda request: httpx.Response(401))
        with pytest.raises(AuthenticationExpired):
            await rest.fetch_page("acme")

    async def test_exhausted_quota_is_rate_limited(self):
        rest = _client_with(
            lambda request: httpx.Response(
                403, headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1704067200"}
            )
        )
        with pytest.raises(RateLimited) as exc_info:
            await rest.fetch_page("acme")
        assert exc_info.value.reset_at == 1704067200

    async def test_404_is_not_found(self):
        rest = _client_with(lambda request: httpx.Response(404))
        with pytest.raises(UpstreamNotFound):
            await rest.fetch_page("missing-org")

    async def test_server_errors_retry_then_raise(self, no_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        rest = _client_with(handler)
        with pytest.raises(TransientNetworkError):
            await rest.fetch_page("acme")
        assert len(calls) == RestIssuesClient.MAX_RETRIES

    async def test_requires_context_manager(self):
        with pytest.raises(RuntimeError):
            await RestIssuesClient(token="t").fetch_page("acme")
