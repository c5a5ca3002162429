"""
Unit Tests for CachedApiClient

Tests REST and GraphQL calls through the cache engine against an
httpx.MockTransport upstream.
"""

import asyncio

import httpx
import orjson
import pytest

from layered_cache.client.api_client import CacheOptions, CachedApiClient
from layered_cache.client.pipeline import Pipeline
from layered_cache.client.retry import RetryPolicy
from layered_cache.core.exceptions import ClientError, LoadError
from layered_cache.core.logging.logger import clear_request_id, set_request_id
from tests.test_fixtures import CacheTestFactory, RequestFactory


class Upstream:
    """
    MockTransport handler that records requests.

    Responses are served in order; the last one repeats. Each response is a
    (status, json body) tuple.
    """

    def __init__(self, *responses):
        self.responses = list(responses) or [(200, {"ok": True})]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses[min(len(self.requests), len(self.responses)) - 1]
        return httpx.Response(status, json=body)

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def upstream():
    return Upstream((200, {"id": 42, "name": "Ada"}))


@pytest.fixture
def make_client(engine, recording_sleep):
    def factory(upstream: Upstream, **kwargs) -> CachedApiClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream), base_url="https://api.test")
        kwargs.setdefault("retry_policy", RetryPolicy(base_delay=0.1, sleep=recording_sleep))
        return CachedApiClient(engine, http, **kwargs)

    return factory


@pytest.mark.unit
class TestRestRequests:
    """Test cached and uncached REST calls."""

    @pytest.mark.asyncio
    async def test_uncached_request_always_hits_network(self, make_client, upstream):
        client = make_client(upstream)

        assert await client.request("GET", "/users/42") == {"id": 42, "name": "Ada"}
        await client.request("GET", "/users/42")

        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_cached_request_hits_network_once(self, make_client, upstream, engine):
        client = make_client(upstream)

        first = await client.request("GET", "/users/42", cache=CacheOptions(ttl_seconds=60))
        second = await client.request("GET", "/users/42", cache=CacheOptions(ttl_seconds=60))

        assert first == second == {"id": 42, "name": "Ada"}
        assert upstream.calls == 1
        assert engine.get_metrics().l1_hits == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_collapsed(self, make_client, upstream, engine):
        """Test that identical concurrent requests share one upstream call."""
        client = make_client(upstream)

        results = await asyncio.gather(
            *(client.request("GET", "/users/42", cache=CacheOptions()) for _ in range(5))
        )

        assert all(result == {"id": 42, "name": "Ada"} for result in results)
        assert upstream.calls == 1
        assert engine.get_metrics().deduped_calls == 4

    @pytest.mark.asyncio
    async def test_param_order_does_not_change_key(self, make_client, upstream):
        client = make_client(upstream)

        await client.request("GET", "/users", {"page": 1, "size": 10}, cache=CacheOptions())
        await client.request("GET", "/users", {"size": 10, "page": 1}, cache=CacheOptions())

        assert upstream.calls == 1
        assert upstream.requests[0].url.params["page"] == "1"

    @pytest.mark.asyncio
    async def test_namespaces_are_separate(self, make_client, upstream):
        client = make_client(upstream)

        await client.request("GET", "/me", namespace="user:1", cache=CacheOptions())
        await client.request("GET", "/me", namespace="user:2", cache=CacheOptions())
        await client.request("GET", "/me", namespace="user:1", cache=CacheOptions())

        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_post_body_is_part_of_key(self, make_client, upstream):
        """Test that any method can be cached and the JSON body varies the key."""
        client = make_client(upstream)

        await client.request("POST", "/search", json={"q": "ada"}, cache=CacheOptions())
        await client.request("POST", "/search", json={"q": "ada"}, cache=CacheOptions())
        await client.request("POST", "/search", json={"q": "bob"}, cache=CacheOptions())

        assert upstream.calls == 2
        assert orjson.loads(upstream.requests[1].content) == {"q": "bob"}

    @pytest.mark.asyncio
    async def test_key_matches_request_factory(self, make_client, upstream, engine):
        client = make_client(upstream)

        await client.request("GET", "/users", {"page": 1}, cache=CacheOptions())

        assert engine.key_for(RequestFactory.rest("/users", {"page": 1})) in engine.local_store

    @pytest.mark.asyncio
    async def test_invalidate_tags_after_mutation(self, make_client, upstream):
        client = make_client(upstream)
        options = CacheOptions(tags=["user:42"])

        await client.request("GET", "/users/42", cache=options)
        await client.request("PATCH", "/users/42", json={"name": "Grace"}, invalidate_tags=["user:42"])
        await client.request("GET", "/users/42", cache=options)

        assert [request.method for request in upstream.requests] == ["GET", "PATCH", "GET"]

    @pytest.mark.asyncio
    async def test_stale_while_revalidate_option(self, fake_clock, recording_sleep):
        engine = CacheTestFactory.engine(fake_clock, stale_grace_multiplier=1.0)
        upstream = Upstream((200, {"v": 1}), (200, {"v": 2}))
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream), base_url="https://api.test")
        client = CachedApiClient(engine, http, retry_policy=RetryPolicy(sleep=recording_sleep))
        options = CacheOptions(ttl_seconds=10, stale_while_revalidate=True)

        await client.request("GET", "/config", cache=options)
        fake_clock.advance(15)

        assert await client.request("GET", "/config", cache=options) == {"v": 1}
        await engine.drain_background()
        assert await client.request("GET", "/config", cache=options) == {"v": 2}


@pytest.mark.unit
class TestUpstreamFailures:
    """Test retry and error surfacing."""

    @pytest.mark.asyncio
    async def test_retryable_status_retried(self, make_client, recording_sleep):
        upstream = Upstream((503, {"error": "busy"}), (200, {"id": 1}))
        client = make_client(upstream)

        assert await client.request("GET", "/users/1", cache=CacheOptions()) == {"id": 1}

        assert upstream.calls == 2
        assert recording_sleep.delays == pytest.approx([0.1])

    @pytest.mark.asyncio
    async def test_client_error_not_retried_uncached(self, make_client):
        upstream = Upstream((404, {"error": "not found"}))
        client = make_client(upstream)

        with pytest.raises(httpx.HTTPStatusError):
            await client.request("GET", "/users/404")

        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_cached_failure_raises_load_error(self, make_client, engine):
        upstream = Upstream((404, {"error": "not found"}))
        client = make_client(upstream)

        with pytest.raises(LoadError) as exc_info:
            await client.request("GET", "/users/404", cache=CacheOptions())

        assert isinstance(exc_info.value.original, httpx.HTTPStatusError)
        assert len(engine.local_store) == 0

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, make_client):
        upstream = Upstream((404, {"error": "not found"}), (200, {"id": 7}))
        client = make_client(upstream)

        with pytest.raises(LoadError):
            await client.request("GET", "/users/7", cache=CacheOptions())

        assert await client.request("GET", "/users/7", cache=CacheOptions()) == {"id": 7}


@pytest.mark.unit
class TestGraphQL:
    """Test GraphQL operations."""

    QUERY = "query GetUser($id: ID!) { user(id: $id) { id name } }"

    @pytest.mark.asyncio
    async def test_returns_data(self, make_client):
        upstream = Upstream((200, {"data": {"user": {"id": "42"}}}))
        client = make_client(upstream)

        result = await client.graphql(self.QUERY, {"id": "42"}, operation_name="GetUser")

        assert result == {"user": {"id": "42"}}
        request = upstream.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/graphql"
        assert orjson.loads(request.content)["operationName"] == "GetUser"

    @pytest.mark.asyncio
    async def test_whitespace_equivalent_queries_share_entry(self, make_client):
        upstream = Upstream((200, {"data": {"user": {"id": "42"}}}))
        client = make_client(upstream)
        pretty = """
            query GetUser($id: ID!) {
                user(id: $id) { id name }
            }
        """

        await client.graphql(self.QUERY, {"id": "42"}, operation_name="GetUser", cache=CacheOptions())
        await client.graphql(pretty, {"id": "42"}, operation_name="GetUser", cache=CacheOptions())

        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_variables_vary_key(self, make_client):
        upstream = Upstream((200, {"data": {"user": None}}))
        client = make_client(upstream)

        await client.graphql(self.QUERY, {"id": "1"}, operation_name="GetUser", cache=CacheOptions())
        await client.graphql(self.QUERY, {"id": "2"}, operation_name="GetUser", cache=CacheOptions())

        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_errors_raise_client_error(self, make_client):
        upstream = Upstream((200, {"data": None, "errors": [{"message": "forbidden"}]}))
        client = make_client(upstream)

        with pytest.raises(ClientError) as exc_info:
            await client.graphql(self.QUERY, {"id": "42"}, operation_name="GetUser")

        assert exc_info.value.details["errors"] == [{"message": "forbidden"}]

    @pytest.mark.asyncio
    async def test_errors_never_cached(self, make_client, engine):
        upstream = Upstream((200, {"errors": [{"message": "boom"}]}), (200, {"data": {"ok": True}}))
        client = make_client(upstream)

        with pytest.raises(LoadError) as exc_info:
            await client.graphql(self.QUERY, cache=CacheOptions())
        assert isinstance(exc_info.value.original, ClientError)

        assert await client.graphql(self.QUERY, cache=CacheOptions()) == {"ok": True}
        assert upstream.calls == 2


@pytest.mark.unit
class TestPipelinesAndHeaders:
    """Test middleware hooks and request metadata."""

    @pytest.mark.asyncio
    async def test_request_pipeline_modifies_request(self, make_client, upstream):
        def add_auth(request: httpx.Request) -> httpx.Request:
            request.headers["Authorization"] = "Bearer token"
            return request

        client = make_client(upstream, request_pipeline=Pipeline([add_auth]))

        await client.request("GET", "/users/42")

        assert upstream.requests[0].headers["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_response_pipeline_result_is_cached(self, make_client, upstream):
        client = make_client(upstream, response_pipeline=Pipeline([lambda payload: payload["name"]]))

        assert await client.request("GET", "/users/42", cache=CacheOptions()) == "Ada"
        assert await client.request("GET", "/users/42", cache=CacheOptions()) == "Ada"
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_request_id_header(self, make_client, upstream):
        set_request_id("req-123")
        try:
            client = make_client(upstream)
            await client.request("GET", "/users/42")
        finally:
            clear_request_id()

        assert upstream.requests[0].headers["X-Request-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_no_request_id_header_without_context(self, make_client, upstream):
        client = make_client(upstream)

        await client.request("GET", "/users/42")

        assert "X-Request-ID" not in upstream.requests[0].headers

    @pytest.mark.asyncio
    async def test_owned_http_client_closed(self, engine):
        async with CachedApiClient(engine, base_url="https://api.test") as client:
            http = client._http

        assert http.is_closed

    @pytest.mark.asyncio
    async def test_injected_http_client_left_open(self, make_client, upstream):
        client = make_client(upstream)

        await client.aclose()

        assert not client._http.is_closed
