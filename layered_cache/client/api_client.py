"""
Cached API Client

Thin caller-side integration of the cache engine with an httpx transport:

    request(...)
        ├── cache options given?  → engine.get(key, loader)   (deduplicated)
        │                            loader = _execute(...)
        └── otherwise             → _execute(...)

    _execute(...)
        build httpx.Request → request pipeline → send (bounded retry)
        → status check → JSON body → response pipeline

Callers decide what is cacheable, for any HTTP method. Mutations can name
tags to invalidate once they succeed.
"""

from collections.abc import Iterable
from typing import Any

import httpx
from pydantic import BaseModel, Field

from layered_cache.client.pipeline import Pipeline
from layered_cache.client.retry import RetryPolicy
from layered_cache.core.config.constants import HEADER_REQUEST_ID, RETRYABLE_STATUS_CODES, Stage
from layered_cache.core.exceptions import ClientError, UpstreamError
from layered_cache.core.logging.logger import get_logger, get_request_id, log_stage
from layered_cache.infrastructure.cache.cache_engine import CacheEngine
from layered_cache.infrastructure.cache.models import RequestDescriptor

logger = get_logger(__name__)


class CacheOptions(BaseModel):
    """Per-call caching instructions."""

    ttl_seconds: int | None = Field(default=None, ge=0, description="None = engine default")
    tags: list[str] = Field(default_factory=list)
    stale_while_revalidate: bool = False


class CachedApiClient:
    """
    HTTP/GraphQL client whose reads go through a CacheEngine.

    Usage:
        async with httpx.AsyncClient(base_url="https://api.example.com") as http:
            client = CachedApiClient(engine, http)

            user = await client.request(
                "GET", "/users/42",
                cache=CacheOptions(ttl_seconds=60, tags=["user:42"]),
            )
            await client.request(
                "PATCH", "/users/42", json={"name": "Ada"}, invalidate_tags=["user:42"]
            )
    """

    def __init__(
        self,
        engine: CacheEngine,
        http_client: httpx.AsyncClient | None = None,
        *,
        base_url: str = "",
        retry_policy: RetryPolicy | None = None,
        request_pipeline: Pipeline | None = None,
        response_pipeline: Pipeline | None = None,
        graphql_endpoint: str = "/graphql",
    ):
        self._engine = engine
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url)
        self._retry = retry_policy or RetryPolicy()
        self._request_pipeline = request_pipeline or Pipeline(name="request")
        self._response_pipeline = response_pipeline or Pipeline(name="response")
        self._graphql_endpoint = graphql_endpoint

    # -------------------------------------------------------------------------
    # REST
    # -------------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        params: Any = None,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        namespace: str | None = None,
        cache: CacheOptions | None = None,
        invalidate_tags: Iterable[str] = (),
    ) -> Any:
        """
        Perform a request, through the cache when ``cache`` is given.

        Args:
            method: HTTP method (any method may be cached)
            url: Path relative to the client's base URL, or absolute URL
            params: Query parameters
            json: JSON body (part of the cache key when present)
            headers: Extra headers (not part of the cache key; vary by
                ``namespace`` instead)
            namespace: Opaque cache partition (user, tenant, platform)
            cache: Caching instructions; None = always hit the network
            invalidate_tags: Tags to invalidate after a successful call

        Returns:
            The decoded JSON payload after the response pipeline

        Raises:
            LoadError: Cached call failed (original error chained)
            UpstreamError / httpx.HTTPError: Uncached call failed
        """
        async def load() -> Any:
            return await self._execute(method, url, params=params, json=json, headers=headers)

        if cache is None:
            result = await load()
        else:
            key_params = params if json is None else {"params": params, "json": json}
            key = self._engine.key_for(
                RequestDescriptor(method=method, path=url, params=key_params, namespace=namespace)
            )
            result = await self._engine.get(
                key,
                load,
                ttl_seconds=cache.ttl_seconds,
                tags=cache.tags,
                stale_while_revalidate=cache.stale_while_revalidate,
            )

        for tag in invalidate_tags:
            await self._engine.invalidate_by_tag(tag)
        return result

    # -------------------------------------------------------------------------
    # GraphQL
    # -------------------------------------------------------------------------

    async def graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        operation_name: str | None = None,
        namespace: str | None = None,
        cache: CacheOptions | None = None,
        invalidate_tags: Iterable[str] = (),
    ) -> Any:
        """
        Execute a GraphQL operation and return its ``data``.

        Responses carrying ``errors`` raise ClientError and are never cached.
        """
        body: dict[str, Any] = {"query": query, "variables": variables or {}}
        if operation_name:
            body["operationName"] = operation_name

        async def load() -> Any:
            payload = await self._execute("POST", self._graphql_endpoint, json=body)
            if isinstance(payload, dict) and payload.get("errors"):
                raise ClientError(
                    "GraphQL operation returned errors",
                    request_id=get_request_id(),
                    details={"operation": operation_name, "errors": payload["errors"]},
                )
            return payload.get("data") if isinstance(payload, dict) else payload

        if cache is None:
            result = await load()
        else:
            descriptor = RequestDescriptor.for_graphql(
                operation_name or "anonymous", query, variables, namespace=namespace
            )
            result = await self._engine.get(
                self._engine.key_for(descriptor),
                load,
                ttl_seconds=cache.ttl_seconds,
                tags=cache.tags,
                stale_while_revalidate=cache.stale_while_revalidate,
            )

        for tag in invalidate_tags:
            await self._engine.invalidate_by_tag(tag)
        return result

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _execute(
        self,
        method: str,
        url: str,
        *,
        params: Any = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        headers = dict(headers or {})
        request_id = get_request_id()
        if request_id:
            headers.setdefault(HEADER_REQUEST_ID, request_id)

        async def send() -> httpx.Response:
            request = self._http.build_request(method, url, params=params, json=json, headers=headers)
            request = await self._request_pipeline.run(request)
            response = await self._http.send(request)
            if response.status_code in RETRYABLE_STATUS_CODES:
                raise UpstreamError(
                    f"Upstream returned {response.status_code}",
                    status_code=response.status_code,
                    request_id=request_id,
                    details={"method": method, "url": str(request.url)},
                )
            response.raise_for_status()
            return response

        log_stage(logger, Stage.CLIENT, "Upstream request", level="debug", method=method.upper(), url=url)
        response = await self._retry.run(send)
        payload = response.json() if response.content else None
        return await self._response_pipeline.run(payload)

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "CachedApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
