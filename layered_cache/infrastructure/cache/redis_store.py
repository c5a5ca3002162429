"""
Redis Backing Store

BackingStoreAdapter implementation on redis.asyncio with connection pooling.

Key layout:
    {prefix}:e:{cache key}     payload bytes, expiry via SET EX
    {prefix}:tag:{tag}         set of cache keys carrying the tag

Tag sets are not expired; members whose entry has already expired are
harmless (DEL of a missing key counts 0) and are purged when the tag is
invalidated.

Pattern invalidation walks the entry namespace with SCAN (never KEYS) and
filters with a Python regex, so patterns have the same re.search semantics
as the local tier.
"""

import re
import time
from collections.abc import Iterable
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from layered_cache.core.config.constants import (
    REDIS_DELETE_BATCH_SIZE,
    REDIS_ENTRY_SEGMENT,
    REDIS_TAG_SEGMENT,
    Stage,
)
from layered_cache.core.config.settings import RedisSettings, get_settings
from layered_cache.core.exceptions import BackingStoreError
from layered_cache.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisBackingStore:
    """
    Redis-backed distributed tier.

    Usage:
        store = RedisBackingStore()
        await store.connect()
        engine = CacheEngine(config, backing_store=store)
        ...
        await store.close()

    A pre-built client can be injected (tests, shared pools); otherwise a
    pool is created lazily from RedisSettings on first use.
    """

    def __init__(
        self,
        settings: RedisSettings | None = None,
        client: redis.Redis | None = None,
        key_prefix: str | None = None,
    ):
        self._settings = settings or get_settings().redis
        self._client = client
        self._pool: ConnectionPool | None = None
        self._owns_client = client is None
        self._prefix = key_prefix or self._settings.REDIS_KEY_PREFIX
        self._entry_prefix = f"{self._prefix}:{REDIS_ENTRY_SEGMENT}:"
        self._tag_prefix = f"{self._prefix}:{REDIS_TAG_SEGMENT}:"

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._pool = ConnectionPool(
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
                db=self._settings.REDIS_DB,
                password=self._settings.REDIS_PASSWORD,
                max_connections=self._settings.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=self._settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=self._settings.REDIS_SOCKET_TIMEOUT,
                decode_responses=False,  # payloads are bytes
            )
            self._client = redis.Redis(connection_pool=self._pool)
        return self._client

    async def connect(self) -> None:
        """
        Verify connectivity with PING.

        Raises:
            BackingStoreError: If Redis is unreachable
        """
        try:
            await self._get_client().ping()
        except RedisError as e:
            raise BackingStoreError.from_exception(
                e,
                message=f"Failed to connect to Redis: {e}",
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
            ) from e

        log_stage(
            logger,
            Stage.BACKING_STORE,
            "Redis backing store connected",
            host=self._settings.REDIS_HOST,
            port=self._settings.REDIS_PORT,
            key_prefix=self._prefix,
        )

    async def close(self) -> None:
        """Close the client and pool if this store created them."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    # -------------------------------------------------------------------------
    # Adapter operations
    # -------------------------------------------------------------------------

    def entry_key(self, key: str) -> str:
        return self._entry_prefix + key

    def tag_key(self, tag: str) -> str:
        return self._tag_prefix + tag

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._get_client().get(self.entry_key(key))
        except RedisError as e:
            raise BackingStoreError.from_exception(
                e, message=f"Redis GET failed: {e}", cache_key=key
            ) from e

    async def set(self, key: str, data: bytes, ttl_seconds: int, tags: Iterable[str] = ()) -> None:
        entry_key = self.entry_key(key)
        try:
            async with self._get_client().pipeline(transaction=False) as pipe:
                pipe.set(entry_key, data, ex=ttl_seconds if ttl_seconds > 0 else None)
                for tag in tags:
                    pipe.sadd(self.tag_key(tag), key)
                await pipe.execute()
        except RedisError as e:
            raise BackingStoreError.from_exception(
                e, message=f"Redis SET failed: {e}", cache_key=key
            ) from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._get_client().delete(self.entry_key(key)))
        except RedisError as e:
            raise BackingStoreError.from_exception(
                e, message=f"Redis DELETE failed: {e}", cache_key=key
            ) from e

    async def delete_where(self, *, tag: str | None = None, pattern: str | re.Pattern | None = None) -> int:
        if tag is None and pattern is None:
            raise ValueError("delete_where requires a tag or a pattern")

        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        client = self._get_client()
        try:
            if tag is not None:
                members = [_decode(m) for m in await client.smembers(self.tag_key(tag))]
                keys = [k for k in members if regex is None or regex.search(k)]
                deleted = await self._delete_entries(keys)
                if regex is None:
                    await client.delete(self.tag_key(tag))
                elif keys:
                    await client.srem(self.tag_key(tag), *keys)
                return deleted

            keys = []
            async for raw in client.scan_iter(match=f"{self._entry_prefix}*", count=REDIS_DELETE_BATCH_SIZE):
                key = _decode(raw)[len(self._entry_prefix):]
                if regex.search(key):
                    keys.append(key)
            return await self._delete_entries(keys)
        except RedisError as e:
            raise BackingStoreError.from_exception(
                e,
                message=f"Redis bulk delete failed: {e}",
                tag=tag,
                pattern=getattr(regex, "pattern", None),
            ) from e

    async def _delete_entries(self, keys: list[str]) -> int:
        deleted = 0
        client = self._get_client()
        for start in range(0, len(keys), REDIS_DELETE_BATCH_SIZE):
            batch = keys[start : start + REDIS_DELETE_BATCH_SIZE]
            deleted += await client.delete(*(self.entry_key(k) for k in batch))
        return deleted

    async def health_check(self) -> dict[str, Any]:
        """
        Ping Redis and report latency.

        Returns:
            Dict with status, host, port and ping latency
        """
        health: dict[str, Any] = {
            "status": "healthy",
            "backend": "redis",
            "host": self._settings.REDIS_HOST,
            "port": self._settings.REDIS_PORT,
            "ping_latency_ms": None,
        }
        try:
            start = time.perf_counter()
            await self._get_client().ping()
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        except RedisError as e:
            health["status"] = "unhealthy"
            health["error"] = str(e)
        return health
