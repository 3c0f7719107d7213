import asyncio
import logging
from contextlib import contextmanager
from typing import Awaitable, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import settings
from app.errors import CacheError
from app.middleware import record_cache_lookup

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Key layout
# ---------------------------------------------------------------------------

TOTAL_POSTS_KEY = "post:total_count"

# Every key below matches one of these.
POST_KEY_PATTERNS = ("post:*", "post_pk:*")


def post_body_key(post_id: str) -> str:
    return f"post:{post_id}"


def post_pk_key(post_id: str) -> str:
    return f"post_pk:{post_id}"


def comment_count_key(post_id: str) -> str:
    return f"post:{post_id}:comment_count"


class CacheManager:
    """
    Thin wrapper over a Redis/Valkey connection.

    Every primitive raises ``CacheError`` on any failure, including when
    no connection was ever opened, so callers decide per call whether a
    failure means "miss" or "skip".  ``best_effort`` is the usual way to
    make that decision.  Entries are written without a TTL: they live
    until deleted or overwritten.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
        # Ping to surface mis-configuration early (non-fatal).
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except (RedisError, OSError) as exc:
            logger.warning("Redis ping failed, serving from the database: %s", exc)

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def ping(self) -> bool:
        with self._translate("ping", None):
            return bool(await self._client().ping())

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def _client(self) -> redis.Redis:
        if self._redis is None:
            raise CacheError("cache is not connected")
        return self._redis

    @contextmanager
    def _translate(self, operation: str, key: str | None):
        try:
            yield
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CacheError(f"{operation} {key!r}: {exc}") from exc

    async def get(self, key: str) -> str | None:
        try:
            with self._translate("get", key):
                value = await self._client().get(key)
        except CacheError:
            record_cache_lookup(False)
            raise
        record_cache_lookup(value is not None)
        return value

    async def get_int(self, key: str) -> int | None:
        """Integer value of *key*; a non-integer value is a ``CacheError``."""
        value = await self.get(key)
        if value is None:
            return None
        return _parse_int(key, value)

    async def mget_int(self, keys: list[str]) -> list[int | None | CacheError]:
        """
        Read several integer entries in one round trip.

        Each slot holds the value, ``None`` for an absent key, or a
        ``CacheError`` for a value that is not an integer.  A failure of
        the call itself raises.
        """
        if not keys:
            return []
        try:
            with self._translate("mget", ",".join(keys)):
                values = await self._client().mget(keys)
        except CacheError:
            for _ in keys:
                record_cache_lookup(False)
            raise
        results: list[int | None | CacheError] = []
        for key, value in zip(keys, values):
            if value is None:
                results.append(None)
                record_cache_lookup(False)
                continue
            try:
                results.append(_parse_int(key, value))
                record_cache_lookup(True)
            except CacheError as exc:
                results.append(exc)
                record_cache_lookup(False)
        return results

    async def set(self, key: str, value: str | int) -> None:
        with self._translate("set", key):
            await self._client().set(key, value)

    async def incr(self, key: str) -> int:
        with self._translate("incr", key):
            return await self._client().incr(key)

    async def decr(self, key: str) -> int:
        with self._translate("decr", key):
            return await self._client().decr(key)

    async def exists(self, key: str) -> bool:
        with self._translate("exists", key):
            return bool(await self._client().exists(key))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._translate("delete", ",".join(keys)):
            return await self._client().delete(*keys)

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching *pattern* using SCAN (avoids blocking KEYS).
        """
        with self._translate("delete_pattern", pattern):
            client = self._client()
            keys: list[str] = []
            async for key in client.scan_iter(match=pattern):
                keys.append(key)
            if not keys:
                return 0
            removed = await client.delete(*keys)
        logger.debug("Cache invalidated %d key(s) matching %r", removed, pattern)
        return removed


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CacheError(f"value of {key!r} is not an integer: {value!r}") from None


class Counter:
    """
    An integer counter held in the cache under a single key.

    Counters are never authoritative.  The ``*_if_present`` variants only
    move a counter that already has a baseline; an absent counter stays
    absent so the next read repairs it from the store instead of
    counting up from an assumed zero.  The exists/incr pair is not
    atomic: a delete landing in between recreates the key at +1/-1,
    which the next repair overwrites.
    """

    def __init__(self, cache: CacheManager, key: str) -> None:
        self.cache = cache
        self.key = key

    async def get(self) -> int | None:
        return await self.cache.get_int(self.key)

    async def set(self, value: int) -> None:
        await self.cache.set(self.key, value)

    async def incr(self) -> int:
        return await self.cache.incr(self.key)

    async def decr(self) -> int:
        return await self.cache.decr(self.key)

    async def incr_if_present(self) -> int | None:
        if not await self.cache.exists(self.key):
            return None
        return await self.cache.incr(self.key)

    async def decr_if_present(self) -> int | None:
        if not await self.cache.exists(self.key):
            return None
        return await self.cache.decr(self.key)


async def best_effort(call: Awaitable[T], operation: str, key: str | None = None) -> T | None:
    """
    Await a cache call, downgrading ``CacheError`` to a warning.

    Returns the call's result, or None when it failed; a failed read is
    therefore indistinguishable from a miss.
    """
    try:
        return await call
    except CacheError as exc:
        logger.warning(
            "Cache %s failed for key=%r: %s",
            operation,
            key,
            exc,
            extra={"operation": operation, "cache_key": key},
        )
        return None


# Module-level singleton shared across all request handlers.
cache = CacheManager()
