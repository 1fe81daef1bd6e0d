from __future__ import annotations

import json
import math
import time
from collections.abc import Callable
from typing import Any, Protocol

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from tokenfeed.config.settings import Settings
from tokenfeed.errors import CacheStoreError
from tokenfeed.observability.logging import get_logger

logger = get_logger(__name__)


class CacheBackend(Protocol):
    name: str

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, raw: str, ttl_seconds: int) -> None: ...


class MemoryBackend:
    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return raw

    async def set(self, key: str, raw: str, ttl_seconds: int) -> None:
        self._entries[key] = (raw, self._clock() + ttl_seconds)


class RedisBackend:
    name = "redis"

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except (RedisError, OSError) as exc:
            raise CacheStoreError(f"redis get failed: {exc}") from exc

    async def set(self, key: str, raw: str, ttl_seconds: int) -> None:
        # Redis rejects a zero expiry; the envelope still carries the real one.
        try:
            await self._client.setex(key, max(ttl_seconds, 1), raw)
        except (RedisError, OSError) as exc:
            raise CacheStoreError(f"redis set failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


class CacheStore:
    """Cache-aside store with per-entry TTL.

    Entries are stored as ``{"expires_at": ..., "value": ...}`` and the
    expiry is checked against the wall clock on every read, so an expired
    entry looks exactly like a key that was never set. Backend failures are
    logged and reported as misses; they never reach the caller.
    """

    def __init__(self, backend: CacheBackend, clock: Callable[[], float] = time.time) -> None:
        self.backend = backend
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.backend.get(key)
        except CacheStoreError as exc:
            logger.warning("cache_get_failed", key=key, backend=self.backend.name, error=str(exc))
            return None
        if not raw:
            return None

        try:
            envelope = json.loads(raw)
            expires_at = float(envelope["expires_at"])
            value = envelope["value"]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return None
        if self._clock() >= expires_at:
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        envelope = {"expires_at": self._clock() + ttl_seconds, "value": value}
        try:
            raw = json.dumps(envelope)
            await self.backend.set(key, raw, math.ceil(max(ttl_seconds, 0)))
        except CacheStoreError as exc:
            logger.warning("cache_set_failed", key=key, backend=self.backend.name, error=str(exc))
        except (TypeError, ValueError) as exc:
            logger.warning("cache_value_not_serializable", key=key, error=str(exc))

    async def aclose(self) -> None:
        close = getattr(self.backend, "aclose", None)
        if close is not None:
            await close()


def build_cache_store(settings: Settings) -> CacheStore:
    """Pick the backing store once: redis when a URL is configured, memory otherwise."""
    if settings.redis_url:
        logger.info("cache_mode", backend="redis")
        return CacheStore(RedisBackend.from_url(settings.redis_url))
    logger.info("cache_mode", backend="memory")
    return CacheStore(MemoryBackend())
