"""Best-effort key/value cache used as a read-through layer for expense queries."""
import fnmatch
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheTTL:
    """TTL tiers in seconds."""
    short: int = 300          # 5 mins
    medium: int = 1800        # 30 mins
    long: int = 7200          # 2 hours
    extended: int = 86400     # 24 hours

    @classmethod
    def from_env(cls) -> "CacheTTL":
        """Builds the tiers, letting CACHE_TTL_<TIER> environment variables override defaults."""
        defaults = cls()
        return cls(
            short=int(os.getenv("CACHE_TTL_SHORT", defaults.short)),
            medium=int(os.getenv("CACHE_TTL_MEDIUM", defaults.medium)),
            long=int(os.getenv("CACHE_TTL_LONG", defaults.long)),
            extended=int(os.getenv("CACHE_TTL_EXTENDED", defaults.extended)),
        )


class MemoryCacheBackend:
    """In-process store with per-entry expiry. Expired entries are purged lazily."""

    def __init__(self, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._entries: Dict[str, Tuple[str, float]] = {}

    def _alive(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry[1] <= self._timer():
            del self._entries[key]
            return False
        return True

    async def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        return self._entries[key][0]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._timer() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def keys(self, pattern: str) -> List[str]:
        return [key for key in list(self._entries) if self._alive(key) and fnmatch.fnmatchcase(key, pattern)]

    async def flush(self) -> None:
        self._entries.clear()

    async def close(self) -> None:
        return None


class RedisCacheBackend:
    """Redis-hosted store; TTL is enforced by the server."""

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def keys(self, pattern: str) -> List[str]:
        return [key async for key in self._client.scan_iter(match=pattern)]

    async def flush(self) -> None:
        await self._client.flushdb()

    async def close(self) -> None:
        await self._client.aclose()


class CacheService:
    """
    Facade over a cache backend.

    Every operation swallows backend failures: reads degrade to a miss and
    writes report False. Values are stored JSON-encoded.
    """

    def __init__(self, backend):
        self._backend = backend

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._backend.get(key)
            if raw is None:
                logger.debug(f"Cache miss: {key}")
                return None
            logger.debug(f"Cache hit: {key}")
            return json.loads(raw)
        except Exception as e:
            logger.warning(f"Cache get failed for '{key}', treating as miss: {e}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        try:
            await self._backend.set(key, json.dumps(value), ttl_seconds)
            return True
        except Exception as e:
            logger.warning(f"Cache set failed for '{key}': {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._backend.delete(key)
            return True
        except Exception as e:
            logger.warning(f"Cache delete failed for '{key}': {e}")
            return False

    async def list_keys(self, pattern: str = "*") -> List[str]:
        try:
            return await self._backend.keys(pattern)
        except Exception as e:
            logger.warning(f"Cache key listing failed for pattern '{pattern}': {e}")
            return []

    async def flush_all(self) -> bool:
        try:
            await self._backend.flush()
            logger.info("Cache flushed.")
            return True
        except Exception as e:
            logger.warning(f"Cache flush failed: {e}")
            return False

    async def close(self) -> None:
        try:
            await self._backend.close()
        except Exception as e:
            logger.warning(f"Error closing cache backend: {e}")


def build_cache(backend_name: str, redis_url: Optional[str] = None) -> CacheService:
    """Creates the cache facade for the configured backend ('memory' or 'redis')."""
    name = (backend_name or "memory").lower()
    if name == "redis":
        logger.info(f"Using Redis cache at {redis_url}")
        return CacheService(RedisCacheBackend.from_url(redis_url))
    if name != "memory":
        raise ValueError(f"Unknown cache backend: {backend_name}. Use 'memory' or 'redis'.")
    logger.info("Using in-process memory cache")
    return CacheService(MemoryCacheBackend())
