"""
📅 DATECAST · One date, many guesses. The median decides.

Shared key-value cache store: Redis in production, in-process otherwise.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from datecast.config import settings

logger = logging.getLogger(__name__)


class CacheStoreError(RuntimeError):
    """The cache store could not be reached or rejected an operation."""


class CacheStore:
    """Atomic key-value operations with native TTL support."""

    # Visible to every process (API workers and scripts)
    shared = False

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        raise NotImplementedError

    async def delete(self, *keys: str) -> int:
        raise NotImplementedError

    async def incr(self, key: str) -> int:
        raise NotImplementedError

    async def expire(self, key: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def scan_prefix(self, prefix: str) -> List[str]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class RedisCacheStore(CacheStore):
    """CacheStore backed by ``redis.asyncio``."""

    shared = True

    def __init__(self, url: str, client: Optional[aioredis.Redis] = None):
        self.url = url
        self._client = client or aioredis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise CacheStoreError(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CacheStoreError(f"SET {key} failed: {exc}") from exc

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        try:
            return bool(await self._client.set(key, value, ex=ttl_seconds, nx=True))
        except RedisError as exc:
            raise CacheStoreError(f"SETNX {key} failed: {exc}") from exc

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._client.delete(*keys))
        except RedisError as exc:
            raise CacheStoreError(f"DEL {', '.join(keys)} failed: {exc}") from exc

    async def incr(self, key: str) -> int:
        try:
            return int(await self._client.incr(key))
        except RedisError as exc:
            raise CacheStoreError(f"INCR {key} failed: {exc}") from exc

    async def expire(self, key: str, ttl_seconds: int) -> None:
        try:
            await self._client.expire(key, ttl_seconds)
        except RedisError as exc:
            raise CacheStoreError(f"EXPIRE {key} failed: {exc}") from exc

    async def scan_prefix(self, prefix: str) -> List[str]:
        try:
            return [key async for key in self._client.scan_iter(match=f"{prefix}*")]
        except RedisError as exc:
            raise CacheStoreError(f"SCAN {prefix}* failed: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryCacheStore(CacheStore):
    """
    Process-local CacheStore with the same TTL semantics.

    Suitable for a single worker and for tests. Each operation completes
    without awaiting, so it is atomic with respect to other coroutines.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        return self._clock() + ttl_seconds if ttl_seconds else None

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._data[key] = (value, self._expiry(ttl_seconds))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        if self._live(key) is not None:
            return False
        self._data[key] = (value, self._expiry(ttl_seconds))
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def incr(self, key: str) -> int:
        current = self._live(key)
        expires_at = self._data[key][1] if current is not None else None
        value = int(current or 0) + 1
        self._data[key] = (str(value), expires_at)
        return value

    async def expire(self, key: str, ttl_seconds: int) -> None:
        current = self._live(key)
        if current is not None:
            self._data[key] = (current, self._expiry(ttl_seconds))

    async def scan_prefix(self, prefix: str) -> List[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._live(key) is not None]


_cache_store: Optional[CacheStore] = None


def build_cache_store(url: Optional[str] = None) -> CacheStore:
    """
    Build a cache store from a URL.

    Args:
        url: Redis URL (defaults to REDIS_URL); empty selects the in-process store

    Returns:
        CacheStore instance
    """
    url = settings.redis_url if url is None else url
    if url:
        logger.info(f"Using Redis cache store at {url.split('@')[-1]}")
        return RedisCacheStore(url)
    logger.info("REDIS_URL not set, using in-process cache store")
    return InMemoryCacheStore()


def get_cache() -> CacheStore:
    """Dependency for FastAPI to get the shared cache store."""
    global _cache_store
    if _cache_store is None:
        _cache_store = build_cache_store()
    return _cache_store
