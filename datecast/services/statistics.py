"""
📅 DATECAST · One date, many guesses. The median decides.

Cache-aside statistics and distribution reads, with write-triggered invalidation.

Entries are stored under ``<key>:g<generation>``. ``invalidate()`` bumps the
generation with an atomic increment, so a reader that recomputed from
pre-write data can only populate an entry no later reader will look up.
"""

import logging
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

import orjson
from sqlalchemy.ext.asyncio import AsyncSession

from datecast.cache import CacheStore, CacheStoreError
from datecast.config import settings
from datecast.services.aggregation import (
    AggregateStatistics,
    Distribution,
    compute_distribution,
    compute_statistics,
)
from datecast.services.capacity import CapacityController
from datecast.services.retry import with_retries

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATS_CACHE_KEY = "stats:latest"
DISTRIBUTION_CACHE_KEY = "predictions:aggregated"
GENERATION_KEY = "stats:generation"


class StatisticsService:
    """
    Serves aggregate statistics from the cache store, recomputing on a miss.

    The TTL for a freshly computed entry comes from the current capacity
    level. Cache read or write failures fall through to the database; a
    recompute that keeps hitting a busy store raises TransientStoreError.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheStore],
        capacity: CapacityController,
        min_submissions: Optional[int] = None,
        retry_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.db = db
        self.cache = cache
        self.capacity = capacity
        self.min_submissions = (
            settings.min_submissions_for_stats if min_submissions is None else min_submissions
        )
        self._retry_sleep = retry_sleep

    async def _recompute(self, compute: Callable[[], Awaitable[T]], label: str) -> T:
        kwargs = {"on_retry": self.db.rollback, "label": label}
        if self._retry_sleep is not None:
            kwargs["sleep"] = self._retry_sleep
        return await with_retries(compute, **kwargs)

    async def _generation(self) -> Optional[int]:
        try:
            raw = await self.cache.get(GENERATION_KEY)
        except CacheStoreError as e:
            logger.warning(f"Cache generation read failed, falling back to database: {e}")
            return None
        try:
            return int(raw) if raw else 0
        except ValueError:
            return 0

    async def _read(self, key: str) -> Optional[dict]:
        try:
            cached = await self.cache.get(key)
        except CacheStoreError as e:
            logger.warning(f"Cache read failed for {key}, falling back to database: {e}")
            return None
        if not cached:
            return None
        try:
            return orjson.loads(cached)
        except orjson.JSONDecodeError:
            logger.warning(f"Discarding unreadable cache entry {key}")
            return None

    async def _write(self, key: str, payload: dict) -> None:
        ttl = await self.capacity.cache_ttl()
        try:
            await self.cache.set(key, orjson.dumps(payload).decode("utf-8"), ttl_seconds=ttl)
        except CacheStoreError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def get_statistics(self) -> Tuple[AggregateStatistics, bool]:
        """
        Get aggregate statistics.

        Returns:
            Tuple of (statistics, cache_hit)
        """
        generation = await self._generation() if self.cache is not None else None
        key = f"{STATS_CACHE_KEY}:g{generation}"

        if generation is not None:
            cached = await self._read(key)
            if cached is not None:
                try:
                    return AggregateStatistics.from_dict(cached), True
                except (KeyError, TypeError, ValueError):
                    logger.warning("Cached statistics malformed, recomputing")

        stats = await self._recompute(
            lambda: compute_statistics(self.db, min_count=self.min_submissions),
            "statistics recompute",
        )
        if generation is not None:
            await self._write(key, stats.to_dict())
        return stats, False

    async def get_distribution(self) -> Tuple[Distribution, bool]:
        """
        Get per-date submission counts.

        Returns:
            Tuple of (distribution, cache_hit)
        """
        generation = await self._generation() if self.cache is not None else None
        key = f"{DISTRIBUTION_CACHE_KEY}:g{generation}"

        if generation is not None:
            cached = await self._read(key)
            if cached is not None:
                try:
                    return Distribution.from_dict(cached), True
                except (KeyError, TypeError, ValueError):
                    logger.warning("Cached distribution malformed, recomputing")

        distribution = await self._recompute(
            lambda: compute_distribution(self.db, min_count=self.min_submissions),
            "distribution recompute",
        )
        if generation is not None:
            await self._write(key, distribution.to_dict())
        return distribution, False

    async def invalidate(self) -> None:
        """Start a new cache generation so the next read recomputes."""
        if self.cache is None:
            return
        try:
            generation = await self.cache.incr(GENERATION_KEY)
            previous = generation - 1
            await self.cache.delete(
                f"{STATS_CACHE_KEY}:g{previous}",
                f"{DISTRIBUTION_CACHE_KEY}:g{previous}",
            )
        except CacheStoreError as e:
            logger.error(f"Statistics cache invalidation failed: {e}")
