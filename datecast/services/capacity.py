"""
📅 DATECAST · One date, many guesses. The median decides.

Daily request capacity tracking and graceful degradation.

Levels are a pure function of today's request count against the daily limit:

    normal    <  80%
    elevated  >= 80%   log-only, one alert per day
    high      >= 90%   distribution chart disabled, longer stats TTL
    critical  >= 95%   submissions queued instead of written
    exceeded  >= 100%  submissions rejected, reads served from cache

No level is ever persisted; it is recomputed from the counter on every call.
The counter lives in the cache store under a per-day key that expires at the
next UTC midnight.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from datecast.cache import CacheStore, CacheStoreError
from datecast.config import settings
from datecast.utils import hours_until_midnight, next_midnight_utc, now_utc, seconds_until_midnight

logger = logging.getLogger(__name__)


class CapacityLevel(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


# Checked from the top; first match wins
CAPACITY_THRESHOLDS = (
    (1.0, CapacityLevel.EXCEEDED),
    (0.95, CapacityLevel.CRITICAL),
    (0.90, CapacityLevel.HIGH),
    (0.80, CapacityLevel.ELEVATED),
)

REQUEST_COUNT_PREFIX = "capacity:requests:"
ALERT_SENT_PREFIX = "capacity:alert:"

# Day keys outlive midnight slightly so a late increment never resurrects a stale count
DAY_KEY_SLACK_SECONDS = 60


def capacity_level(requests_today: int, daily_limit: int) -> CapacityLevel:
    """
    Map a request count to a capacity level.

    Args:
        requests_today: Requests counted so far today
        daily_limit: Hard daily ceiling

    Returns:
        CapacityLevel
    """
    if daily_limit <= 0:
        return CapacityLevel.EXCEEDED
    ratio = requests_today / daily_limit
    for threshold, level in CAPACITY_THRESHOLDS:
        if ratio >= threshold:
            return level
    return CapacityLevel.NORMAL


@dataclass(frozen=True)
class FeatureFlags:
    stats_enabled: bool = True
    submissions_enabled: bool = True
    optional_feature_enabled: bool = True
    extended_cache: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "stats_enabled": self.stats_enabled,
            "submissions_enabled": self.submissions_enabled,
            "optional_feature_enabled": self.optional_feature_enabled,
            "extended_cache": self.extended_cache,
        }


def feature_flags(level: CapacityLevel) -> FeatureFlags:
    """Feature availability for a capacity level."""
    if level in (CapacityLevel.NORMAL, CapacityLevel.ELEVATED):
        return FeatureFlags()
    if level in (CapacityLevel.HIGH, CapacityLevel.CRITICAL):
        return FeatureFlags(optional_feature_enabled=False, extended_cache=True)
    return FeatureFlags(
        submissions_enabled=False,
        optional_feature_enabled=False,
        extended_cache=True,
    )


def stats_cache_ttl(level: CapacityLevel) -> int:
    """Statistics cache TTL in seconds; longer as load rises."""
    return {
        CapacityLevel.NORMAL: settings.stats_ttl_normal,
        CapacityLevel.ELEVATED: settings.stats_ttl_normal,
        CapacityLevel.HIGH: settings.stats_ttl_high,
        CapacityLevel.CRITICAL: settings.stats_ttl_critical,
        CapacityLevel.EXCEEDED: settings.stats_ttl_exceeded,
    }[level]


def degradation_message(level: CapacityLevel, hours_until_reset: int) -> Optional[str]:
    """User-facing notice for a capacity level, or None when nothing changed."""
    if level == CapacityLevel.HIGH:
        return "High traffic! Some features are temporarily limited."
    if level == CapacityLevel.CRITICAL:
        return "We're experiencing high traffic. Your submission will be processed shortly."
    if level == CapacityLevel.EXCEEDED:
        return f"We've reached capacity for today. Try again in {hours_until_reset} hours."
    return None


@dataclass(frozen=True)
class CapacitySnapshot:
    level: CapacityLevel
    requests_today: int
    daily_limit: int
    reset_at: datetime
    features: FeatureFlags
    message: Optional[str] = None
    seconds_until_reset: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "requests_today": self.requests_today,
            "daily_limit": self.daily_limit,
            "reset_at": self.reset_at.isoformat(),
            "features": self.features.to_dict(),
            "message": self.message,
        }


class CapacityController:
    """
    Derives capacity level and features from the shared daily counter.

    Fails open: when the cache store is unavailable every read reports
    ``normal`` and increments are skipped.
    """

    def __init__(
        self,
        cache: Optional[CacheStore],
        daily_limit: Optional[int] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.cache = cache
        self.daily_limit = settings.daily_request_limit if daily_limit is None else daily_limit
        self._clock = clock

    def _counter_key(self, now: datetime) -> str:
        return f"{REQUEST_COUNT_PREFIX}{now.date().isoformat()}"

    async def requests_today(self) -> int:
        """Today's request count (0 when the store is unavailable)."""
        if self.cache is None:
            logger.warning("Cache store unavailable, failing open to normal capacity")
            return 0
        try:
            raw = await self.cache.get(self._counter_key(self._clock()))
        except CacheStoreError as e:
            logger.warning(f"Capacity counter read failed, failing open to normal capacity: {e}")
            return 0
        try:
            return int(raw) if raw else 0
        except ValueError:
            logger.warning(f"Capacity counter holds a non-integer value {raw!r}, treating as 0")
            return 0

    async def record_request(self) -> int:
        """
        Count one request against today's limit.

        Returns:
            New count, or 0 if the store is unavailable
        """
        if self.cache is None:
            return 0

        now = self._clock()
        key = self._counter_key(now)
        try:
            count = await self.cache.incr(key)
            if count == 1:
                await self.cache.expire(key, seconds_until_midnight(now) + DAY_KEY_SLACK_SECONDS)
        except CacheStoreError as e:
            logger.warning(f"Capacity counter increment failed: {e}")
            return 0

        if capacity_level(count, self.daily_limit) != CapacityLevel.NORMAL:
            await self._alert_once(now, count)
        return count

    async def _alert_once(self, now: datetime, count: int) -> None:
        key = f"{ALERT_SENT_PREFIX}{now.date().isoformat()}"
        try:
            first = await self.cache.set_if_absent(
                key, "1", ttl_seconds=seconds_until_midnight(now) + DAY_KEY_SLACK_SECONDS
            )
        except CacheStoreError as e:
            logger.warning(f"Capacity alert flag unavailable: {e}")
            return
        if first:
            logger.warning(
                f"Capacity alert: {count}/{self.daily_limit} requests today "
                f"(level {capacity_level(count, self.daily_limit).value})"
            )

    async def current_level(self) -> CapacityLevel:
        return capacity_level(await self.requests_today(), self.daily_limit)

    async def cache_ttl(self) -> int:
        return stats_cache_ttl(await self.current_level())

    async def snapshot(self) -> CapacitySnapshot:
        """Full capacity state for the read_capacity operation."""
        now = self._clock()
        requests = await self.requests_today()
        level = capacity_level(requests, self.daily_limit)
        return CapacitySnapshot(
            level=level,
            requests_today=requests,
            daily_limit=self.daily_limit,
            reset_at=next_midnight_utc(now),
            features=feature_flags(level),
            message=degradation_message(level, hours_until_midnight(now)),
            seconds_until_reset=seconds_until_midnight(now),
        )
