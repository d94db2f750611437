from datetime import datetime, timezone

import pytest

from datecast.cache import CacheStore, CacheStoreError
from datecast.services.capacity import (
    CapacityController,
    CapacityLevel,
    capacity_level,
    degradation_message,
    feature_flags,
    stats_cache_ttl,
)
from tests.conftest import DAILY_LIMIT, set_requests_today


class UnreachableStore(CacheStore):
    """Cache store whose every call fails like a dropped connection."""

    async def get(self, key):
        raise CacheStoreError("connection refused")

    async def incr(self, key):
        raise CacheStoreError("connection refused")


@pytest.mark.parametrize(
    "requests_today,expected",
    [
        (0, CapacityLevel.NORMAL),
        (79_999, CapacityLevel.NORMAL),
        (80_000, CapacityLevel.ELEVATED),
        (89_999, CapacityLevel.ELEVATED),
        (90_000, CapacityLevel.HIGH),
        (94_999, CapacityLevel.HIGH),
        (95_000, CapacityLevel.CRITICAL),
        (96_000, CapacityLevel.CRITICAL),
        (99_999, CapacityLevel.CRITICAL),
        (100_000, CapacityLevel.EXCEEDED),
        (250_000, CapacityLevel.EXCEEDED),
    ],
)
def test_level_boundaries(requests_today, expected):
    assert capacity_level(requests_today, DAILY_LIMIT) == expected


def test_level_is_deterministic():
    assert all(capacity_level(96_000, DAILY_LIMIT) == CapacityLevel.CRITICAL for _ in range(100))


def test_feature_flags_per_level():
    assert feature_flags(CapacityLevel.ELEVATED).optional_feature_enabled is True

    high = feature_flags(CapacityLevel.HIGH)
    assert high.optional_feature_enabled is False
    assert high.extended_cache is True
    assert high.submissions_enabled is True

    exceeded = feature_flags(CapacityLevel.EXCEEDED)
    assert exceeded.submissions_enabled is False
    assert exceeded.stats_enabled is True


def test_ttl_grows_with_load():
    ttls = [stats_cache_ttl(level) for level in CapacityLevel]
    assert ttls == sorted(ttls)
    assert stats_cache_ttl(CapacityLevel.NORMAL) == 300
    assert stats_cache_ttl(CapacityLevel.HIGH) == 900


def test_degradation_messages():
    assert degradation_message(CapacityLevel.NORMAL, 5) is None
    assert degradation_message(CapacityLevel.ELEVATED, 5) is None
    assert "high traffic" in degradation_message(CapacityLevel.CRITICAL, 5).lower()
    assert "Try again in 5 hours" in degradation_message(CapacityLevel.EXCEEDED, 5)


@pytest.mark.asyncio
async def test_record_request_counts_and_expires_at_midnight(cache, clock, capacity):
    assert await capacity.record_request() == 1
    assert await capacity.record_request() == 2
    assert await capacity.requests_today() == 2

    # 12:00 -> midnight is 12 hours away; the day key outlives it only by the slack
    clock.advance(12 * 3600 + 61)
    assert await capacity.requests_today() == 0
    assert await capacity.record_request() == 1


@pytest.mark.asyncio
async def test_snapshot_reports_reset_time(cache, clock, capacity):
    await set_requests_today(cache, clock(), 96_000)

    snapshot = await capacity.snapshot()
    assert snapshot.level == CapacityLevel.CRITICAL
    assert snapshot.requests_today == 96_000
    assert snapshot.reset_at == datetime(2026, 10, 20, tzinfo=timezone.utc)
    assert snapshot.seconds_until_reset == 12 * 3600
    assert snapshot.to_dict()["features"]["optional_feature_enabled"] is False


@pytest.mark.asyncio
async def test_exceeded_message_counts_hours_until_reset(cache, clock, capacity):
    await set_requests_today(cache, clock(), DAILY_LIMIT)
    snapshot = await capacity.snapshot()
    assert snapshot.message == "We've reached capacity for today. Try again in 12 hours."


@pytest.mark.asyncio
async def test_unreachable_store_fails_open():
    capacity = CapacityController(UnreachableStore(), daily_limit=DAILY_LIMIT)
    assert await capacity.current_level() == CapacityLevel.NORMAL
    assert await capacity.record_request() == 0


@pytest.mark.asyncio
async def test_missing_store_fails_open():
    capacity = CapacityController(None, daily_limit=DAILY_LIMIT)
    assert await capacity.current_level() == CapacityLevel.NORMAL


@pytest.mark.asyncio
async def test_elevated_alert_sent_once_per_day(cache, clock, capacity, caplog):
    await set_requests_today(cache, clock(), 80_000)

    with caplog.at_level("WARNING", logger="datecast.services.capacity"):
        await capacity.record_request()
        await capacity.record_request()

    alerts = [r for r in caplog.records if "Capacity alert" in r.getMessage()]
    assert len(alerts) == 1
