from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from datecast.services.retry import TransientStoreError
from datecast.services.statistics import (
    DISTRIBUTION_CACHE_KEY,
    GENERATION_KEY,
    STATS_CACHE_KEY,
    StatisticsService,
)
from tests.conftest import seed_submissions, set_requests_today

BASE = date(2028, 6, 1)


@pytest.mark.asyncio
async def test_miss_then_hit(db, statistics):
    await seed_submissions(db, [BASE + timedelta(days=i) for i in range(60)])

    first, hit = await statistics.get_statistics()
    assert hit is False
    assert first.count == 60

    second, hit = await statistics.get_statistics()
    assert hit is True
    assert second == first


@pytest.mark.asyncio
async def test_entry_expires_after_normal_ttl(db, statistics, clock):
    await seed_submissions(db, [BASE])
    await statistics.get_statistics()

    clock.advance(299)
    assert (await statistics.get_statistics())[1] is True
    clock.advance(2)
    assert (await statistics.get_statistics())[1] is False


@pytest.mark.asyncio
async def test_ttl_follows_capacity_level(db, cache, statistics, clock):
    """At high capacity a fresh entry lives for the extended TTL."""
    await set_requests_today(cache, clock(), 91_000)
    await seed_submissions(db, [BASE])
    await statistics.get_statistics()

    clock.advance(600)
    assert (await statistics.get_statistics())[1] is True
    clock.advance(301)
    assert (await statistics.get_statistics())[1] is False


@pytest.mark.asyncio
async def test_invalidate_forces_recompute(db, statistics):
    await seed_submissions(db, [BASE])
    stale, _ = await statistics.get_statistics()
    assert stale.count == 1

    await seed_submissions(db, [BASE + timedelta(days=3)])
    cached, hit = await statistics.get_statistics()
    assert hit is True
    assert cached.count == 1

    await statistics.invalidate()
    fresh, hit = await statistics.get_statistics()
    assert hit is False
    assert fresh.count == 2


@pytest.mark.asyncio
async def test_invalidate_bumps_generation_and_drops_old_entries(db, cache, statistics):
    await seed_submissions(db, [BASE])
    await statistics.get_statistics()
    await statistics.get_distribution()
    assert await cache.get(f"{STATS_CACHE_KEY}:g0") is not None

    await statistics.invalidate()
    assert await cache.get(GENERATION_KEY) == "1"
    assert await cache.get(f"{STATS_CACHE_KEY}:g0") is None
    assert await cache.get(f"{DISTRIBUTION_CACHE_KEY}:g0") is None


@pytest.mark.asyncio
async def test_reader_that_raced_a_write_cannot_serve_stale_data(db, cache, capacity, statistics):
    """
    A reader that computed from pre-write data and stores its result after
    the writer's invalidation must not be served to later readers.
    """
    await seed_submissions(db, [BASE])
    slow_reader = StatisticsService(db, cache, capacity, min_submissions=0)
    generation_seen = await slow_reader._generation()

    # Writer commits and invalidates while the slow reader is still computing
    await seed_submissions(db, [BASE + timedelta(days=1)])
    await statistics.invalidate()

    stale, _ = await statistics.get_statistics()
    await slow_reader._write(f"{STATS_CACHE_KEY}:g{generation_seen}", {**stale.to_dict(), "count": 1})

    fresh, _ = await statistics.get_statistics()
    assert fresh.count == 2


@pytest.mark.asyncio
async def test_cache_unavailable_falls_back_to_database(db, capacity):
    await seed_submissions(db, [BASE])
    service = StatisticsService(db, None, capacity, min_submissions=0)

    stats, hit = await service.get_statistics()
    assert hit is False
    assert stats.median == BASE
    await service.invalidate()


@pytest.mark.asyncio
async def test_corrupt_entry_is_recomputed(db, cache, statistics):
    await seed_submissions(db, [BASE])
    await cache.set(f"{STATS_CACHE_KEY}:g0", "not json")

    stats, hit = await statistics.get_statistics()
    assert hit is False
    assert stats.count == 1


@pytest.mark.asyncio
async def test_distribution_cached_separately(db, statistics):
    await seed_submissions(db, [BASE + timedelta(days=i % 5) for i in range(55)])

    distribution, hit = await statistics.get_distribution()
    assert hit is False
    assert distribution.total == 55
    assert len(distribution.points) == 5

    _, hit = await statistics.get_distribution()
    assert hit is True


def locked_execute(original, failures: int):
    """Wrap ``db.execute`` so the first ``failures`` calls hit a locked store."""
    calls = {"count": 0}

    async def execute(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] <= failures:
            raise OperationalError("SELECT", {}, Exception("database is locked"))
        return await original(*args, **kwargs)

    return execute, calls


@pytest.mark.asyncio
async def test_recompute_retries_through_a_locked_store(db, statistics, monkeypatch):
    await seed_submissions(db, [BASE + timedelta(days=i) for i in range(60)])
    execute, calls = locked_execute(db.execute, failures=2)
    monkeypatch.setattr(db, "execute", execute)

    stats, hit = await statistics.get_statistics()

    assert hit is False
    assert stats.count == 60
    assert calls["count"] > 2


@pytest.mark.asyncio
async def test_recompute_gives_up_after_bounded_attempts(db, statistics, monkeypatch):
    await seed_submissions(db, [BASE])
    execute, calls = locked_execute(db.execute, failures=100)
    monkeypatch.setattr(db, "execute", execute)

    with pytest.raises(TransientStoreError) as excinfo:
        await statistics.get_statistics()

    assert excinfo.value.attempts == 3
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_distribution_recompute_gives_up_after_bounded_attempts(db, statistics, monkeypatch):
    execute, _ = locked_execute(db.execute, failures=100)
    monkeypatch.setattr(db, "execute", execute)

    with pytest.raises(TransientStoreError):
        await statistics.get_distribution()
