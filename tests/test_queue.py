from datetime import date

import pytest

from datecast.cache import CacheStoreError
from datecast.services.queue import QUEUE_PREFIX, SubmissionQueue


@pytest.mark.asyncio
async def test_positions_are_one_based_and_increasing(queue, clock):
    _, first = await queue.enqueue("token-a", "fp-a", date(2028, 1, 1))
    clock.advance(1)
    _, second = await queue.enqueue("token-b", "fp-b", date(2028, 1, 2))

    assert first == 1
    assert second == 2
    assert await queue.size() == 2


@pytest.mark.asyncio
async def test_pending_is_fifo(queue, clock):
    for i in range(5):
        await queue.enqueue(f"token-{i}", f"fp-{i}", date(2028, 1, 1 + i))
        clock.advance(0.5)

    entries = await queue.pending()
    assert [item.identity_token for _, item in entries] == [f"token-{i}" for i in range(5)]

    limited = await queue.pending(2)
    assert [item.identity_token for _, item in limited] == ["token-0", "token-1"]


@pytest.mark.asyncio
async def test_entries_expire_after_retention(queue, clock):
    item, _ = await queue.enqueue("token-a", "fp-a", date(2028, 1, 1))

    clock.advance(24 * 3600 - 1)
    assert not queue.is_expired(item)
    assert await queue.size() == 1

    clock.advance(2)
    assert queue.is_expired(item)
    assert await queue.size() == 0


@pytest.mark.asyncio
async def test_unreadable_entry_is_surfaced_for_discard(queue, cache):
    await cache.set(f"{QUEUE_PREFIX}00000000000000000001:broken", "{not json")

    entries = await queue.pending()
    assert entries == [(f"{QUEUE_PREFIX}00000000000000000001:broken", None)]


@pytest.mark.asyncio
async def test_queue_without_store_raises():
    with pytest.raises(CacheStoreError):
        await SubmissionQueue(None).enqueue("token", "fp", date(2028, 1, 1))
