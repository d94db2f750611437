"""
📅 DATECAST · One date, many guesses. The median decides.

Deferred submissions held in the cache store while capacity is critical.

Each entry lives under ``queue:<arrival micros, zero padded>:<uuid>`` with a
TTL equal to the retention window, so lexicographic key order is arrival
order and undrained entries expire on their own.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

import orjson

from datecast.cache import CacheStore, CacheStoreError
from datecast.config import settings
from datecast.utils import now_utc, short_id

logger = logging.getLogger(__name__)

QUEUE_PREFIX = "queue:"


@dataclass(frozen=True)
class QueuedSubmission:
    identity_token: str
    network_fingerprint: str
    predicted_date: date
    queued_at: datetime

    def to_json(self) -> str:
        return orjson.dumps(
            {
                "identity_token": self.identity_token,
                "network_fingerprint": self.network_fingerprint,
                "predicted_date": self.predicted_date.isoformat(),
                "queued_at": self.queued_at.isoformat(),
            }
        ).decode("utf-8")

    @classmethod
    def from_json(cls, raw: str) -> "QueuedSubmission":
        data = orjson.loads(raw)
        return cls(
            identity_token=data["identity_token"],
            network_fingerprint=data["network_fingerprint"],
            predicted_date=date.fromisoformat(data["predicted_date"]),
            queued_at=datetime.fromisoformat(data["queued_at"]),
        )


def queue_key(queued_at: datetime) -> str:
    micros = int(queued_at.timestamp() * 1_000_000)
    return f"{QUEUE_PREFIX}{micros:020d}:{uuid4().hex}"


class SubmissionQueue:
    """FIFO queue of deferred submissions in the shared cache store."""

    def __init__(
        self,
        cache: Optional[CacheStore],
        retention_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.cache = cache
        self.retention_seconds = (
            settings.queue_retention_seconds if retention_seconds is None else retention_seconds
        )
        self._clock = clock

    def _require_cache(self) -> CacheStore:
        if self.cache is None:
            raise CacheStoreError("No cache store configured for the submission queue")
        return self.cache

    def is_expired(self, item: QueuedSubmission, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        return now - item.queued_at > timedelta(seconds=self.retention_seconds)

    async def enqueue(
        self,
        identity_token: str,
        network_fingerprint: str,
        predicted_date: date,
    ) -> Tuple[QueuedSubmission, int]:
        """
        Append a submission to the queue.

        Returns:
            Tuple of (queued item, 1-based position)

        Raises:
            CacheStoreError: If the queue cannot be written
        """
        cache = self._require_cache()
        item = QueuedSubmission(
            identity_token=identity_token,
            network_fingerprint=network_fingerprint,
            predicted_date=predicted_date,
            queued_at=self._clock(),
        )
        key = queue_key(item.queued_at)
        await cache.set(key, item.to_json(), ttl_seconds=self.retention_seconds)

        keys = await cache.scan_prefix(QUEUE_PREFIX)
        position = sum(1 for k in keys if k <= key)

        logger.info(f"Submission queued at position {position} (identity {short_id(identity_token)})")
        return item, position

    async def pending(self, limit: Optional[int] = None) -> List[Tuple[str, Optional[QueuedSubmission]]]:
        """
        Oldest-first queue entries.

        Entries whose payload cannot be decoded are returned with ``None`` so
        the caller can discard them.
        """
        cache = self._require_cache()
        keys = sorted(await cache.scan_prefix(QUEUE_PREFIX))
        if limit is not None:
            keys = keys[:limit]

        entries: List[Tuple[str, Optional[QueuedSubmission]]] = []
        for key in keys:
            raw = await cache.get(key)
            if raw is None:
                continue
            try:
                entries.append((key, QueuedSubmission.from_json(raw)))
            except (orjson.JSONDecodeError, KeyError, ValueError):
                logger.warning(f"Unreadable queue entry {key}")
                entries.append((key, None))
        return entries

    async def remove(self, key: str) -> None:
        await self._require_cache().delete(key)

    async def size(self) -> int:
        return len(await self._require_cache().scan_prefix(QUEUE_PREFIX))
