"""
📅 DATECAST · One date, many guesses. The median decides.

Submission conflict resolution, overload queuing and queue drain.

Precedence for an incoming submission:

1. Same identity token, same date: duplicate, nothing written.
2. Same identity token, different date: conflict, the caller must update.
3. Capacity exceeded: rejected. Capacity critical: queued.
4. Otherwise written. The store's uniqueness constraints decide the rest.
"""

import asyncio
import logging
from datetime import date
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from datecast.cache import CacheStore, CacheStoreError
from datecast.config import settings
from datecast.models import Submission
from datecast.security import new_identity_token
from datecast.services.aggregation import InvariantViolation
from datecast.services.capacity import CapacityController, CapacityLevel, CapacitySnapshot
from datecast.services.outcomes import (
    Accepted,
    NotFound,
    Queued,
    Rejected,
    RejectReason,
    SubmitOutcome,
    Transient,
    Unchanged,
    Updated,
    UpdateOutcome,
    network_in_use_conflict,
    update_required_conflict,
)
from datecast.services.queue import SubmissionQueue
from datecast.services.retry import TransientStoreError, with_retries
from datecast.services.statistics import StatisticsService
from datecast.services.weights import compute_weight
from datecast.utils import short_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


def violated_column(exc: IntegrityError) -> Optional[str]:
    """
    Which unique column an IntegrityError tripped, if any.

    Matches both constraint names (PostgreSQL) and ``table.column`` (SQLite).
    """
    text = str(exc.orig) if exc.orig is not None else str(exc)
    if "network_fingerprint" in text:
        return "network_fingerprint"
    if "identity_token" in text:
        return "identity_token"
    return None


def capacity_rejection(snapshot: CapacitySnapshot) -> Rejected:
    return Rejected(
        reason=RejectReason.CAPACITY_EXCEEDED,
        message=snapshot.message or "We've reached capacity for today.",
        hint="Nothing was saved. Try again after the daily reset.",
        level=snapshot.level.value,
        reset_at=snapshot.reset_at,
        retry_after_seconds=snapshot.seconds_until_reset,
    )


class SubmissionService:
    """Request-scoped unit of work over one database session."""

    def __init__(
        self,
        db: AsyncSession,
        capacity: CapacityController,
        statistics: StatisticsService,
        queue: Optional[SubmissionQueue] = None,
        reference_date: Optional[date] = None,
        retry_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.db = db
        self.capacity = capacity
        self.statistics = statistics
        self.queue = queue
        self.reference_date = reference_date or settings.reference_date
        self._retry_sleep = retry_sleep

    async def _retrying(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        kwargs = {"on_retry": self.db.rollback, "label": label}
        if self._retry_sleep is not None:
            kwargs["sleep"] = self._retry_sleep
        return await with_retries(operation, **kwargs)

    async def find_by_identity(self, identity_token: str) -> Optional[Submission]:
        async def lookup() -> Optional[Submission]:
            result = await self.db.execute(
                select(Submission).where(Submission.identity_token == identity_token)
            )
            return result.scalar_one_or_none()

        return await self._retrying(lookup, "identity lookup")

    def _existing_outcome(self, existing: Submission, predicted_date: date) -> SubmitOutcome:
        if existing.predicted_date == predicted_date:
            logger.info(f"Duplicate submission for identity {short_id(existing.identity_token)}")
            return Accepted(
                submission_id=existing.id,
                identity_token=existing.identity_token,
                predicted_date=existing.predicted_date,
                weight=existing.weight,
                duplicate=True,
                message="Your prediction is already recorded.",
            )
        logger.warning(
            f"Identity {short_id(existing.identity_token)} resubmitted a different date, update required"
        )
        return update_required_conflict()

    async def submit(
        self,
        identity_token: str,
        network_fingerprint: str,
        predicted_date: date,
        token_is_new: bool = False,
    ) -> SubmitOutcome:
        """
        Accept, queue or refuse a new prediction.

        Args:
            identity_token: Submitter identity (opaque)
            network_fingerprint: Keyed hash of the submitter's network address
            predicted_date: Predicted date
            token_is_new: Whether the identity token was minted for this request,
                in which case one identity collision regenerates it

        Returns:
            Accepted, Queued, Conflict, Rejected or Transient
        """
        try:
            existing = await self.find_by_identity(identity_token)
        except TransientStoreError as e:
            return Transient(retry_after_seconds=e.retry_after_seconds)
        if existing is not None:
            return self._existing_outcome(existing, predicted_date)

        snapshot = await self.capacity.snapshot()
        if snapshot.level == CapacityLevel.EXCEEDED:
            logger.warning(f"Submission rejected at capacity (identity {short_id(identity_token)})")
            return capacity_rejection(snapshot)
        if snapshot.level == CapacityLevel.CRITICAL and self.queue is not None:
            return await self._enqueue(identity_token, network_fingerprint, predicted_date)

        outcome = await self._write_new(identity_token, network_fingerprint, predicted_date, token_is_new)
        if isinstance(outcome, Accepted) and not outcome.duplicate:
            await self.statistics.invalidate()
        return outcome

    async def _enqueue(
        self,
        identity_token: str,
        network_fingerprint: str,
        predicted_date: date,
    ) -> SubmitOutcome:
        try:
            item, position = await self.queue.enqueue(identity_token, network_fingerprint, predicted_date)
        except CacheStoreError as e:
            logger.warning(f"Queue unavailable at critical capacity: {e}")
            return Transient(
                message="We're at peak traffic and the waiting line is temporarily unavailable.",
                retry_after_seconds=30,
                hint="Nothing was saved. Try again in 30 seconds.",
            )
        return Queued(
            position=position,
            identity_token=identity_token,
            predicted_date=predicted_date,
            queued_at=item.queued_at,
        )

    async def _write_new(
        self,
        identity_token: str,
        network_fingerprint: str,
        predicted_date: date,
        token_is_new: bool = False,
    ) -> SubmitOutcome:
        """Insert a row, classifying uniqueness violations into outcomes."""
        weight = compute_weight(predicted_date, self.reference_date)
        regenerated = False

        while True:
            async def insert() -> Submission:
                submission = Submission(
                    predicted_date=predicted_date,
                    identity_token=identity_token,
                    network_fingerprint=network_fingerprint,
                    weight=weight,
                )
                self.db.add(submission)
                await self.db.commit()
                await self.db.refresh(submission)
                return submission

            try:
                submission = await self._retrying(insert, "submission insert")
            except TransientStoreError as e:
                await self.db.rollback()
                return Transient(retry_after_seconds=e.retry_after_seconds)
            except IntegrityError as e:
                await self.db.rollback()
                column = violated_column(e)

                if column == "network_fingerprint":
                    logger.warning(
                        f"Network fingerprint already used, rejecting identity {short_id(identity_token)}"
                    )
                    return network_in_use_conflict()

                if column == "identity_token":
                    if token_is_new and not regenerated:
                        logger.warning(f"Fresh identity token {short_id(identity_token)} collided, regenerating")
                        identity_token = new_identity_token()
                        regenerated = True
                        continue
                    try:
                        existing = await self.find_by_identity(identity_token)
                    except TransientStoreError as te:
                        return Transient(retry_after_seconds=te.retry_after_seconds)
                    if existing is not None:
                        return self._existing_outcome(existing, predicted_date)
                    return Rejected(
                        reason=RejectReason.IDENTITY_UNAVAILABLE,
                        message="We couldn't register your identity.",
                        hint="Clear the site cookie and submit again.",
                    )

                logger.error(f"Unexpected integrity error on insert: {e.orig}")
                raise InvariantViolation(f"Submission insert violated an unexpected constraint: {e.orig}") from e

            logger.info(
                f"Accepted submission {submission.id} for {predicted_date.isoformat()} "
                f"(identity {short_id(identity_token)}, weight {weight})"
            )
            return Accepted(
                submission_id=submission.id,
                identity_token=identity_token,
                predicted_date=predicted_date,
                weight=weight,
                token_regenerated=regenerated,
            )

    async def update(
        self,
        identity_token: str,
        network_fingerprint: str,
        predicted_date: date,
    ) -> UpdateOutcome:
        """
        Change an existing prediction, found by identity token.

        The identity token wins over network origin: the stored fingerprint
        is overwritten, unless another submitter already holds the new one,
        in which case the date still changes and the old fingerprint stays.

        Returns:
            Updated, Unchanged, NotFound, Rejected or Transient
        """
        snapshot = await self.capacity.snapshot()
        if snapshot.level == CapacityLevel.EXCEEDED:
            logger.warning(f"Update rejected at capacity (identity {short_id(identity_token)})")
            return capacity_rejection(snapshot)

        weight = compute_weight(predicted_date, self.reference_date)

        async def apply(overwrite_fingerprint: bool):
            row = await self.db.execute(
                select(Submission).where(Submission.identity_token == identity_token)
            )
            submission = row.scalar_one_or_none()
            if submission is None:
                return None
            previous = submission.predicted_date
            if previous == predicted_date:
                return previous, False, False

            changed = overwrite_fingerprint and submission.network_fingerprint != network_fingerprint
            submission.predicted_date = predicted_date
            submission.weight = weight
            if changed:
                submission.network_fingerprint = network_fingerprint
            await self.db.commit()
            return previous, changed, True

        try:
            try:
                result = await self._retrying(lambda: apply(True), "submission update")
            except IntegrityError as e:
                await self.db.rollback()
                if violated_column(e) != "network_fingerprint":
                    logger.error(f"Unexpected integrity error on update: {e.orig}")
                    raise InvariantViolation(
                        f"Submission update violated an unexpected constraint: {e.orig}"
                    ) from e
                logger.warning(
                    f"New fingerprint for identity {short_id(identity_token)} belongs to another "
                    f"submitter, keeping the stored one"
                )
                result = await self._retrying(lambda: apply(False), "submission update")
        except TransientStoreError as e:
            await self.db.rollback()
            return Transient(retry_after_seconds=e.retry_after_seconds)

        if result is None:
            return NotFound()

        previous, fingerprint_changed, written = result
        if not written:
            return Unchanged(predicted_date=predicted_date)

        await self.statistics.invalidate()
        logger.info(
            f"Updated identity {short_id(identity_token)} from {previous.isoformat()} "
            f"to {predicted_date.isoformat()}"
        )
        return Updated(
            predicted_date=predicted_date,
            previous_date=previous,
            weight=weight,
            fingerprint_changed=fingerprint_changed,
        )

    async def drain_queue(self, batch_size: Optional[int] = None) -> Dict[str, int]:
        """
        Write queued submissions oldest first.

        Skipped entirely while capacity is critical or exceeded. Entries past
        retention, duplicates and conflicts are discarded. A transient store
        failure stops the sweep and leaves the entry for the next one.

        Args:
            batch_size: Maximum entries to take (defaults to QUEUE_DRAIN_BATCH_SIZE)

        Returns:
            Dictionary with counts per result
        """
        counts = {
            "processed": 0,
            "accepted": 0,
            "duplicates": 0,
            "conflicts": 0,
            "expired": 0,
            "remaining": 0,
            "skipped": 0,
        }
        if self.queue is None:
            return counts

        level = await self.capacity.current_level()
        if level in (CapacityLevel.CRITICAL, CapacityLevel.EXCEEDED):
            logger.info(f"Queue drain skipped at {level.value} capacity")
            counts["skipped"] = 1
            return counts

        batch_size = settings.queue_drain_batch_size if batch_size is None else batch_size
        try:
            entries = await self.queue.pending(batch_size)
        except CacheStoreError as e:
            logger.warning(f"Queue unavailable, nothing drained: {e}")
            return counts

        processed_keys = 0
        try:
            for key, item in entries:
                if item is None:
                    await self.queue.remove(key)
                    counts["conflicts"] += 1
                    processed_keys += 1
                    continue

                if self.queue.is_expired(item):
                    logger.warning(
                        f"Discarding queued submission older than retention (identity {short_id(item.identity_token)})"
                    )
                    await self.queue.remove(key)
                    counts["expired"] += 1
                    processed_keys += 1
                    continue

                try:
                    existing = await self.find_by_identity(item.identity_token)
                except TransientStoreError:
                    counts["remaining"] = len(entries) - processed_keys
                    break

                if existing is not None:
                    outcome = self._existing_outcome(existing, item.predicted_date)
                else:
                    outcome = await self._write_new(
                        item.identity_token, item.network_fingerprint, item.predicted_date
                    )

                if isinstance(outcome, Transient):
                    logger.warning("Store busy, stopping queue drain")
                    counts["remaining"] = len(entries) - processed_keys
                    break

                counts["processed"] += 1
                if isinstance(outcome, Accepted) and outcome.duplicate:
                    counts["duplicates"] += 1
                elif isinstance(outcome, Accepted):
                    counts["accepted"] += 1
                else:
                    logger.warning(
                        f"Discarding queued submission for identity {short_id(item.identity_token)}: "
                        f"{getattr(outcome, 'message', outcome)}"
                    )
                    counts["conflicts"] += 1
                await self.queue.remove(key)
                processed_keys += 1
        except CacheStoreError as e:
            # A written entry left in the queue resolves as a duplicate next sweep
            logger.warning(f"Queue store failed mid-drain, stopping sweep: {e}")
            counts["remaining"] = len(entries) - processed_keys
        finally:
            if counts["accepted"]:
                await self.statistics.invalidate()

        logger.info(
            f"Queue drain: {counts['accepted']} accepted, {counts['duplicates']} duplicates, "
            f"{counts['conflicts']} conflicts, {counts['expired']} expired"
        )
        return counts


async def drain_once(
    session_factory: async_sessionmaker,
    cache: CacheStore,
    batch_size: Optional[int] = None,
) -> Dict[str, int]:
    """Run a single drain sweep in its own session."""
    async with session_factory() as session:
        capacity = CapacityController(cache)
        service = SubmissionService(
            session,
            capacity,
            StatisticsService(session, cache, capacity),
            SubmissionQueue(cache),
        )
        return await service.drain_queue(batch_size)


async def drain_periodically(
    session_factory: async_sessionmaker,
    cache: CacheStore,
    interval: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Sweep the queue every ``interval`` seconds until cancelled.

    Runs inside the API process when the cache store is process-local,
    since no other process can see those queue entries.

    Args:
        session_factory: Session factory for each sweep
        cache: Cache store holding the queue
        interval: Seconds between sweeps
        sleep: Sleep function (injectable for tests)
    """
    while True:
        try:
            counts = await drain_once(session_factory, cache)
            if counts["accepted"] or counts["remaining"]:
                logger.info(f"Background drain: {counts['accepted']} accepted, {counts['remaining']} remaining")
        except Exception as e:
            logger.error(f"Background queue drain failed: {e}", exc_info=True)
        await sleep(interval)
