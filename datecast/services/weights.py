"""
📅 DATECAST · One date, many guesses. The median decides.

Submission weighting by date reasonableness.
"""

import logging
from datetime import date
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from datecast.config import settings
from datecast.models import Submission
from datecast.utils import today_utc

logger = logging.getLogger(__name__)


WEIGHT_FULL = 1.0
WEIGHT_EARLY = 0.8
WEIGHT_FLOOR = 0.1


def compute_weight(
    predicted_date: date,
    reference_date: Optional[date] = None,
    *,
    today: Optional[date] = None,
    window_days_before: Optional[int] = None,
    window_days_after: Optional[int] = None,
    decay_days: Optional[int] = None,
) -> float:
    """
    Compute the influence weight of a predicted date.

    Dates inside [reference - before, reference + after] get full weight.
    Future dates ahead of the window get 0.8. Dates past the window decay
    linearly to the 0.1 floor over ``decay_days``. Dates already in the past
    get the floor.

    Arithmetic runs on ordinals so extreme dates (date.min, date.max) never
    overflow.

    Args:
        predicted_date: Submitted date
        reference_date: Announced date the window is centred on (defaults to settings)
        today: Current day (defaults to UTC today)
        window_days_before: Days of full weight before the reference date
        window_days_after: Days of full weight after the reference date
        decay_days: Days past the window over which weight falls to the floor

    Returns:
        Weight in [0.1, 1.0]
    """
    reference_date = reference_date or settings.reference_date
    today = today or today_utc()
    before = settings.window_days_before if window_days_before is None else window_days_before
    after = settings.window_days_after if window_days_after is None else window_days_after
    decay = settings.decay_days if decay_days is None else decay_days

    target = predicted_date.toordinal()
    if target < today.toordinal():
        return WEIGHT_FLOOR

    window_start = reference_date.toordinal() - max(0, before)
    window_end = reference_date.toordinal() + max(0, after)

    if window_start <= target <= window_end:
        return WEIGHT_FULL
    if target < window_start:
        return WEIGHT_EARLY

    if decay <= 0:
        return WEIGHT_FLOOR

    # Linear decay past the window, floored
    distance = target - window_end
    weight = WEIGHT_FULL - (WEIGHT_FULL - WEIGHT_FLOOR) * (distance / decay)
    return round(max(WEIGHT_FLOOR, weight), 6)


async def reweigh_submissions(
    db: AsyncSession,
    reference_date: Optional[date] = None,
    batch_size: int = 1000,
) -> Dict[str, int]:
    """
    Recompute every stored weight against the reference date.

    Run after REFERENCE_DATE is revised so stored weights match the
    weight function again.

    Args:
        db: Database session
        reference_date: Date to weigh against (defaults to settings)
        batch_size: Rows loaded per round trip

    Returns:
        Dictionary with statistics about the pass
    """
    reference_date = reference_date or settings.reference_date
    today = today_utc()
    stats = {"submissions_checked": 0, "weights_changed": 0}

    last_id = 0
    while True:
        result = await db.execute(
            select(Submission)
            .where(Submission.id > last_id)
            .order_by(Submission.id)
            .limit(batch_size)
        )
        batch = result.scalars().all()
        if not batch:
            break

        for submission in batch:
            weight = compute_weight(submission.predicted_date, reference_date, today=today)
            if abs(weight - submission.weight) > 1e-9:
                submission.weight = weight
                stats["weights_changed"] += 1
            stats["submissions_checked"] += 1
        last_id = batch[-1].id
        await db.commit()

    logger.info(
        f"Reweighed {stats['submissions_checked']} submissions against {reference_date.isoformat()}, "
        f"{stats['weights_changed']} changed"
    )
    return stats
