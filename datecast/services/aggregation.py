"""
📅 DATECAST · One date, many guesses. The median decides.

Weighted median, aggregate statistics and the per-date distribution.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from datecast.models import Submission
from datecast.utils import now_utc

logger = logging.getLogger(__name__)

# Total weight at or below this is treated as zero
ZERO_WEIGHT_EPSILON = 1e-12

SLOW_QUERY_MS = 100


class InvariantViolation(RuntimeError):
    """Aggregation received a state that valid data can never produce."""


@dataclass(frozen=True)
class AggregateStatistics:
    """Derived view over all current submissions."""

    median: Optional[date]
    min: Optional[date]
    max: Optional[date]
    count: int
    computed_at: datetime
    insufficient_data: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "median": self.median.isoformat() if self.median else None,
            "min": self.min.isoformat() if self.min else None,
            "max": self.max.isoformat() if self.max else None,
            "count": self.count,
            "computed_at": self.computed_at.isoformat(),
            "insufficient_data": self.insufficient_data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregateStatistics":
        return cls(
            median=_parse_date(data.get("median")),
            min=_parse_date(data.get("min")),
            max=_parse_date(data.get("max")),
            count=int(data["count"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
            insufficient_data=bool(data.get("insufficient_data", False)),
        )


@dataclass(frozen=True)
class Distribution:
    """Per-date submission counts, ascending by date."""

    points: List[Tuple[date, int]]
    total: int
    computed_at: datetime
    insufficient_data: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "points": [[d.isoformat(), c] for d, c in self.points],
            "total": self.total,
            "computed_at": self.computed_at.isoformat(),
            "insufficient_data": self.insufficient_data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Distribution":
        return cls(
            points=[(date.fromisoformat(d), int(c)) for d, c in data.get("points", [])],
            total=int(data["total"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
            insufficient_data=bool(data.get("insufficient_data", False)),
        )


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def simple_median(dates: Sequence[date]) -> Optional[date]:
    """
    Unweighted median; for an even count the lower middle value.

    Args:
        dates: Dates in any order

    Returns:
        Median date or None if empty
    """
    if not dates:
        return None
    ordered = sorted(dates)
    return ordered[(len(ordered) - 1) // 2]


def weighted_median(pairs: Sequence[Tuple[date, float]]) -> Optional[date]:
    """
    Weighted median of (date, weight) pairs.

    Sorts by date and returns the first date at which the cumulative weight
    reaches half of the total weight. The result is always one of the input
    dates. Falls back to the unweighted median when every weight is zero.

    Args:
        pairs: (date, weight) pairs in any order

    Returns:
        Median date, or None for an empty input

    Raises:
        InvariantViolation: If any weight is negative or not finite
    """
    if not pairs:
        return None
    if len(pairs) == 1:
        return pairs[0][0]

    ordinals = np.fromiter((d.toordinal() for d, _ in pairs), dtype=np.int64, count=len(pairs))
    weights = np.fromiter((w for _, w in pairs), dtype=np.float64, count=len(pairs))

    if not np.all(np.isfinite(weights)) or np.any(weights < 0):
        raise InvariantViolation("Weights must be finite and non-negative")

    order = np.argsort(ordinals, kind="stable")
    ordinals = ordinals[order]
    weights = weights[order]

    total = float(weights.sum())
    if total <= ZERO_WEIGHT_EPSILON:
        logger.warning(f"All {len(pairs)} weights are zero, using unweighted median")
        return simple_median([d for d, _ in pairs])

    cumulative = np.cumsum(weights)
    index = int(np.searchsorted(cumulative, total / 2.0, side="left"))
    # Float rounding in cumsum can push the threshold past the last element
    index = min(index, len(ordinals) - 1)
    return date.fromordinal(int(ordinals[index]))


async def compute_statistics(db: AsyncSession, min_count: int = 0) -> AggregateStatistics:
    """
    Compute aggregate statistics from the database.

    Runs one aggregation query for min/max/count and, when there is enough
    data, one ordered query feeding the weighted median.

    Args:
        db: Database session
        min_count: Minimum submissions before a median is reported

    Returns:
        AggregateStatistics (median is None when below ``min_count``)
    """
    started = time.monotonic()

    result = await db.execute(
        select(
            func.min(Submission.predicted_date).label("min_date"),
            func.max(Submission.predicted_date).label("max_date"),
            func.count(Submission.id).label("total_count"),
        )
    )
    row = result.one()
    count = int(row.total_count or 0)

    if count == 0:
        return AggregateStatistics(
            median=None,
            min=None,
            max=None,
            count=0,
            computed_at=now_utc(),
            insufficient_data=min_count > 0,
        )

    if count < min_count:
        logger.info(f"Statistics threshold not met ({count}/{min_count} submissions)")
        return AggregateStatistics(
            median=None,
            min=row.min_date,
            max=row.max_date,
            count=count,
            computed_at=now_utc(),
            insufficient_data=True,
        )

    rows = await db.execute(
        select(Submission.predicted_date, Submission.weight).order_by(Submission.predicted_date.asc())
    )
    pairs = [(r.predicted_date, float(r.weight)) for r in rows]
    median = weighted_median(pairs)

    elapsed_ms = (time.monotonic() - started) * 1000
    if elapsed_ms > SLOW_QUERY_MS:
        logger.warning(f"Statistics calculation slow: {elapsed_ms:.0f}ms for {count} submissions")

    return AggregateStatistics(
        median=median,
        min=row.min_date,
        max=row.max_date,
        count=count,
        computed_at=now_utc(),
    )


async def compute_distribution(db: AsyncSession, min_count: int = 0) -> Distribution:
    """
    Count submissions per predicted date.

    Only dates and counts are exposed; no identity, fingerprint or weight.

    Args:
        db: Database session
        min_count: Minimum submissions before any points are returned

    Returns:
        Distribution ordered by date (empty points below ``min_count``)
    """
    total = int((await db.execute(select(func.count(Submission.id)))).scalar_one() or 0)

    if total < min_count:
        return Distribution(points=[], total=total, computed_at=now_utc(), insufficient_data=True)

    rows = await db.execute(
        select(Submission.predicted_date, func.count(Submission.id).label("count"))
        .group_by(Submission.predicted_date)
        .order_by(Submission.predicted_date.asc())
    )
    points = [(r.predicted_date, int(r.count)) for r in rows]
    return Distribution(points=points, total=total, computed_at=now_utc())
