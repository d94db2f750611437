"""
📅 DATECAST · One date, many guesses. The median decides.

Utility functions: time helpers and log-safe identifiers.
"""

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def today_utc(now: Optional[datetime] = None) -> date:
    """Get the current UTC calendar day."""
    return (now or now_utc()).date()


def next_midnight_utc(now: Optional[datetime] = None) -> datetime:
    """
    Get the next UTC day boundary.

    Args:
        now: Reference time (defaults to now)

    Returns:
        Midnight UTC of the following day
    """
    now = now or now_utc()
    tomorrow = now.date() + timedelta(days=1)
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=timezone.utc)


def seconds_until_midnight(now: Optional[datetime] = None) -> int:
    """Seconds remaining until the next UTC day boundary (at least 1)."""
    now = now or now_utc()
    return max(1, int((next_midnight_utc(now) - now).total_seconds()))


def hours_until_midnight(now: Optional[datetime] = None) -> int:
    """Hours remaining until the next UTC day boundary, rounded up."""
    return math.ceil(seconds_until_midnight(now) / 3600)


def short_id(value: Optional[str]) -> str:
    """First 8 characters of an opaque identifier, for logs."""
    return (value or "")[:8]


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Process-wide logging setup for entry points."""
    from datecast.config import settings

    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
