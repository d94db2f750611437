"""
📅 DATECAST · One date, many guesses. The median decides.

Community status and per-submitter comparison against the median.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from datecast.config import settings

ON_TRACK_DAYS = 60
DELAY_LIKELY_DAYS = 180


class CommunityStatus(str, Enum):
    GATHERING_DATA = "gathering_data"
    EARLY = "early"
    ON_TRACK = "on_track"
    DELAY_LIKELY = "delay_likely"
    MAJOR_DELAY = "major_delay"


STATUS_LABELS = {
    CommunityStatus.GATHERING_DATA: "Gathering Data",
    CommunityStatus.EARLY: "Earlier Than Expected",
    CommunityStatus.ON_TRACK: "On Track",
    CommunityStatus.DELAY_LIKELY: "Delay Likely",
    CommunityStatus.MAJOR_DELAY: "Major Delay Expected",
}


class Comparison(str, Enum):
    OPTIMISTIC = "optimistic"
    ALIGNED = "aligned"
    PESSIMISTIC = "pessimistic"


@dataclass(frozen=True)
class StatusReport:
    status: CommunityStatus
    reference_date: date
    median: Optional[date] = None
    days_difference: Optional[int] = None

    @property
    def label(self) -> str:
        return STATUS_LABELS[self.status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "label": self.label,
            "reference_date": self.reference_date.isoformat(),
            "median": self.median.isoformat() if self.median else None,
            "days_difference": self.days_difference,
        }


def compute_status(
    median: Optional[date],
    reference_date: Optional[date] = None,
    insufficient_data: bool = False,
) -> StatusReport:
    """
    Classify the community median against the reference date.

    Args:
        median: Weighted median, or None when there is none yet
        reference_date: Date to compare against (defaults to REFERENCE_DATE)
        insufficient_data: Whether the median is below the reporting threshold

    Returns:
        StatusReport
    """
    reference_date = reference_date or settings.reference_date
    if median is None or insufficient_data:
        return StatusReport(status=CommunityStatus.GATHERING_DATA, reference_date=reference_date)

    diff = (median - reference_date).days
    if diff < -ON_TRACK_DAYS:
        status = CommunityStatus.EARLY
    elif diff <= ON_TRACK_DAYS:
        status = CommunityStatus.ON_TRACK
    elif diff <= DELAY_LIKELY_DAYS:
        status = CommunityStatus.DELAY_LIKELY
    else:
        status = CommunityStatus.MAJOR_DELAY

    return StatusReport(
        status=status,
        reference_date=reference_date,
        median=median,
        days_difference=diff,
    )


def compare_to_median(predicted: date, median: Optional[date]) -> Optional[Dict[str, Any]]:
    """Signed distance from the median; later than the median is pessimistic."""
    if median is None:
        return None
    delta = (predicted - median).days
    if delta == 0:
        comparison = Comparison.ALIGNED
    elif delta > 0:
        comparison = Comparison.PESSIMISTIC
    else:
        comparison = Comparison.OPTIMISTIC
    return {
        "median": median.isoformat(),
        "delta_days": delta,
        "comparison": comparison.value,
    }
