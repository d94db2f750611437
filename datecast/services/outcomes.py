"""
📅 DATECAST · One date, many guesses. The median decides.

Closed outcome types for submit, update and queue drain.

Every variant carries a human-readable ``message``; variants a caller can
recover from also carry a ``hint``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union


class ConflictReason(str, Enum):
    UPDATE_REQUIRED = "update_required"
    NETWORK_IN_USE = "network_in_use"


class RejectReason(str, Enum):
    CAPACITY_EXCEEDED = "capacity_exceeded"
    IDENTITY_UNAVAILABLE = "identity_unavailable"


@dataclass(frozen=True)
class Accepted:
    submission_id: int
    identity_token: str
    predicted_date: date
    weight: float
    duplicate: bool = False
    token_regenerated: bool = False
    message: str = "Your prediction has been recorded!"


@dataclass(frozen=True)
class Queued:
    position: int
    identity_token: str
    predicted_date: date
    queued_at: datetime
    message: str = "We're experiencing high traffic. Your submission will be processed shortly."


@dataclass(frozen=True)
class Conflict:
    reason: ConflictReason
    message: str
    hint: str


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    message: str
    hint: Optional[str] = None
    level: Optional[str] = None
    reset_at: Optional[datetime] = None
    retry_after_seconds: Optional[int] = None


@dataclass(frozen=True)
class Transient:
    message: str = "The service is busy right now."
    retry_after_seconds: int = 5
    hint: str = field(default="")

    def __post_init__(self):
        if not self.hint:
            object.__setattr__(self, "hint", f"Try again in {self.retry_after_seconds} seconds.")


@dataclass(frozen=True)
class Updated:
    predicted_date: date
    previous_date: date
    weight: float
    fingerprint_changed: bool = False
    message: str = "Your prediction has been updated!"


@dataclass(frozen=True)
class Unchanged:
    predicted_date: date
    message: str = "Your prediction remains unchanged."


@dataclass(frozen=True)
class NotFound:
    message: str = "No prediction found for you."
    hint: str = "Submit a prediction first, or restore your identity token."


SubmitOutcome = Union[Accepted, Queued, Conflict, Rejected, Transient]
UpdateOutcome = Union[Updated, Unchanged, NotFound, Rejected, Transient]


def update_required_conflict() -> Conflict:
    return Conflict(
        reason=ConflictReason.UPDATE_REQUIRED,
        message="You already have a prediction with a different date.",
        hint="Use the update option to change your prediction.",
    )


def network_in_use_conflict() -> Conflict:
    return Conflict(
        reason=ConflictReason.NETWORK_IN_USE,
        message="A prediction has already been submitted from your network.",
        hint="Restore your identity token (the browser you first used) or use the update option.",
    )
