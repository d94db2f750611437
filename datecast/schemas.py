"""
📅 DATECAST · One date, many guesses. The median decides.

Pydantic models for request/response validation.
"""

from datetime import date, datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

# Calendar sanity bounds for a submitted date
MIN_PREDICTED_DATE = date(2000, 1, 1)
MAX_PREDICTED_DATE = date(2125, 12, 31)


class PredictionRequest(BaseModel):
    """Submit or update request."""

    predicted_date: date
    proof_token: str = Field("", max_length=2048)

    @field_validator("predicted_date")
    @classmethod
    def validate_predicted_date(cls, v: date) -> date:
        """Reject dates outside the accepted calendar range."""
        if not MIN_PREDICTED_DATE <= v <= MAX_PREDICTED_DATE:
            raise ValueError(
                f"predicted_date must be between {MIN_PREDICTED_DATE.isoformat()} "
                f"and {MAX_PREDICTED_DATE.isoformat()}"
            )
        return v


class ComparisonSchema(BaseModel):
    """Submitted date relative to the current median."""

    median: date
    delta_days: int
    comparison: str


class SubmissionResponse(BaseModel):
    """Accepted, updated or unchanged prediction."""

    success: bool = True
    status: str
    message: str
    predicted_date: date
    previous_date: Optional[date] = None
    weight: Optional[float] = None
    submission_id: Optional[int] = None
    comparison: Optional[ComparisonSchema] = None


class QueuedResponse(BaseModel):
    """Submission deferred while capacity is critical."""

    success: bool = True
    status: str = "queued"
    message: str
    position: int
    predicted_date: date
    queued_at: datetime


class ErrorDetail(BaseModel):
    """Machine code plus human-actionable message."""

    code: str
    message: str
    hint: Optional[str] = None
    level: Optional[str] = None
    reset_at: Optional[datetime] = None
    retry_after_seconds: Optional[int] = None


class ErrorResponse(BaseModel):
    """Error envelope."""

    success: bool = False
    error: ErrorDetail


class StatisticsResponse(BaseModel):
    """Aggregate statistics response."""

    median: Optional[date] = None
    min: Optional[date] = None
    max: Optional[date] = None
    count: int
    computed_at: datetime
    insufficient_data: bool = False
    cache_hit: bool = False


class DistributionPoint(BaseModel):
    """Submissions for one date."""

    predicted_date: date
    count: int


class DistributionResponse(BaseModel):
    """Per-date submission counts."""

    points: List[DistributionPoint]
    total: int
    computed_at: datetime
    insufficient_data: bool = False
    cache_hit: bool = False


class StatusResponse(BaseModel):
    """Community status response."""

    status: str
    label: str
    reference_date: date
    median: Optional[date] = None
    days_difference: Optional[int] = None


class CapacityResponse(BaseModel):
    """Capacity state response."""

    level: str
    requests_today: int
    daily_limit: int
    reset_at: datetime
    features: Dict[str, bool]
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "OK"
