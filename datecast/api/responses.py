"""
📅 DATECAST · One date, many guesses. The median decides.

Outcome-to-HTTP mapping shared by the submission routes.
"""

from typing import Optional

from fastapi import status
from fastapi.responses import ORJSONResponse

from datecast.config import settings
from datecast.schemas import ErrorDetail, ErrorResponse
from datecast.services.outcomes import Conflict, NotFound, Rejected, RejectReason, Transient


def error_response(
    status_code: int,
    code: str,
    message: str,
    hint: Optional[str] = None,
    **extra,
) -> ORJSONResponse:
    """Build the ``{success: false, error: {...}}`` envelope."""
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, hint=hint, **extra))
    response = ORJSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )
    retry_after = extra.get("retry_after_seconds")
    if retry_after:
        response.headers["Retry-After"] = str(retry_after)
    return response


def outcome_error(outcome) -> ORJSONResponse:
    """Map a non-success outcome to its HTTP error."""
    if isinstance(outcome, Conflict):
        return error_response(
            status.HTTP_409_CONFLICT, outcome.reason.value, outcome.message, outcome.hint
        )
    if isinstance(outcome, NotFound):
        return error_response(status.HTTP_404_NOT_FOUND, "not_found", outcome.message, outcome.hint)
    if isinstance(outcome, Rejected):
        status_code = (
            status.HTTP_429_TOO_MANY_REQUESTS
            if outcome.reason == RejectReason.CAPACITY_EXCEEDED
            else status.HTTP_409_CONFLICT
        )
        return error_response(
            status_code,
            outcome.reason.value,
            outcome.message,
            outcome.hint,
            level=outcome.level,
            reset_at=outcome.reset_at,
            retry_after_seconds=outcome.retry_after_seconds,
        )
    if isinstance(outcome, Transient):
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "temporarily_unavailable",
            outcome.message,
            outcome.hint,
            retry_after_seconds=outcome.retry_after_seconds,
        )
    raise TypeError(f"No HTTP mapping for outcome {type(outcome).__name__}")


def set_identity_cookie(response: ORJSONResponse, identity_token: str) -> None:
    response.set_cookie(
        key=settings.identity_cookie_name,
        value=identity_token,
        max_age=settings.identity_cookie_max_age,
        httponly=True,
        secure=True,
        samesite="strict",
        path="/",
    )
