"""
📅 DATECAST · One date, many guesses. The median decides.

Submission routes.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import ORJSONResponse

from datecast.api.deps import get_statistics_service, get_submission_service
from datecast.api.responses import error_response, outcome_error, set_identity_cookie
from datecast.config import settings
from datecast.schemas import PredictionRequest, QueuedResponse, SubmissionResponse
from datecast.security import (
    client_address,
    fingerprint_address,
    is_valid_identity_token,
    new_identity_token,
    verify_proof_token,
)
from datecast.services.outcomes import Accepted, Queued, Unchanged, Updated
from datecast.services.retry import TransientStoreError
from datecast.services.statistics import StatisticsService
from datecast.services.status import compare_to_median
from datecast.services.submissions import SubmissionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["submissions"])


async def _comparison(statistics: StatisticsService, predicted: date) -> Optional[dict]:
    try:
        stats, _ = await statistics.get_statistics()
    except TransientStoreError as e:
        # Row is already committed, answer without the comparison
        logger.warning(f"Skipping median comparison: {e}")
        return None
    if stats.insufficient_data:
        return None
    return compare_to_median(predicted, stats.median)


async def _verify(payload: PredictionRequest, address: str) -> Optional[ORJSONResponse]:
    if await verify_proof_token(payload.proof_token, address):
        return None
    return error_response(
        status.HTTP_403_FORBIDDEN,
        "verification_failed",
        "We couldn't verify that you're human.",
        "Refresh the page and try again.",
    )


@router.post(
    "/predict",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={202: {"model": QueuedResponse}},
)
async def submit_prediction(
    payload: PredictionRequest,
    request: Request,
    service: SubmissionService = Depends(get_submission_service),
    statistics: StatisticsService = Depends(get_statistics_service),
):
    """
    Submit a predicted date.

    Args:
        payload: Prediction request
        request: Incoming request (identity cookie, client address)
        service: Submission service
        statistics: Statistics service, for the comparison block

    Returns:
        201 on a new prediction, 200 on an identical resubmission,
        202 when queued, or an error envelope
    """
    address = client_address(request)
    failed = await _verify(payload, address)
    if failed is not None:
        return failed

    identity_token = request.cookies.get(settings.identity_cookie_name)
    token_is_new = not is_valid_identity_token(identity_token)
    if token_is_new:
        identity_token = new_identity_token()

    outcome = await service.submit(
        identity_token,
        fingerprint_address(address),
        payload.predicted_date,
        token_is_new=token_is_new,
    )

    if isinstance(outcome, Accepted):
        body = SubmissionResponse(
            status="duplicate" if outcome.duplicate else "accepted",
            message=outcome.message,
            predicted_date=outcome.predicted_date,
            weight=outcome.weight,
            submission_id=outcome.submission_id,
            comparison=await _comparison(statistics, outcome.predicted_date),
        )
        response = ORJSONResponse(
            status_code=status.HTTP_200_OK if outcome.duplicate else status.HTTP_201_CREATED,
            content=body.model_dump(mode="json"),
        )
        set_identity_cookie(response, outcome.identity_token)
        return response

    if isinstance(outcome, Queued):
        body = QueuedResponse(
            message=outcome.message,
            position=outcome.position,
            predicted_date=outcome.predicted_date,
            queued_at=outcome.queued_at,
        )
        response = ORJSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump(mode="json"))
        set_identity_cookie(response, outcome.identity_token)
        return response

    return outcome_error(outcome)


@router.put("/predict", response_model=SubmissionResponse)
async def update_prediction(
    payload: PredictionRequest,
    request: Request,
    service: SubmissionService = Depends(get_submission_service),
    statistics: StatisticsService = Depends(get_statistics_service),
):
    """
    Change the caller's prediction, found by identity cookie.

    Returns:
        200 with the previous date, 200 unchanged, or an error envelope
    """
    address = client_address(request)
    failed = await _verify(payload, address)
    if failed is not None:
        return failed

    identity_token = request.cookies.get(settings.identity_cookie_name)
    if not is_valid_identity_token(identity_token):
        return error_response(
            status.HTTP_404_NOT_FOUND,
            "not_found",
            "No prediction found for you.",
            "Submit a prediction first, or use the browser you submitted from.",
        )

    outcome = await service.update(identity_token, fingerprint_address(address), payload.predicted_date)

    if isinstance(outcome, (Updated, Unchanged)):
        body = SubmissionResponse(
            status="updated" if isinstance(outcome, Updated) else "unchanged",
            message=outcome.message,
            predicted_date=outcome.predicted_date,
            previous_date=outcome.previous_date if isinstance(outcome, Updated) else None,
            weight=outcome.weight if isinstance(outcome, Updated) else None,
            comparison=await _comparison(statistics, outcome.predicted_date),
        )
        response = ORJSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))
        set_identity_cookie(response, identity_token)
        return response

    return outcome_error(outcome)
