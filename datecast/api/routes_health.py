"""
📅 DATECAST · One date, many guesses. The median decides.

Health check routes.
"""

from fastapi import APIRouter
from datecast.schemas import HealthResponse

router = APIRouter(prefix="", tags=["health"])


@router.get("/healthz", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns:
        Health status
    """
    return HealthResponse(status="OK")
