"""
📅 DATECAST · One date, many guesses. The median decides.

Capacity routes.
"""

from fastapi import APIRouter, Depends

from datecast.api.deps import get_capacity
from datecast.schemas import CapacityResponse
from datecast.services.capacity import CapacityController

router = APIRouter(prefix="/api", tags=["capacity"])


@router.get("/capacity", response_model=CapacityResponse)
async def get_capacity_state(
    capacity: CapacityController = Depends(get_capacity),
):
    """
    Get the current capacity level and feature flags.

    Returns:
        Capacity state
    """
    snapshot = await capacity.snapshot()
    return CapacityResponse(
        level=snapshot.level.value,
        requests_today=snapshot.requests_today,
        daily_limit=snapshot.daily_limit,
        reset_at=snapshot.reset_at,
        features=snapshot.features.to_dict(),
        message=snapshot.message,
    )
