"""
📅 DATECAST · One date, many guesses. The median decides.

Public read routes: statistics, distribution, community status.
"""

from fastapi import APIRouter, Depends, Response, status

from datecast.api.deps import get_capacity, get_statistics_service
from datecast.api.responses import error_response
from datecast.schemas import (
    DistributionPoint,
    DistributionResponse,
    StatisticsResponse,
    StatusResponse,
)
from datecast.services.capacity import CapacityController, stats_cache_ttl
from datecast.services.statistics import StatisticsService
from datecast.services.status import compute_status

router = APIRouter(prefix="/api", tags=["public"])


def _cache_headers(response: Response, cache_hit: bool, level_value: str, ttl: int) -> None:
    response.headers["X-Cache"] = "HIT" if cache_hit else "MISS"
    response.headers["X-Capacity-Level"] = level_value
    response.headers["Cache-Control"] = f"public, max-age={ttl}"


@router.get("/stats", response_model=StatisticsResponse)
async def get_stats(
    response: Response,
    statistics: StatisticsService = Depends(get_statistics_service),
    capacity: CapacityController = Depends(get_capacity),
):
    """
    Get the community median with min, max and count.

    Served at every capacity level; the cache TTL grows with load.
    """
    stats, cache_hit = await statistics.get_statistics()
    level = await capacity.current_level()
    _cache_headers(response, cache_hit, level.value, stats_cache_ttl(level))

    return StatisticsResponse(
        median=stats.median,
        min=stats.min,
        max=stats.max,
        count=stats.count,
        computed_at=stats.computed_at,
        insufficient_data=stats.insufficient_data,
        cache_hit=cache_hit,
    )


@router.get("/predictions", response_model=DistributionResponse)
async def get_predictions(
    response: Response,
    statistics: StatisticsService = Depends(get_statistics_service),
    capacity: CapacityController = Depends(get_capacity),
):
    """
    Get per-date submission counts for the distribution chart.

    Disabled from ``high`` capacity upward.
    """
    snapshot = await capacity.snapshot()
    if not snapshot.features.optional_feature_enabled:
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "feature_disabled",
            snapshot.message or "This feature is temporarily unavailable.",
            "The chart comes back when traffic calms down.",
            level=snapshot.level.value,
            reset_at=snapshot.reset_at,
        )

    distribution, cache_hit = await statistics.get_distribution()
    _cache_headers(response, cache_hit, snapshot.level.value, stats_cache_ttl(snapshot.level))

    return DistributionResponse(
        points=[DistributionPoint(predicted_date=d, count=c) for d, c in distribution.points],
        total=distribution.total,
        computed_at=distribution.computed_at,
        insufficient_data=distribution.insufficient_data,
        cache_hit=cache_hit,
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(
    statistics: StatisticsService = Depends(get_statistics_service),
):
    """Get the community status badge derived from the median."""
    stats, _ = await statistics.get_statistics()
    report = compute_status(stats.median, insufficient_data=stats.insufficient_data)
    return StatusResponse(**report.to_dict())
