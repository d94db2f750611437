"""
📅 DATECAST · One date, many guesses. The median decides.

Request-scoped service wiring.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from datecast.cache import CacheStore, get_cache
from datecast.db import get_db
from datecast.services.capacity import CapacityController
from datecast.services.queue import SubmissionQueue
from datecast.services.statistics import StatisticsService
from datecast.services.submissions import SubmissionService


def get_capacity(cache: CacheStore = Depends(get_cache)) -> CapacityController:
    return CapacityController(cache)


def get_statistics_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheStore = Depends(get_cache),
    capacity: CapacityController = Depends(get_capacity),
) -> StatisticsService:
    return StatisticsService(db, cache, capacity)


def get_submission_queue(cache: CacheStore = Depends(get_cache)) -> SubmissionQueue:
    return SubmissionQueue(cache)


def get_submission_service(
    db: AsyncSession = Depends(get_db),
    capacity: CapacityController = Depends(get_capacity),
    statistics: StatisticsService = Depends(get_statistics_service),
    queue: SubmissionQueue = Depends(get_submission_queue),
) -> SubmissionService:
    return SubmissionService(db, capacity, statistics, queue)
