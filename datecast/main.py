"""
DATECAST - Crowd-sourced date estimation. One date, many guesses. The median decides.

FastAPI application factory and routers.
"""

import asyncio
import contextlib
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from datecast import __version__
from datecast.api.responses import error_response, outcome_error
from datecast.api.routes_capacity import router as capacity_router
from datecast.api.routes_health import router as health_router
from datecast.api.routes_public import router as public_router
from datecast.api.routes_submit import router as submit_router
from datecast.cache import get_cache
from datecast.config import settings
from datecast.db import AsyncSessionLocal
from datecast.services.aggregation import InvariantViolation
from datecast.services.capacity import CapacityController
from datecast.services.outcomes import Transient
from datecast.services.retry import TransientStoreError
from datecast.services.submissions import drain_periodically
from datecast.utils import configure_logging

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """Drain the queue in-process when no other process can see it."""
    cache = app.dependency_overrides.get(get_cache, get_cache)()
    drain_task = None
    if not cache.shared and settings.queue_drain_interval > 0:
        logger.info(f"Process-local cache store, draining the queue every {settings.queue_drain_interval:.0f}s")
        drain_task = asyncio.create_task(
            drain_periodically(AsyncSessionLocal, cache, settings.queue_drain_interval)
        )
    app.state.drain_task = drain_task

    yield

    if drain_task is not None:
        drain_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await drain_task


def create_app() -> FastAPI:
    """
    Create FastAPI application.

    Returns:
        FastAPI app instance
    """
    configure_logging()

    app = FastAPI(
        title="DATECAST",
        description="Crowd-sourced date estimation. Submitters predict a date, the weighted median becomes the community estimate.",
        version=__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def count_requests(request: Request, call_next):
        """Count every API request against the daily capacity limit."""
        if request.url.path.startswith("/api"):
            provider = request.app.dependency_overrides.get(get_cache, get_cache)
            await CapacityController(provider()).record_request()
        return await call_next(request)

    @app.exception_handler(InvariantViolation)
    async def invariant_violation_handler(request: Request, exc: InvariantViolation):
        logger.error(f"Invariant violation on {request.method} {request.url.path}: {exc}")
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal_error",
            "Something went wrong on our side.",
            "Try again in a moment.",
        )

    @app.exception_handler(TransientStoreError)
    async def transient_store_handler(request: Request, exc: TransientStoreError):
        logger.warning(f"Store busy on {request.method} {request.url.path}: {exc}")
        return outcome_error(Transient(retry_after_seconds=exc.retry_after_seconds))

    # Include routers
    app.include_router(submit_router)
    app.include_router(public_router)
    app.include_router(capacity_router)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "DATECAST",
            "version": __version__,
            "description": "One date, many guesses. The median decides.",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("datecast.main:app", host=settings.host, port=settings.port)
