"""
📅 DATECAST · One date, many guesses. The median decides.

Async engine and request-scoped sessions for the submissions store.
"""

from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from datecast.config import settings

Base = declarative_base()


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async engine for the submissions store.

    PostgreSQL connections are health-checked on checkout.

    Args:
        url: Database URL (defaults to DATABASE_URL)

    Returns:
        AsyncEngine
    """
    url = url or settings.database_url
    options = {"echo": False}
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Rows handed back in outcomes are read after commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency for FastAPI to get a database session; rolls back anything left uncommitted."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create the schema directly; deployments use the Alembic migrations instead."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
