import os

# Must be set before datecast.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_URL"] = ""
os.environ["PROOF_SECRET"] = ""

from datetime import date, datetime, timedelta, timezone  # noqa: E402
from typing import Iterable, List  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from datecast.cache import InMemoryCacheStore  # noqa: E402
from datecast.db import Base, build_session_factory  # noqa: E402
from datecast.models import Submission  # noqa: E402
from datecast.services.capacity import REQUEST_COUNT_PREFIX, CapacityController  # noqa: E402
from datecast.services.queue import SubmissionQueue  # noqa: E402
from datecast.services.statistics import StatisticsService  # noqa: E402
from datecast.services.submissions import SubmissionService  # noqa: E402

REFERENCE_DATE = date(2026, 11, 19)
DAILY_LIMIT = 100_000


class FakeClock:
    """Controllable wall clock plus a matching monotonic reading."""

    def __init__(self, start: datetime):
        self.now = start
        self._origin = start

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return (self.now - self._origin).total_seconds()

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cache(clock):
    return InMemoryCacheStore(clock=clock.monotonic)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def capacity(cache, clock):
    return CapacityController(cache, daily_limit=DAILY_LIMIT, clock=clock)


@pytest.fixture
def statistics(db, cache, capacity):
    return StatisticsService(db, cache, capacity, min_submissions=50, retry_sleep=no_sleep)


@pytest.fixture
def queue(cache, clock):
    return SubmissionQueue(cache, retention_seconds=24 * 60 * 60, clock=clock)


@pytest.fixture
def service(db, capacity, statistics, queue):
    return SubmissionService(
        db,
        capacity,
        statistics,
        queue,
        reference_date=REFERENCE_DATE,
        retry_sleep=no_sleep,
    )


async def set_requests_today(cache, now: datetime, count: int) -> None:
    await cache.set(f"{REQUEST_COUNT_PREFIX}{now.date().isoformat()}", str(count))


async def seed_submissions(db, dates: Iterable[date], weight: float = 1.0) -> List[Submission]:
    """Insert rows directly, bypassing the submission service."""
    rows = []
    for predicted in dates:
        rows.append(
            Submission(
                predicted_date=predicted,
                identity_token=str(uuid4()),
                network_fingerprint=uuid4().hex,
                weight=weight,
            )
        )
    db.add_all(rows)
    await db.commit()
    return rows
