"""
📅 DATECAST · One date, many guesses. The median decides.

Recompute stored weights after the reference date is revised.
"""

import asyncio
import argparse
from datetime import date

from dotenv import load_dotenv

load_dotenv()

from datecast.cache import build_cache_store  # noqa: E402
from datecast.config import settings  # noqa: E402
from datecast.db import build_engine, build_session_factory  # noqa: E402
from datecast.services.capacity import CapacityController  # noqa: E402
from datecast.services.statistics import StatisticsService  # noqa: E402
from datecast.services.weights import reweigh_submissions  # noqa: E402
from datecast.utils import configure_logging  # noqa: E402


async def main(reference_date: date) -> None:
    """Main entry point."""
    engine = build_engine()
    async_session = build_session_factory(engine)
    cache = build_cache_store()

    async with async_session() as session:
        stats = await reweigh_submissions(session, reference_date)
        await StatisticsService(session, cache, CapacityController(cache)).invalidate()

        print("✓ Reweigh complete")
        print(f"  Reference date: {reference_date.isoformat()}")
        print(f"  Submissions checked: {stats['submissions_checked']}")
        print(f"  Weights changed: {stats['weights_changed']}")

    await cache.close()
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Recompute DATECAST submission weights")
    parser.add_argument(
        "--reference-date",
        type=date.fromisoformat,
        default=settings.reference_date,
        help="Reference date (YYYY-MM-DD, default: REFERENCE_DATE)",
    )
    args = parser.parse_args()

    configure_logging()
    asyncio.run(main(args.reference_date))
