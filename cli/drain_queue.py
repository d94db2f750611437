"""
📅 DATECAST · One date, many guesses. The median decides.

Drain queued submissions into the database, once or on a loop.

Needs a shared cache store (REDIS_URL). Without one the queue lives inside
the API process, which drains it itself.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

from datecast.cache import build_cache_store  # noqa: E402
from datecast.config import settings  # noqa: E402
from datecast.db import build_engine, build_session_factory  # noqa: E402
from datecast.services.submissions import drain_once  # noqa: E402
from datecast.utils import configure_logging  # noqa: E402

logger = logging.getLogger(__name__)


async def main(loop_interval: float, batch_size: int) -> int:
    """Main entry point."""
    cache = build_cache_store()
    if not cache.shared:
        print("✗ REDIS_URL is not set")
        print("  Queued submissions live in the API process and are drained there.")
        await cache.close()
        return 1

    engine = build_engine()
    session_factory = build_session_factory(engine)

    try:
        while True:
            counts = await drain_once(session_factory, cache, batch_size)
            if counts["skipped"]:
                print("⚠ Drain skipped, capacity is critical or exceeded")
            else:
                print("✓ Drain complete")
                print(f"  Accepted: {counts['accepted']}")
                print(f"  Duplicates: {counts['duplicates']}")
                print(f"  Conflicts: {counts['conflicts']}")
                print(f"  Expired: {counts['expired']}")
                print(f"  Remaining after store error: {counts['remaining']}")

            if loop_interval <= 0:
                break
            await asyncio.sleep(loop_interval)
    except KeyboardInterrupt:
        logger.info("Drain loop interrupted")
    finally:
        await cache.close()
        await engine.dispose()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Drain the DATECAST submission queue")
    parser.add_argument(
        "--loop-interval",
        type=float,
        default=float(os.getenv("DRAIN_LOOP_INTERVAL", "0")),
        dest="loop_interval",
        help="Seconds between sweeps; 0 runs a single sweep",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.queue_drain_batch_size,
        dest="batch_size",
        help="Queue entries taken per sweep",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        dest="log_level",
        help="Logging level",
    )
    args = parser.parse_args()

    configure_logging(args.log_level)
    sys.exit(asyncio.run(main(args.loop_interval, args.batch_size)))
