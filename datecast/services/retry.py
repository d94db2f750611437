"""
📅 DATECAST · One date, many guesses. The median decides.

Bounded retry with exponential backoff for transient store contention.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from datecast.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 5.0


class TransientStoreError(RuntimeError):
    """The durable store stayed busy or unreachable through every attempt."""

    def __init__(self, message: str, attempts: int, retry_after_seconds: int = 5):
        super().__init__(message)
        self.attempts = attempts
        self.retry_after_seconds = retry_after_seconds


def is_transient(exc: BaseException) -> bool:
    """
    Decide whether a store error is worth retrying.

    Lock/busy conditions and dropped connections are transient; constraint
    violations and programming errors are not.
    """
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base, 2*base, 4*base, ..."""
    return min(MAX_BACKOFF_SECONDS, base_delay * (2 ** (attempt - 1)))


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    retryable: Callable[[BaseException], bool] = is_transient,
    on_retry: Optional[Callable[[], Awaitable[None]]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "store operation",
) -> T:
    """
    Run ``operation`` with a hard ceiling on attempts.

    Non-retryable exceptions propagate immediately. Retryable ones are
    retried after an exponential backoff until ``attempts`` is reached,
    then surfaced as TransientStoreError.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Maximum attempts (defaults to STORE_RETRY_ATTEMPTS)
        base_delay: First backoff in seconds (defaults to STORE_RETRY_BASE_DELAY)
        retryable: Predicate selecting retryable exceptions
        on_retry: Coroutine run before each retry (e.g. session rollback)
        sleep: Sleep function (injectable for tests)
        label: Operation name for logs

    Returns:
        The operation's result

    Raises:
        TransientStoreError: If every attempt failed with a retryable error
    """
    attempts = settings.store_retry_attempts if attempts is None else attempts
    base_delay = settings.store_retry_base_delay if base_delay is None else base_delay
    attempts = max(1, attempts)

    attempt = 0
    while True:
        attempt += 1
        try:
            result = await operation()
        except Exception as exc:
            if not retryable(exc):
                raise
            if attempt >= attempts:
                logger.error(f"{label} failed after {attempt} attempts: {exc}")
                raise TransientStoreError(
                    f"{label} unavailable after {attempt} attempts", attempts=attempt
                ) from exc
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"{label} hit transient error (attempt {attempt}/{attempts}), "
                f"retrying in {delay:.2f}s: {exc}"
            )
            if on_retry is not None:
                await on_retry()
            await sleep(delay)
            continue

        if attempt > 1:
            logger.info(f"{label} succeeded on attempt {attempt}/{attempts}")
        return result
