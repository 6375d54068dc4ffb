# app/infra/db_resilience_async.py
"""
Retry helpers for asyncpg reads.

Only transient failures (dropped connections, pool exhaustion, deadlocks,
timeouts) are retried; everything else propagates on the first attempt.
"""
from __future__ import annotations
import asyncio
from typing import TypeVar, Callable, Awaitable
from functools import wraps

import asyncpg
from app.infra.logging_config import get_logger
from app.infra.metrics import inc_counter

logger = get_logger(__name__)

T = TypeVar('T')

_TRANSIENT_PATTERNS = (
    "connection",
    "timeout",
    "closed",
    "network",
    "deadlock",
    "too many connections",
    "server closed",
    "connection reset",
)

_TRANSIENT_TYPES = (
    asyncpg.PostgresConnectionError,
    asyncpg.TooManyConnectionsError,
    asyncpg.DeadlockDetectedError,
    asyncpg.InterfaceError,
    ConnectionError,
)


def is_transient_error(exc: BaseException) -> bool:
    """True if retrying the same statement could plausibly succeed."""
    if isinstance(exc, _TRANSIENT_TYPES):
        return True

    # Plain programming errors never qualify, whatever their message says
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return False

    error_message = str(exc).lower()
    return any(pattern in error_message for pattern in _TRANSIENT_PATTERNS)


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator to retry an async function on transient database errors.

    Example:
        @retry_on_transient_error(max_retries=3)
        async def get_job(self, job_id: str):
            async with self._db.connection() as conn:
                return await conn.fetchrow(JOB_QUERY, job_id)
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc):
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded in {func.__name__}: {exc}"
                        )
                        inc_counter("database_errors_total", operation=func.__name__)
                        raise

                    logger.warning(
                        f"Transient error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {exc}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

            raise AssertionError("unreachable")  # pragma: no cover

        return wrapper
    return decorator
