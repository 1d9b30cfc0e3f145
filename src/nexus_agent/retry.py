"""Retry for writes that may hit transient database failures."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError, OperationalError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from nexus_agent.errors import PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
BACKOFF_SECONDS = 0.1


def is_transient(exc: BaseException) -> bool:
    """Whether an error is worth retrying (connection-level, not a bad write)."""
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (OSError, TimeoutError))


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    attempts: int = DEFAULT_ATTEMPTS,
    backoff: float = BACKOFF_SECONDS,
) -> T:
    """Run ``operation``, retrying transient failures with linear backoff.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        description: What is being written, for log messages.
        attempts: Maximum number of attempts.
        backoff: Base delay; attempt n waits ``backoff * n`` before retrying.

    Raises:
        PersistenceFailure: When every attempt failed or a permanent error
            occurred. The last error is chained.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=backoff, increment=backoff),
        retry=retry_if_exception(is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        return await retrying(operation)
    except Exception as exc:
        if not is_transient(exc):
            logger.error("%s failed with a permanent error: %s", description, exc)
            raise PersistenceFailure(f"{description} failed: {exc}") from exc
        logger.error("%s failed after %d attempts: %s", description, attempts, exc)
        raise PersistenceFailure(f"{description} failed after {attempts} attempts: {exc}") from exc
