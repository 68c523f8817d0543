"""Bounded exponential backoff for network operations."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from loguru import logger

from tags_sync.exceptions import TransientTransportError

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0


def backoff_delay(attempt: int, backoff_seconds: float) -> float:
    """Return the delay before `attempt` (1-based). The first attempt is never delayed."""
    if attempt <= 1:
        return 0.0
    return backoff_seconds * (2 ** (attempt - 2))


def call_with_retry(
    operation: Callable[[], T],
    *,
    description: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run `operation`, retrying it on `TransientTransportError`.

    Any other exception propagates immediately. After `max_attempts` transient failures the last one is re-raised.

    Args:
        operation: The callable to run.
        description: What the operation does, for log messages.
        max_attempts: Maximum number of attempts (at least 1).
        backoff_seconds: Delay before the second attempt; doubled for each following attempt.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Whatever `operation` returns.
    """
    max_attempts = max(1, max_attempts)

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay = backoff_delay(attempt, backoff_seconds)
            logger.debug(f"Retrying {description} in {delay:.1f}s (attempt {attempt}/{max_attempts})")
            sleep(delay)

        try:
            return operation()
        except TransientTransportError as e:
            if attempt == max_attempts:
                logger.error(f"Giving up on {description} after {max_attempts} attempts: {e}")
                raise
            logger.warning(f"Transient failure during {description}: {e}")

    raise AssertionError("unreachable")
