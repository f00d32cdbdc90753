"""Exponential backoff with jitter for collaborator calls."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sharpedge.errors import CollaboratorError, classify_exception, is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_JITTER_MS = 100


def backoff_delay_ms(attempt: int, base_delay_ms: int, max_delay_ms: int) -> float:
    """Delay before retry number ``attempt`` (0-based), jitter included."""
    delay = base_delay_ms * (2 ** attempt) + random.uniform(0, MAX_JITTER_MS)
    return min(delay, max_delay_ms)


async def with_retry(
    func: Callable[[], Awaitable[T]],
    label: str,
    max_retries: int = 3,
    base_delay_ms: int = 500,
    max_delay_ms: int = 5000,
) -> T:
    """Run ``func`` and retry transient failures with exponential backoff.

    Args:
        func: Zero-argument coroutine factory
        label: Label for logging
        max_retries: Retries after the first attempt
        base_delay_ms: Delay before the first retry
        max_delay_ms: Upper bound for any single delay

    Returns:
        Whatever ``func`` returns

    Raises:
        CollaboratorError: On a non-transient failure (immediately), or the
            last transient failure once retries are exhausted

    Notes:
        - Transient means HTTP 429, 5xx, connection reset or timeout
        - Other 4xx responses are never retried
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except CollaboratorError as e:
            error = e
        except Exception as e:
            error = CollaboratorError(classify_exception(e), str(e) or type(e).__name__)
            error.__cause__ = e

        if not is_transient(error.kind):
            raise error
        if attempt >= max_retries:
            logger.warning(f"{label} failed after {max_retries + 1} attempts: {error}")
            raise error

        delay_ms = backoff_delay_ms(attempt, base_delay_ms, max_delay_ms)
        logger.warning(
            f"{label} failed ({error}), retrying in {delay_ms:.0f}ms "
            f"({attempt + 1}/{max_retries})"
        )
        await asyncio.sleep(delay_ms / 1000)

    raise AssertionError("unreachable")
