"""Bounded exponential-backoff retry for transient store failures."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from plate_registry.services.store import TransientStoreError

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.5


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> T:
    """Await ``operation()``, retrying only on ``TransientStoreError``.

    The delay before attempt ``n + 1`` is ``base_delay * 2**n``.  Any other
    exception propagates immediately.

    Args:
        operation: Zero-argument factory returning a fresh awaitable per attempt.
        description: Human-readable label for log lines.
        max_attempts: Total attempts, including the first.
        base_delay: Backoff base in seconds.

    Returns:
        The operation's result.

    Raises:
        TransientStoreError: When every attempt failed transiently.
    """
    if max_attempts < 1:
        msg = "max_attempts must be at least 1"
        raise ValueError(msg)

    for attempt in range(max_attempts):
        try:
            return await operation()
        except TransientStoreError as exc:
            if attempt == max_attempts - 1:
                logger.error(f"{description} failed after {max_attempts} attempts: {exc}")
                raise
            delay = base_delay * (2**attempt)
            logger.warning(f"{description} failed (attempt {attempt + 1}/{max_attempts}), retrying in {delay:.2f}s: {exc}")
            await asyncio.sleep(delay)

    msg = "unreachable"
    raise AssertionError(msg)
