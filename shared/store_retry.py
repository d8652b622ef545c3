"""
Bounded retry for single store round-trips.

Only connectivity failures are retried (``ConnectionFailure`` covers
``AutoReconnect``, ``NetworkTimeout`` and ``ServerSelectionTimeoutError``)
plus our own per-call timeout. Everything else, duplicate keys included,
propagates on the first occurrence.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from pymongo.errors import ConnectionFailure

from errors import ServiceUnavailableError
from shared.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_STORE_ERRORS = (ConnectionFailure, asyncio.TimeoutError)


class StoreUnavailableError(ServiceUnavailableError):
    """The store stayed unreachable for every attempt."""

    error_code = "store_unavailable"


async def call_with_retry(
    operation: str,
    fn: Callable[[], Awaitable[T]],
    *,
    timeout_ms: int,
    retries: int,
    backoff_ms: int = 25,
) -> T:
    """Await ``fn()`` with a per-attempt timeout, retrying transient failures.

    Args:
        operation: Short name used in log events.
        fn: Zero-arg coroutine factory; called once per attempt.
        timeout_ms: Budget for a single attempt.
        retries: Extra attempts after the first failure.
        backoff_ms: Sleep between attempts, doubled each time.

    Raises:
        StoreUnavailableError: after ``retries + 1`` transient failures.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await asyncio.wait_for(fn(), timeout=timeout_ms / 1000)
        except TRANSIENT_STORE_ERRORS as e:
            if attempt > retries:
                log.error(
                    "store_unavailable",
                    operation=operation,
                    attempts=attempt,
                    error=str(e) or type(e).__name__,
                    error_type=type(e).__name__,
                )
                raise StoreUnavailableError() from e
            log.warning(
                "store_retry",
                operation=operation,
                attempt=attempt,
                error_type=type(e).__name__,
            )
            await asyncio.sleep(backoff_ms * (2 ** (attempt - 1)) / 1000)
