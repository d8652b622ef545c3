"""Fixed-window request throttle on the `limits` engine.

Used to cap how many recovery emails one address can trigger per hour.
Counters live in Redis when it is configured so every instance shares
them, and in process memory otherwise. When the storage errors, requests
are allowed: the throttle only limits mail volume, the OTP attempt counter
and the lockout guard still protect the account.
"""

from __future__ import annotations

from typing import Optional

from limits import parse
from limits.aio.storage import Storage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.errors import StorageError
from limits.storage import storage_from_string

from shared.logging import get_logger
from shared.masking import mask_identifier

log = get_logger(__name__)


def throttle_storage(redis_uri: Optional[str]) -> Storage:
    """Async `limits` storage: shared Redis when available, else in-memory."""
    if redis_uri:
        return storage_from_string(f"async+{redis_uri}", wrap_exceptions=True)
    return storage_from_string("async+memory://")


class RequestThrottle:
    def __init__(self, storage: Storage, *, prefix: str, limit: int) -> None:
        self._limiter = FixedWindowRateLimiter(storage)
        self._prefix = prefix
        self._limit = limit
        self._item = parse(f"{limit}/hour") if limit > 0 else None

    async def hit(self, subject: str) -> bool:
        """Count one request for *subject*; False once the hour's limit is exceeded."""
        if self._item is None:
            return True
        try:
            allowed = await self._limiter.hit(self._item, self._prefix, subject)
        except StorageError as e:
            log.warning(
                "throttle_unavailable",
                prefix=self._prefix,
                error=str(e.storage_error),
                error_type=type(e.storage_error).__name__,
            )
            return True

        if not allowed:
            log.info(
                "throttle_limit_reached",
                prefix=self._prefix,
                subject=mask_identifier(subject),
                limit=self._limit,
            )
        return allowed
