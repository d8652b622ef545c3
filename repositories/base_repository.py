"""
Common plumbing for the async MongoDB repositories.

Every collection call goes through ``_call`` so that a slow or unreachable
server surfaces as ``StoreUnavailableError`` after a bounded number of
attempts instead of hanging the request.
"""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from pymongo.asynchronous.collection import AsyncCollection

from shared.store_retry import call_with_retry

T = TypeVar("T")


class BaseRepository:
    def __init__(
        self,
        collection: AsyncCollection,
        *,
        timeout_ms: int = 3000,
        retries: int = 1,
    ) -> None:
        self._col = collection
        self._timeout_ms = timeout_ms
        self._retries = retries

    @property
    def collection(self) -> AsyncCollection:
        return self._col

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            f"{self._col.name}.{operation}",
            fn,
            timeout_ms=self._timeout_ms,
            retries=self._retries,
        )
