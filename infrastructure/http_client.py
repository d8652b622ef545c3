"""Outbound HTTP for third-party APIs (mail delivery)."""

from typing import Any, Optional

import httpx

from shared.logging import get_logger

log = get_logger(__name__)

USER_AGENT = "histora-auth/1.0"


class HttpClient:
    """Async httpx client shared by the outbound integrations.

    Built once in the app lifespan and closed on shutdown. Transport errors
    are logged with the target host and re-raised to the caller, which
    decides whether a delivery failure matters.
    """

    def __init__(
        self, timeout: float = 5.0, headers: Optional[dict[str, str]] = None
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, **(headers or {})},
        )

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.post(url, **kwargs)
        except httpx.HTTPError as e:
            log.warning(
                "http_request_failed",
                host=httpx.URL(url).host,
                error_type=type(e).__name__,
            )
            raise

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
