"""
Per-request credential and client-address extraction for FastAPI requests.

Functions take an explicit ``Request`` so they are testable without an app.
"""

from __future__ import annotations

import ipaddress
from typing import Iterable, Optional

from fastapi import Request

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

# Proxy headers in priority order: Cloudflare, Akamai, standard, nginx
_CLIENT_IP_HEADERS: tuple[str, ...] = (
    "CF-Connecting-IP",
    "True-Client-IP",
    "X-Forwarded-For",
    "X-Real-IP",
)


def _is_trusted(peer: str, trusted_proxies: Iterable[str]) -> bool:
    try:
        address = ipaddress.ip_address(peer)
    except ValueError:
        return False
    return any(
        address in ipaddress.ip_network(proxy, strict=False)
        for proxy in trusted_proxies
    )


def get_client_ip(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """Resolve the client IP.

    Proxy headers are only read when the socket peer is one of
    *trusted_proxies*; any other caller could set them to an arbitrary
    address. ``X-Forwarded-For`` may hold a chain; the first (client-most)
    entry wins. Returns ``""`` when nothing is available.
    """
    peer = request.client.host if request.client else ""
    if peer and _is_trusted(peer, trusted_proxies):
        for header in _CLIENT_IP_HEADERS:
            raw = request.headers.get(header)
            if raw:
                candidate = raw.split(",")[0].strip()
                if candidate:
                    return candidate
    return peer


def get_bearer_token(request: Request) -> Optional[str]:
    """Access token from ``Authorization: Bearer`` or the access cookie.

    Mobile clients send the header; the web app relies on the HttpOnly cookie.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_COOKIE) or None


def get_refresh_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(REFRESH_COOKIE) or None
