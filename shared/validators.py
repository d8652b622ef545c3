"""
Input normalizers and validators — framework-agnostic, pure functions.

All validators are stateless; anything configurable (allowed origins, the
mobile scheme) is passed in as an argument.
"""

from __future__ import annotations

import re
from typing import Sequence
from urllib.parse import urlsplit

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

_OTP_RE = re.compile(r"^\d{6}$")


def normalize_email(email: str) -> str:
    """Canonical form used for storage, lookups and lockout identifiers."""
    return email.strip().lower()


def normalize_identifier(identifier: str) -> str:
    """Lockout identifiers (emails or IPs) compare case-insensitively."""
    return identifier.strip().lower()


def password_problems(password: str) -> list[str]:
    """Return the unmet password requirements (empty when acceptable).

    Rules:
    - At least 8 characters
    - At most 128 characters (argon2 input stays bounded)
    - Not only whitespace
    """
    if not password or not password.strip():
        return ["Password is required"]
    missing = []
    if len(password) < PASSWORD_MIN_LENGTH:
        missing.append(f"At least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        missing.append(f"Maximum {PASSWORD_MAX_LENGTH} characters")
    return missing


def is_valid_otp_format(code: str) -> bool:
    return bool(_OTP_RE.match(code or ""))


def is_allowed_redirect(
    url: str,
    allowed_origins: Sequence[str],
    mobile_scheme: str = "",
) -> bool:
    """Return True if *url* may be used as a post-login redirect target.

    Web targets must match one of *allowed_origins* exactly on scheme, host
    and port. The app's custom mobile scheme (``historacare://``) is always
    accepted when given.
    """
    if not url:
        return False
    parts = urlsplit(url)
    if mobile_scheme and parts.scheme == mobile_scheme:
        return True
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return False
    origin = f"{parts.scheme}://{parts.netloc}".lower()
    return any(origin == o.rstrip("/").lower() for o in allowed_origins)
