"""
Random code and token generators — pure, side-effect-free functions.

Everything here feeds a credential, so all generators draw from the
``secrets`` module.
"""

from __future__ import annotations

import secrets
import string


def generate_otp_code(length: int = 6) -> str:
    """Generate a cryptographically secure numeric OTP.

    Args:
        length: Number of digits (default 6).

    Returns:
        String of random decimal digits (leading zeros allowed).
    """
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_refresh_token(num_bytes: int = 64) -> str:
    """Generate an opaque refresh token (hex, ``2 * num_bytes`` characters)."""
    return secrets.token_hex(num_bytes)


def generate_reset_token(num_bytes: int = 32) -> str:
    """Generate a legacy password-reset link token (hex)."""
    return secrets.token_hex(num_bytes)
