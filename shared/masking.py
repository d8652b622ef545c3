"""
Identifier masking for log output.

Emails and client IPs identify patients and staff, so they never reach the
logs in full. The masked form keeps just enough to correlate repeated
events for the same identifier:

- ``maria.lopez@example.com`` -> ``ma***@example.com``
- ``203.0.113.42``            -> ``203.0.x.x``
- ``2001:db8::1``             -> ``2001:db8:x:x:x:x:x:x``
- anything else               -> first two characters + ``***``
"""

from __future__ import annotations

import ipaddress
from typing import Optional


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    if not domain:
        return _mask_opaque(email)
    return f"{local[:2]}***@{domain}"


def mask_ip(ip: str) -> str:
    addr = ipaddress.ip_address(ip)
    if addr.version == 4:
        octets = addr.exploded.split(".")
        return f"{octets[0]}.{octets[1]}.x.x"
    hextets = [h.lstrip("0") or "0" for h in addr.exploded.split(":")]
    return ":".join(hextets[:2] + ["x"] * 6)


def _mask_opaque(value: str) -> str:
    return f"{value[:2]}***"


def mask_identifier(identifier: Optional[str]) -> Optional[str]:
    """Mask an email, IP address or other lockout identifier for logging."""
    if identifier is None:
        return None
    value = identifier.strip()
    if "@" in value:
        return mask_email(value)
    try:
        return mask_ip(value)
    except ValueError:
        return _mask_opaque(value)
