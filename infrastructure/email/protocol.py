"""Outbound mail used by password recovery.

Implementations report delivery with a bool and never raise: a mail outage
must not turn a recovery request into an error the caller can observe.
"""

from typing import Optional, Protocol


class EmailProvider(Protocol):
    async def send_password_reset_otp(
        self,
        email: str,
        user_name: Optional[str],
        otp_code: str,
        expires_in_minutes: int,
    ) -> bool: ...

    async def send_password_reset_link(
        self,
        email: str,
        user_name: Optional[str],
        reset_link: str,
        expires_in_hours: int,
    ) -> bool: ...
