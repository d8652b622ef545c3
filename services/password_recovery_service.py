"""
PasswordRecoveryService — OTP and reset-link password recovery.

OTP flow:
  request_otp   6-digit code, SHA-256 digest stored on the user with a
                10 minute expiry and a zeroed attempt counter, code mailed
  verify_otp    checks the code without consuming it; every mismatch bumps
                the attempt counter atomically
  reset_...     re-verifies, then one conditional update sets the new
                password and removes the OTP fields

Legacy link flow: forgot_password mails a link carrying a 64-hex-char
token (digest stored, 24 h expiry); reset_password consumes it once.

Unknown or inactive emails get the same answer as real ones, so neither
flow reveals which addresses have accounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from config import RecoverySettings
from errors import (
    OtpAttemptsExceededError,
    OtpExpiredError,
    OtpInvalidError,
    RateLimitError,
    TokenInvalidError,
)
from infrastructure.cache.request_throttle import RequestThrottle
from infrastructure.email.protocol import EmailProvider
from infrastructure.oauth_clients import PLATFORM_MOBILE
from repositories.user_repository import UserRepository
from schemas.models.user import UserDoc
from shared.crypto import digests_match, hash_password, hash_token
from shared.datetime_utils import Clock, as_utc, utcnow
from shared.generators import generate_otp_code, generate_reset_token
from shared.logging import get_logger
from shared.masking import mask_email
from shared.validators import normalize_email

log = get_logger(__name__)

OTP_SENT_MESSAGE = (
    "If an account exists for this email, a verification code has been sent."
)
RESET_LINK_SENT_MESSAGE = (
    "If an account exists for this email, a recovery link has been sent."
)


@dataclass(frozen=True)
class OtpVerification:
    valid: bool
    message: str


def _display_name(user: UserDoc) -> str:
    return f"{user.first_name} {user.last_name}".strip()


class PasswordRecoveryService:
    def __init__(
        self,
        settings: RecoverySettings,
        user_repo: UserRepository,
        email_provider: EmailProvider,
        throttle: RequestThrottle,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._settings = settings
        self._users = user_repo
        self._email = email_provider
        self._throttle = throttle
        self._clock = clock

    # ── OTP flow ─────────────────────────────────────────────────────────────

    async def request_otp(self, email: str, platform: str = "web") -> str:
        """Issue and mail a reset code. Returns the user-facing message."""
        normalized = normalize_email(email)
        # Throttled before the lookup so the limit applies to every address alike
        if not await self._throttle.hit(normalized):
            raise RateLimitError(
                "Too many code requests. Please try again later.", field="email"
            )

        user = await self._recoverable_user(normalized, "password_otp_requested")
        if user is None:
            return OTP_SENT_MESSAGE

        code = generate_otp_code()
        expires_at = self._clock() + timedelta(seconds=self._settings.otp_ttl_seconds)
        await self._users.set_password_reset_otp(user.id, hash_token(code), expires_at)

        sent = await self._email.send_password_reset_otp(
            user.email,
            _display_name(user) or None,
            code,
            self._settings.otp_ttl_seconds // 60,
        )
        log.info(
            "password_otp_issued",
            user_id=user.user_id,
            platform=platform,
            email_sent=sent,
        )
        return OTP_SENT_MESSAGE

    async def verify_otp(self, email: str, code: str) -> OtpVerification:
        """Check *code* for *email* without consuming it.

        Raises:
            OtpAttemptsExceededError: too many wrong codes; request a new one.
            OtpExpiredError: the code is past its expiry.
            OtpInvalidError: no pending code, or the code does not match.
        """
        await self._check_otp(email, code)
        return OtpVerification(valid=True, message="Code verified")

    async def reset_password_with_otp(
        self, email: str, code: str, new_password: str
    ) -> None:
        user = await self._check_otp(email, code)
        consumed = await self._users.reset_password_with_otp(
            user.id,
            hash_token(code),
            hash_password(new_password),
            self._clock(),
            self._settings.otp_max_attempts,
        )
        if not consumed:
            # Lost a race with another reset, or the code was replaced
            raise OtpInvalidError()
        log.info("password_reset_with_otp", user_id=user.user_id)

    async def _check_otp(self, email: str, code: str) -> UserDoc:
        user = await self._users.find_by_email(email)
        if user is None or not user.password_reset_otp:
            raise OtpInvalidError()

        if user.password_reset_otp_attempts >= self._settings.otp_max_attempts:
            raise OtpAttemptsExceededError()

        expires_at = as_utc(user.password_reset_otp_expires)
        if expires_at is None or expires_at <= self._clock():
            raise OtpExpiredError()

        if not digests_match(hash_token(code), user.password_reset_otp):
            attempts = await self._users.increment_otp_attempts(user.id)
            log.info(
                "password_otp_mismatch",
                user_id=user.user_id,
                failed_checks=attempts,
            )
            if attempts >= self._settings.otp_max_attempts:
                raise OtpAttemptsExceededError()
            raise OtpInvalidError()
        return user

    # ── Legacy reset link ────────────────────────────────────────────────────

    async def forgot_password(self, email: str, platform: str = "web") -> str:
        normalized = normalize_email(email)
        if not await self._throttle.hit(normalized):
            raise RateLimitError(
                "Too many recovery requests. Please try again later.", field="email"
            )

        user = await self._recoverable_user(normalized, "password_reset_link_requested")
        if user is None:
            return RESET_LINK_SENT_MESSAGE

        token = generate_reset_token()
        hours = self._settings.reset_token_ttl_hours
        await self._users.set_password_reset_token(
            user.id, hash_token(token), self._clock() + timedelta(hours=hours)
        )

        sent = await self._email.send_password_reset_link(
            user.email,
            _display_name(user) or None,
            self.reset_link(token, platform),
            hours,
        )
        log.info(
            "password_reset_link_issued",
            user_id=user.user_id,
            platform=platform,
            email_sent=sent,
        )
        return RESET_LINK_SENT_MESSAGE

    def reset_link(self, token: str, platform: str = "web") -> str:
        if platform == PLATFORM_MOBILE:
            base = self._settings.care_app_url.rstrip("/")
            return f"{base}/#/auth/reset-password?token={token}"
        base = self._settings.frontend_url.rstrip("/")
        return f"{base}/#/authentication/reset-password?token={token}"

    async def reset_password(self, token: str, new_password: str) -> None:
        if not token:
            raise TokenInvalidError("The recovery link is invalid or has expired")
        user = await self._users.reset_password_with_token(
            hash_token(token), hash_password(new_password), self._clock()
        )
        if user is None:
            raise TokenInvalidError("The recovery link is invalid or has expired")
        log.info("password_reset_with_link", user_id=user.user_id)

    # ── Helpers ──────────────────────────────────────────────────────────────

    async def _recoverable_user(self, email: str, event: str) -> Optional[UserDoc]:
        user = await self._users.find_by_email(email)
        if user is None:
            log.info(event, email=mask_email(email), outcome="unknown_email")
            return None
        if not user.is_active:
            log.info(event, email=mask_email(email), outcome="inactive_account")
            return None
        return user
