"""
AuthService — the facade the HTTP layer talks to.

Login sequence:
    is_locked? -> AccountLockedError(remaining_seconds)
    verify credentials; on any failure record_failed_attempt and raise
        InvalidCredentialsError (unknown email, password-less account and
        wrong password are indistinguishable to the caller)
    inactive account -> AccountInactiveError
    success -> clear lockout record, stamp last_login_at, issue token pair

Token lifetimes come from SessionPolicy (per role, "remember me" variant).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Mapping, Optional

from bson import ObjectId

from config import LockoutSettings
from errors import (
    AccountInactiveError,
    AccountLockedError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidInputError,
    NotFoundError,
)
from infrastructure.oauth_clients import FederatedProfile
from repositories.user_repository import UserRepository
from schemas.models.base import to_object_id
from schemas.models.user import AUTH_PROVIDER_LOCAL, ROLE_CLINIC_OWNER, UserDoc
from services.federated_identity_service import FederatedIdentityService
from services.lockout_service import LockoutService
from services.password_recovery_service import OtpVerification, PasswordRecoveryService
from services.registration_rules import (
    Acceptances,
    acceptance_fields,
    build_role_profile,
    check_self_service_role,
)
from services.session_policy import SessionPolicy
from services.token_service import IssuedAccessToken, IssuedRefreshToken, TokenService
from shared.crypto import hash_password, password_needs_rehash, verify_password
from shared.datetime_utils import Clock, utcnow
from shared.logging import get_logger
from shared.masking import mask_email, mask_identifier
from shared.validators import normalize_email, password_problems

log = get_logger(__name__)


@dataclass(frozen=True)
class RegistrationProfile:
    first_name: str
    last_name: str
    role: str
    phone: Optional[str] = None
    role_fields: Mapping[str, Any] = field(default_factory=dict)
    acceptances: Acceptances = field(default_factory=Acceptances)


@dataclass(frozen=True)
class AuthResult:
    user: UserDoc
    access: IssuedAccessToken
    refresh: IssuedRefreshToken
    is_new_user: bool = False


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    # Verified against when the email is unknown so both paths cost the same
    return hash_password("histora-timing-equalizer")


def _check_new_password(password: str, field_name: str = "password") -> None:
    problems = password_problems(password)
    if problems:
        raise InvalidInputError(
            "Password does not meet requirements",
            field=field_name,
            details={"missing_requirements": problems},
        )


class AuthService:
    def __init__(
        self,
        user_repo: UserRepository,
        tokens: TokenService,
        lockout: LockoutService,
        recovery: PasswordRecoveryService,
        federated: FederatedIdentityService,
        sessions: SessionPolicy,
        lockout_settings: LockoutSettings,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._users = user_repo
        self._tokens = tokens
        self._lockout = lockout
        self._recovery = recovery
        self._federated = federated
        self._sessions = sessions
        self._track_ip = lockout_settings.track_ip
        self._clock = clock

    # ── Session issuance ─────────────────────────────────────────────────────

    async def _issue(
        self, user: UserDoc, *, remember_me: bool = False, is_new_user: bool = False
    ) -> AuthResult:
        times = self._sessions.times_for(user.role, remember_me)
        access = self._tokens.issue_access_token(user, times.access_ttl)
        refresh = await self._tokens.issue_refresh_token(user.id, times.refresh_ttl)
        return AuthResult(
            user=user, access=access, refresh=refresh, is_new_user=is_new_user
        )

    # ── Registration ─────────────────────────────────────────────────────────

    async def register(
        self, email: str, password: str, profile: RegistrationProfile
    ) -> AuthResult:
        """Create a password account and sign it in.

        Raises:
            InvalidInputError: weak password, unknown role, missing role
                field or consent.
            EmailAlreadyRegisteredError: the email is taken.
        """
        email = normalize_email(email)
        _check_new_password(password)
        check_self_service_role(profile.role)
        now = self._clock()
        role_profile = build_role_profile(profile.role, profile.role_fields)
        consents = acceptance_fields(profile.role, profile.acceptances, now)

        if await self._users.find_by_email(email) is not None:
            raise EmailAlreadyRegisteredError()

        user = UserDoc(
            email=email,
            password_hash=hash_password(password),
            role=profile.role,
            first_name=profile.first_name.strip(),
            last_name=profile.last_name.strip(),
            phone=profile.phone,
            auth_provider=AUTH_PROVIDER_LOCAL,
            role_profile=role_profile,
            tenant_id=ObjectId() if profile.role == ROLE_CLINIC_OWNER else None,
            last_login_at=now,
            **consents,
        )
        created = await self._users.create(user)
        log.info("user_registered", user_id=created.user_id, role=created.role)
        return await self._issue(created)

    # ── Login / refresh / logout ─────────────────────────────────────────────

    async def login(
        self,
        email: str,
        password: str,
        *,
        remember_me: bool = False,
        client_ip: Optional[str] = None,
    ) -> AuthResult:
        email = normalize_email(email)
        identifiers = [email]
        if self._track_ip and client_ip:
            identifiers.append(client_ip)

        for identifier in identifiers:
            status = await self._lockout.is_locked(identifier)
            if status.locked:
                log.info(
                    "login_blocked_locked",
                    identifier=mask_identifier(identifier),
                    remaining_seconds=status.remaining_seconds,
                )
                raise AccountLockedError(status.remaining_seconds)

        user = await self._users.find_by_email(email)
        if user is None or not user.has_password:
            verify_password(password, _dummy_password_hash())
            await self._fail_login(identifiers, "unknown_or_passwordless")
        elif not verify_password(password, user.password_hash):
            await self._fail_login(identifiers, "wrong_password")

        if not user.is_active:
            log.info("login_rejected_inactive", user_id=user.user_id)
            raise AccountInactiveError()

        for identifier in identifiers:
            await self._lockout.record_successful_login(identifier)

        if password_needs_rehash(user.password_hash):
            await self._users.set_password(user.id, hash_password(password))

        await self._users.update_last_login(user.id, self._clock())
        log.info("login_success", user_id=user.user_id, remember_me=remember_me)
        return await self._issue(user, remember_me=remember_me)

    async def _fail_login(self, identifiers: list[str], reason: str) -> None:
        result = None
        for identifier in identifiers:
            outcome = await self._lockout.record_failed_attempt(identifier)
            # The email counter drives the response
            result = result or outcome
        log.info("login_failed", email=mask_email(identifiers[0]), reason=reason)
        raise InvalidCredentialsError(
            details={"attempts_remaining": result.attempts_remaining}
        )

    async def refresh(self, refresh_token: str) -> AuthResult:
        rotated = await self._tokens.rotate_on_refresh(refresh_token)
        user = rotated.user
        if not user.is_active:
            await self._tokens.revoke(user.id)
            raise AccountInactiveError()
        access_ttl = self._sessions.times_for(user.role).access_ttl
        access = self._tokens.issue_access_token(user, access_ttl)
        log.info("token_refreshed", user_id=user.user_id)
        return AuthResult(user=user, access=access, refresh=rotated.refresh)

    async def logout(self, user_id: str) -> None:
        await self._tokens.revoke(to_object_id(user_id))
        log.info("logout", user_id=user_id)

    # ── Profile ──────────────────────────────────────────────────────────────

    async def get_profile(self, user_id: str) -> UserDoc:
        user = await self._users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def change_password(
        self, user_id: str, current_password: Optional[str], new_password: str
    ) -> None:
        """Change the password; Google-only accounts may set a first one."""
        user = await self.get_profile(user_id)
        _check_new_password(new_password, "new_password")
        if user.has_password and not verify_password(
            current_password or "", user.password_hash
        ):
            raise InvalidCredentialsError(
                "Current password is incorrect", field="current_password"
            )
        await self._users.set_password(user.id, hash_password(new_password))
        log.info("password_changed", user_id=user.user_id)

    # ── Recovery ─────────────────────────────────────────────────────────────

    async def forgot_password(self, email: str, platform: str = "web") -> str:
        return await self._recovery.forgot_password(email, platform)

    async def reset_password(self, token: str, new_password: str) -> None:
        _check_new_password(new_password, "new_password")
        await self._recovery.reset_password(token, new_password)

    async def request_password_otp(self, email: str, platform: str = "web") -> str:
        return await self._recovery.request_otp(email, platform)

    async def verify_password_otp(self, email: str, otp: str) -> OtpVerification:
        return await self._recovery.verify_otp(email, otp)

    async def reset_password_with_otp(
        self, email: str, otp: str, new_password: str
    ) -> None:
        _check_new_password(new_password, "new_password")
        await self._recovery.reset_password_with_otp(email, otp, new_password)
        # Proving control of the mailbox forgives earlier failed logins
        await self._lockout.record_successful_login(normalize_email(email))

    # ── Google ───────────────────────────────────────────────────────────────

    async def google_login(self, profile: FederatedProfile) -> AuthResult:
        user, created = await self._federated.resolve(profile)
        if not user.is_active:
            log.info("login_rejected_inactive", user_id=user.user_id)
            raise AccountInactiveError()
        await self._users.update_last_login(user.id, self._clock())
        log.info(
            "google_login_success",
            user_id=user.user_id,
            is_new_user=created,
            pending=user.is_pending,
        )
        # A pending user who abandoned role selection is sent back to it
        return await self._issue(user, is_new_user=created or user.is_pending)

    async def complete_google_registration(
        self,
        user_id: str,
        role: str,
        role_fields: Mapping[str, Any],
        acceptances: Acceptances,
    ) -> AuthResult:
        user = await self._federated.complete_registration(
            user_id, role, role_fields, acceptances
        )
        return await self._issue(user)
