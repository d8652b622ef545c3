"""
TokenService — access-token issuance/validation and refresh-token rotation.

Access tokens: PyJWT, RS256 when both JWT_PRIVATE_KEY and JWT_PUBLIC_KEY are
configured, HS256 with JWT_SECRET otherwise. Validation is pure (no store
access).

Refresh tokens: opaque 128-hex-char strings. Only the SHA-256 digest is
stored, in a single slot on the user, so issuing a new one revokes the
previous one. Rotation swaps the digest with a conditional update keyed on
the old digest, so a replayed token loses to the first rotation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

import jwt
from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError

from config import JWTSettings
from errors import TokenExpiredError, TokenInvalidError
from repositories.user_repository import UserRepository
from schemas.models.token import CLAIMS_VERSION, AccessTokenClaims
from schemas.models.user import UserDoc
from services.session_policy import SessionPolicy
from shared.crypto import hash_token
from shared.datetime_utils import Clock, as_utc, utcnow
from shared.generators import generate_refresh_token
from shared.logging import get_logger

log = get_logger(__name__)

_REQUIRED_CLAIMS = ["exp", "iat", "sub", "iss", "aud"]


@dataclass(frozen=True)
class IssuedAccessToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class IssuedRefreshToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class RotatedRefresh:
    user: UserDoc
    refresh: IssuedRefreshToken


def _load_keys(settings: JWTSettings) -> Tuple[str, Union[str, bytes], Union[str, bytes]]:
    """Return (algorithm, signing_key, verify_key)."""
    if settings.use_rs256:
        # Keys provided via env may carry literal \n sequences
        priv = settings.jwt_private_key.replace("\\n", "\n").encode("utf-8")
        pub = settings.jwt_public_key.replace("\\n", "\n").encode("utf-8")
        return "RS256", priv, pub
    if not settings.jwt_secret:
        raise RuntimeError("JWT_SECRET must be set when RS256 keys are not provided")
    return "HS256", settings.jwt_secret, settings.jwt_secret


class TokenService:
    def __init__(
        self,
        settings: JWTSettings,
        user_repo: UserRepository,
        session_policy: SessionPolicy,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._settings = settings
        self._users = user_repo
        self._sessions = session_policy
        self._clock = clock
        self._algorithm, self._signing_key, self._verify_key = _load_keys(settings)

    @property
    def algorithm(self) -> str:
        return self._algorithm

    # ── Access tokens ────────────────────────────────────────────────────────

    def issue_access_token(self, user: UserDoc, ttl: timedelta) -> IssuedAccessToken:
        now = self._clock()
        expires_at = now + ttl
        claims = AccessTokenClaims(
            ver=CLAIMS_VERSION,
            sub=user.user_id,
            email=user.email,
            role=user.role,
            tenant_id=str(user.tenant_id) if user.tenant_id else None,
            iss=self._settings.jwt_issuer,
            aud=self._settings.jwt_audience,
            iat=int(now.timestamp()),
            exp=int(expires_at.timestamp()),
        )
        token = jwt.encode(
            claims.model_dump(exclude_none=True),
            self._signing_key,
            algorithm=self._algorithm,
        )
        return IssuedAccessToken(token=token, expires_at=expires_at)

    def validate_access_token(self, token: str) -> AccessTokenClaims:
        """Decode and verify *token*.

        Raises:
            TokenExpiredError: ``exp`` is in the past.
            TokenInvalidError: bad signature, malformed payload, wrong
                issuer/audience or unknown claims version.
        """
        try:
            payload = jwt.decode(
                token,
                self._verify_key,
                algorithms=[self._algorithm],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
                # Time claims are checked against the injected clock below
                options={
                    "require": _REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError("Invalid access token") from e

        if payload.get("ver") != CLAIMS_VERSION:
            raise TokenInvalidError("Unsupported token version")
        try:
            claims = AccessTokenClaims.model_validate(payload)
        except PydanticValidationError as e:
            raise TokenInvalidError("Invalid access token") from e

        if claims.exp <= int(self._clock().timestamp()):
            raise TokenExpiredError("Access token has expired")
        return claims

    # ── Refresh tokens ───────────────────────────────────────────────────────

    async def issue_refresh_token(
        self, user_id: ObjectId, ttl: timedelta
    ) -> IssuedRefreshToken:
        """Store a new refresh digest on the user and return the plaintext once."""
        token = generate_refresh_token()
        expires_at = self._clock() + ttl
        await self._users.set_refresh_token(user_id, hash_token(token), expires_at)
        return IssuedRefreshToken(token=token, expires_at=expires_at)

    async def rotate_on_refresh(self, old_token: str) -> RotatedRefresh:
        """Exchange *old_token* for a new refresh token.

        The new token expires after the user's standard refresh lifetime or
        at the old token's expiry, whichever is later, so a remember-me
        session keeps its horizon.

        Raises:
            TokenInvalidError: unknown, already rotated, or expired token.
        """
        if not old_token:
            raise TokenInvalidError("Invalid refresh token")
        old_hash = hash_token(old_token)
        now = self._clock()

        user = await self._users.find_by_refresh_hash(old_hash)
        if user is None:
            log.info("refresh_token_unknown")
            raise TokenInvalidError("Invalid refresh token")

        old_expires = as_utc(user.refresh_token_expires)
        if old_expires is None or old_expires <= now:
            log.info("refresh_token_expired", user_id=user.user_id)
            raise TokenInvalidError("Refresh token has expired")

        new_token = generate_refresh_token()
        ttl = self._sessions.times_for(user.role).refresh_ttl
        new_expires = max(now + ttl, old_expires)
        rotated = await self._users.swap_refresh_token(
            old_hash, hash_token(new_token), new_expires
        )
        if rotated is None:
            # Another request rotated this token first
            log.warning("refresh_token_reuse", user_id=user.user_id)
            raise TokenInvalidError("Invalid refresh token")

        return RotatedRefresh(
            user=rotated,
            refresh=IssuedRefreshToken(token=new_token, expires_at=new_expires),
        )

    async def revoke(self, user_id: Optional[ObjectId]) -> None:
        if user_id is None:
            return
        await self._users.clear_refresh_token(user_id)
