"""
Response DTOs for authentication endpoints.

AuthUser              — user summary inside AuthResponse and GET /auth/me
SessionInfo           — token expiry times inside AuthResponse
AuthResponse          — register / login / refresh / complete-registration
GoogleAuthResponse    — AuthResponse + isNewUser
ProfileResponse       — GET /auth/me
OtpVerifyResponse     — POST /auth/password-reset/verify-otp
LockoutInfoResponse   — GET /admin/lockout/{identifier}

The token envelope keeps snake_case keys (access_token, refresh_token); the
user object and Google flag are camelCase, which is what the web and mobile
apps read (user.firstName, user.tenantId, isNewUser).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schemas.models.user import UserDoc


class AuthUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str
    email: str
    first_name: str
    last_name: str
    # None while a Google sign-up has not picked a role
    role: Optional[str] = None
    tenant_id: Optional[str] = None
    avatar: Optional[str] = None

    @classmethod
    def from_user(cls, user: UserDoc) -> "AuthUser":
        return cls(
            id=user.user_id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            tenant_id=str(user.tenant_id) if user.tenant_id else None,
            avatar=user.avatar,
        )


class SessionInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expires_at: datetime
    refresh_expires_at: datetime


class AuthResponse(BaseModel):
    """Token pair and user summary. Tokens are also set as HttpOnly cookies."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str
    refresh_token: str
    user: AuthUser
    session: SessionInfo


class GoogleAuthResponse(AuthResponse):
    """True when the client must route the user to role selection."""

    is_new_user: bool = Field(alias="isNewUser")


class ProfileResponse(AuthUser):
    """Response body for GET /auth/me."""

    phone: Optional[str] = None
    auth_provider: str
    email_verified: bool
    password_set: bool
    role_profile: dict = {}
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: UserDoc) -> "ProfileResponse":
        return cls(
            **AuthUser.from_user(user).model_dump(),
            phone=user.phone,
            auth_provider=user.auth_provider,
            email_verified=user.email_verified,
            password_set=user.has_password,
            role_profile=user.role_profile,
            last_login_at=user.last_login_at,
        )


class OtpVerifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    valid: bool
    message: str


class LockoutInfoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identifier: str
    attempts: int
    max_attempts: int
    locked: bool
    locked_until: Optional[datetime] = None
    remaining_seconds: int = 0
