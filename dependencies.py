"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain functions used with
FastAPI's Depends() system. Services are built once in the app lifespan and
read from app.state, so tests can swap any of them by building the app with
their own lifespan.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from config import AppSettings
from errors import ForbiddenError, TokenInvalidError
from schemas.models.token import AccessTokenClaims
from services.auth_service import AuthService
from services.lockout_service import LockoutService
from services.token_service import TokenService
from shared.request_context import get_bearer_token


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


# ── Services ─────────────────────────────────────────────────────────────────


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_lockout_service(request: Request) -> LockoutService:
    return request.app.state.lockout_service


# ── Auth ─────────────────────────────────────────────────────────────────────


def get_claims_allow_pending(
    request: Request,
    tokens: TokenService = Depends(get_token_service),
) -> AccessTokenClaims:
    """Validated access-token claims; role-less (pending) users pass."""
    token = get_bearer_token(request)
    if not token:
        raise TokenInvalidError("Authentication required")
    return tokens.validate_access_token(token)


def get_current_claims(
    claims: AccessTokenClaims = Depends(get_claims_allow_pending),
) -> AccessTokenClaims:
    """Validated claims of a user who has a role."""
    if claims.is_pending:
        raise ForbiddenError(
            "Complete your registration to continue",
            details={"registration_pending": True},
        )
    return claims


def require_role(*roles: str) -> Callable[..., AccessTokenClaims]:
    """Dependency factory: current claims, restricted to *roles*."""

    def _check(
        claims: AccessTokenClaims = Depends(get_current_claims),
    ) -> AccessTokenClaims:
        if claims.role not in roles:
            raise ForbiddenError("You do not have permission to perform this action")
        return claims

    return _check
