"""
Authentication routes.

POST /auth/register                         — create a password account
POST /auth/login                            — email + password
POST /auth/refresh                          — rotate the refresh token (body or cookie)
POST /auth/logout                           — revoke the refresh token, clear cookies
GET  /auth/me                               — current user's profile
POST /auth/change-password
POST /auth/forgot-password                  — mail a reset link
POST /auth/reset-password                   — consume a reset link token
POST /auth/password-reset/request-otp       — mail a 6-digit code
POST /auth/password-reset/verify-otp        — check a code without consuming it
POST /auth/password-reset/reset-with-otp    — set a new password with a code
GET  /auth/google                           — start Google sign-in
GET  /auth/google/callback                  — finish Google sign-in, redirect to app
POST /auth/google/complete-registration     — pending Google user picks a role

Every endpoint that issues tokens returns them in the body (mobile) and sets
them as HttpOnly cookies (web).
"""

from __future__ import annotations

import json
from typing import Optional
from urllib.parse import urlencode, urlsplit

from authlib.integrations.base_client import OAuthError
from fastapi import APIRouter, Body, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from config import AppSettings
from dependencies import (
    get_auth_service,
    get_claims_allow_pending,
    get_current_claims,
    get_settings,
)
from errors import AppError, ServiceUnavailableError, TokenInvalidError
from infrastructure.oauth_clients import (
    GOOGLE,
    PLATFORM_MOBILE,
    PLATFORM_WEB,
    fetch_google_profile,
    generate_oauth_state,
    verify_oauth_state,
)
from schemas.dto.requests.auth import (
    ChangePasswordRequest,
    CompleteRegistrationRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    RequestOtpRequest,
    ResetPasswordRequest,
    ResetWithOtpRequest,
    VerifyOtpRequest,
)
from schemas.dto.responses.auth import (
    AuthResponse,
    AuthUser,
    GoogleAuthResponse,
    OtpVerifyResponse,
    ProfileResponse,
    SessionInfo,
)
from schemas.dto.responses.common import MessageResponse
from schemas.models.token import AccessTokenClaims
from services.auth_service import AuthResult, AuthService, RegistrationProfile
from services.registration_rules import Acceptances
from shared.datetime_utils import utcnow
from shared.logging import get_logger
from shared.request_context import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    get_client_ip,
    get_refresh_cookie,
)
from shared.validators import is_allowed_redirect

log = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Helpers ───────────────────────────────────────────────────────────────────


def _max_age(expires_at) -> int:
    return max(0, int((expires_at - utcnow()).total_seconds()))


def _set_auth_cookies(response: Response, result: AuthResult, secure: bool) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        value=result.access.token,
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
        max_age=_max_age(result.access.expires_at),
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=result.refresh.token,
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
        max_age=_max_age(result.refresh.expires_at),
    )


def _clear_auth_cookies(response: Response, secure: bool) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", secure=secure, httponly=True, samesite="lax")


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        access_token=result.access.token,
        refresh_token=result.refresh.token,
        user=AuthUser.from_user(result.user),
        session=SessionInfo(
            expires_at=result.access.expires_at,
            refresh_expires_at=result.refresh.expires_at,
        ),
    )


def _acceptances(body) -> Acceptances:
    return Acceptances(
        terms_accepted=body.terms_accepted,
        professional_disclaimer_accepted=body.professional_disclaimer_accepted,
    )


# ── Password auth ─────────────────────────────────────────────────────────────


@router.post("/register", status_code=201, response_model=AuthResponse)
async def register(
    body: RegisterRequest,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> AuthResponse:
    profile = RegistrationProfile(
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
        phone=body.phone,
        role_fields=body.role_fields(),
        acceptances=_acceptances(body),
    )
    result = await auth.register(str(body.email), body.password, profile)
    _set_auth_cookies(response, result, settings.jwt.cookie_secure)
    return _auth_response(result)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> AuthResponse:
    result = await auth.login(
        body.email,
        body.password,
        remember_me=body.remember_me,
        client_ip=get_client_ip(request, settings.trusted_proxies) or None,
    )
    _set_auth_cookies(response, result, settings.jwt.cookie_secure)
    return _auth_response(result)


@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = Body(default=None),
    auth: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> AuthResponse:
    token = (body.refresh_token if body else None) or get_refresh_cookie(request)
    if not token:
        raise TokenInvalidError("Refresh token is required")
    result = await auth.refresh(token)
    _set_auth_cookies(response, result, settings.jwt.cookie_secure)
    return _auth_response(result)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    claims: AccessTokenClaims = Depends(get_claims_allow_pending),
    auth: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> MessageResponse:
    await auth.logout(claims.user_id)
    _clear_auth_cookies(response, settings.jwt.cookie_secure)
    return MessageResponse(success=True, message="Logged out")


@router.get("/me", response_model=ProfileResponse)
async def me(
    claims: AccessTokenClaims = Depends(get_claims_allow_pending),
    auth: AuthService = Depends(get_auth_service),
) -> ProfileResponse:
    user = await auth.get_profile(claims.user_id)
    return ProfileResponse.from_user(user)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    claims: AccessTokenClaims = Depends(get_current_claims),
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth.change_password(claims.user_id, body.current_password, body.new_password)
    return MessageResponse(success=True, message="Password updated")


# ── Recovery ──────────────────────────────────────────────────────────────────


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    message = await auth.forgot_password(body.email, body.platform)
    return MessageResponse(success=True, message=message)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth.reset_password(body.token, body.new_password)
    return MessageResponse(success=True, message="Your password has been updated")


@router.post("/password-reset/request-otp", response_model=MessageResponse)
async def request_password_otp(
    body: RequestOtpRequest,
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    message = await auth.request_password_otp(body.email, body.platform)
    return MessageResponse(success=True, message=message)


@router.post("/password-reset/verify-otp", response_model=OtpVerifyResponse)
async def verify_password_otp(
    body: VerifyOtpRequest,
    auth: AuthService = Depends(get_auth_service),
) -> OtpVerifyResponse:
    result = await auth.verify_password_otp(body.email, body.otp)
    return OtpVerifyResponse(valid=result.valid, message=result.message)


@router.post("/password-reset/reset-with-otp", response_model=MessageResponse)
async def reset_password_with_otp(
    body: ResetWithOtpRequest,
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth.reset_password_with_otp(body.email, body.otp, body.new_password)
    return MessageResponse(success=True, message="Your password has been updated")


# ── Google ────────────────────────────────────────────────────────────────────


def _google_client(request: Request):
    providers = getattr(request.app.state, "oauth_providers", None) or {}
    client = providers.get(GOOGLE)
    if client is None:
        raise ServiceUnavailableError("Google sign-in is not configured")
    return client


def _callback_url(request: Request, settings: AppSettings) -> str:
    return settings.oauth.google_oauth_redirect_uri or str(
        request.url_for("google_callback")
    )


@router.get("/google")
async def google_start(
    request: Request,
    platform: str = Query(default=PLATFORM_WEB),
    redirect_uri: Optional[str] = Query(default=None),
    settings: AppSettings = Depends(get_settings),
):
    client = _google_client(request)
    if redirect_uri and not is_allowed_redirect(
        redirect_uri,
        settings.recovery.allowed_redirect_origins,
        settings.recovery.mobile_app_scheme,
    ):
        log.warning("oauth_redirect_rejected", origin=urlsplit(redirect_uri).netloc)
        redirect_uri = None
    if platform not in (PLATFORM_WEB, PLATFORM_MOBILE):
        platform = PLATFORM_WEB

    state = generate_oauth_state(GOOGLE, platform, redirect_uri)
    return await client.authorize_redirect(
        request, _callback_url(request, settings), state=state
    )


def _success_target(
    settings: AppSettings, platform: str, redirect_uri: Optional[str], query: str
) -> str:
    if platform == PLATFORM_MOBILE:
        return f"{settings.recovery.mobile_app_scheme}://oauth/callback?{query}"
    if redirect_uri and is_allowed_redirect(
        redirect_uri, settings.recovery.allowed_redirect_origins
    ):
        joiner = "&" if urlsplit(redirect_uri).query else "?"
        return f"{redirect_uri}{joiner}{query}"
    base = settings.recovery.frontend_url.rstrip("/")
    return f"{base}/#/auth/google/callback?{query}"


def _error_target(
    settings: AppSettings, platform: str, redirect_uri: Optional[str]
) -> str:
    error = urlencode({"error": "google_auth_failed"})
    if platform == PLATFORM_MOBILE:
        return f"{settings.recovery.mobile_app_scheme}://oauth/callback?{error}"
    if redirect_uri and is_allowed_redirect(
        redirect_uri, settings.recovery.allowed_redirect_origins
    ):
        parts = urlsplit(redirect_uri)
        return f"{parts.scheme}://{parts.netloc}/auth/login?{error}"
    base = settings.recovery.frontend_url.rstrip("/")
    return f"{base}/#/authentication/signin?{error}"


@router.get("/google/callback", name="google_callback")
async def google_callback(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> RedirectResponse:
    client = _google_client(request)
    valid, state_data, reason = verify_oauth_state(
        request.query_params.get("state", ""), GOOGLE
    )
    platform = state_data.get("platform", PLATFORM_WEB)
    redirect_uri = state_data.get("redirect_uri")

    if not valid:
        log.warning("oauth_state_invalid", provider=GOOGLE, reason=reason)
        return RedirectResponse(_error_target(settings, platform, redirect_uri), 302)

    try:
        token = await client.authorize_access_token(request)
        profile = await fetch_google_profile(client, token)
        result = await auth.google_login(profile)
    except OAuthError as e:
        log.warning("oauth_callback_failed", provider=GOOGLE, error=e.error)
        return RedirectResponse(_error_target(settings, platform, redirect_uri), 302)
    except AppError as e:
        log.warning("oauth_login_refused", provider=GOOGLE, error_code=e.error_code)
        return RedirectResponse(_error_target(settings, platform, redirect_uri), 302)

    query = urlencode(
        {
            "access_token": result.access.token,
            "refresh_token": result.refresh.token,
            "user": json.dumps(
                AuthUser.from_user(result.user).model_dump(by_alias=True)
            ),
            "is_new_user": "true" if result.is_new_user else "false",
        }
    )
    response = RedirectResponse(
        _success_target(settings, platform, redirect_uri, query), 302
    )
    if platform == PLATFORM_WEB:
        _set_auth_cookies(response, result, settings.jwt.cookie_secure)
    return response


@router.post("/google/complete-registration", response_model=GoogleAuthResponse)
async def complete_google_registration(
    body: CompleteRegistrationRequest,
    response: Response,
    claims: AccessTokenClaims = Depends(get_claims_allow_pending),
    auth: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> GoogleAuthResponse:
    result = await auth.complete_google_registration(
        claims.user_id, body.role, body.role_fields(), _acceptances(body)
    )
    _set_auth_cookies(response, result, settings.jwt.cookie_secure)
    return GoogleAuthResponse(**_auth_response(result).model_dump(), is_new_user=False)
