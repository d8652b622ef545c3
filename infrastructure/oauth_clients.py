"""Google OAuth client (Authlib) and the helpers around it.

The Authlib client is registered once in create_app() and stored on
app.state. Authlib keeps the state value in the Starlette session and
checks it on callback; the state itself carries where to send the user
afterwards (web or mobile, plus an optional redirect target) so nothing
else has to live in the session.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

from authlib.integrations.starlette_client import OAuth

from config import OAuthProviderSettings
from shared.logging import get_logger

log = get_logger(__name__)

GOOGLE = "google"
GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"

STATE_MAX_AGE_SECONDS = 600

PLATFORM_WEB = "web"
PLATFORM_MOBILE = "mobile"
PLATFORMS = (PLATFORM_WEB, PLATFORM_MOBILE)


@dataclass(frozen=True)
class FederatedProfile:
    """What the rest of the service needs from an external identity."""

    provider: str
    provider_user_id: str
    email: str
    email_verified: bool
    given_name: str = ""
    family_name: str = ""
    picture: str = ""


# ── Authlib init ─────────────────────────────────────────────────────────────


def init_oauth(settings: OAuthProviderSettings) -> Tuple[Optional[OAuth], Dict[str, Any]]:
    """Initialise the Authlib OAuth registry for FastAPI/Starlette.

    Returns (oauth, providers_dict) — store both on app.state in create_app().
    Returns (None, {}) if Google is not configured.
    """
    if not (settings.google_oauth_client_id and settings.google_oauth_client_secret):
        log.warning("oauth_no_providers_configured")
        return None, {}

    oauth = OAuth()
    google = oauth.register(
        name=GOOGLE,
        client_id=settings.google_oauth_client_id,
        client_secret=settings.google_oauth_client_secret,
        server_metadata_url=GOOGLE_METADATA_URL,
        client_kwargs={
            "scope": "openid email profile",
            "prompt": "select_account",
        },
    )
    log.info("oauth_provider_initialized", provider=GOOGLE)
    return oauth, {GOOGLE: google}


# ── State utilities ───────────────────────────────────────────────────────────


def generate_oauth_state(
    provider: str,
    platform: str = PLATFORM_WEB,
    redirect_uri: Optional[str] = None,
) -> str:
    """Generate a URL-safe state string for CSRF protection."""
    parts = {
        "provider": provider,
        "platform": platform,
        "nonce": secrets.token_urlsafe(32),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if redirect_uri:
        parts["redirect_uri"] = redirect_uri
    return urlencode(parts)


def verify_oauth_state(
    state: str, expected_provider: str
) -> Tuple[bool, Dict[str, str], Optional[str]]:
    """Verify and decode an OAuth state string.

    Returns (is_valid, state_data, failure_reason).
    failure_reason is None on success; one of "provider_mismatch",
    "missing_timestamp", "expired", or "parse_error" on failure.
    """
    try:
        state_data = dict(parse_qsl(state, keep_blank_values=True))

        if state_data.get("provider") != expected_provider:
            return False, {}, "provider_mismatch"

        timestamp_str = state_data.get("timestamp")
        if not timestamp_str:
            return False, {}, "missing_timestamp"

        timestamp = datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
        age = (datetime.now(timezone.utc) - timestamp).total_seconds()
        if age > STATE_MAX_AGE_SECONDS:
            return False, {}, "expired"

        if state_data.get("platform") not in PLATFORMS:
            state_data["platform"] = PLATFORM_WEB
        return True, state_data, None
    except (ValueError, TypeError):
        return False, {}, "parse_error"


# ── User-info extraction ──────────────────────────────────────────────────────


def extract_user_info_from_google(userinfo: Dict[str, Any]) -> FederatedProfile:
    email_verified = userinfo.get("email_verified", False)
    # Some Google responses send the flag as a string
    if isinstance(email_verified, str):
        email_verified = email_verified.lower() == "true"
    return FederatedProfile(
        provider=GOOGLE,
        provider_user_id=str(userinfo.get("sub", "")),
        email=(userinfo.get("email") or "").lower().strip(),
        email_verified=bool(email_verified),
        given_name=userinfo.get("given_name") or "",
        family_name=userinfo.get("family_name") or "",
        picture=userinfo.get("picture") or "",
    )


async def fetch_google_profile(client: Any, token: Dict[str, Any]) -> FederatedProfile:
    """Profile from the ID token's userinfo, or the userinfo endpoint."""
    userinfo = token.get("userinfo")
    if userinfo is None:
        userinfo = await client.userinfo(token=token)
    return extract_user_info_from_google(dict(userinfo))
