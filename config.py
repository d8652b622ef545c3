"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

Sub-configs are composed onto AppSettings in a model_validator so each
component can be handed only the slice it needs (the lockout guard gets
LockoutSettings, the token service gets JWTSettings, and so on).
"""

from __future__ import annotations

import ipaddress
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "histora"
    # Short server-selection timeout so an outage surfaces quickly instead of
    # hanging the request (see LockoutSettings.fail_open)
    server_selection_timeout_ms: int = 2000
    # Per-call budget and retry count for user-store operations
    store_timeout_ms: int = 3000
    store_retries: int = 1


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Optional — without Redis the OTP request throttle is disabled
    redis_uri: Optional[str] = None


class JWTSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    jwt_issuer: str = "histora"
    jwt_audience: str = "histora.api"
    cookie_secure: bool = True

    # RS256 keys (preferred)
    jwt_private_key: str = ""
    jwt_public_key: str = ""

    # HS256 fallback (used when RS256 keys are absent)
    jwt_secret: str = ""

    @property
    def use_rs256(self) -> bool:
        return bool(self.jwt_private_key and self.jwt_public_key)


class RoleSessionPolicy(BaseModel):
    """Token lifetimes for one role, with the extended "remember me" variant."""

    access_ttl_seconds: int
    refresh_ttl_days: int
    remember_access_ttl_seconds: int
    remember_refresh_ttl_days: int


_HOUR = 3600
_DAY = 24 * _HOUR


def _default_role_policies() -> dict[str, RoleSessionPolicy]:
    return {
        # Patients need quick access in emergencies, so sessions are long
        "patient": RoleSessionPolicy(
            access_ttl_seconds=_DAY,
            refresh_ttl_days=30,
            remember_access_ttl_seconds=7 * _DAY,
            remember_refresh_ttl_days=90,
        ),
        "nurse": RoleSessionPolicy(
            access_ttl_seconds=4 * _HOUR,
            refresh_ttl_days=7,
            remember_access_ttl_seconds=_DAY,
            remember_refresh_ttl_days=30,
        ),
        "clinic_owner": RoleSessionPolicy(
            access_ttl_seconds=4 * _HOUR,
            refresh_ttl_days=7,
            remember_access_ttl_seconds=_DAY,
            remember_refresh_ttl_days=30,
        ),
        "platform_admin": RoleSessionPolicy(
            access_ttl_seconds=2 * _HOUR,
            refresh_ttl_days=1,
            remember_access_ttl_seconds=4 * _HOUR,
            remember_refresh_ttl_days=7,
        ),
        "default": RoleSessionPolicy(
            access_ttl_seconds=_HOUR,
            refresh_ttl_days=1,
            remember_access_ttl_seconds=7 * _DAY,
            remember_refresh_ttl_days=30,
        ),
    }


class SessionSettings(BaseSettings):
    """Per-role token lifetimes.

    Override with a JSON env var, e.g.
    SESSION_ROLE_POLICIES='{"patient": {"access_ttl_seconds": 3600, ...}}'.
    Roles missing from the mapping fall back to the "default" entry.
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", env_prefix="SESSION_"
    )

    role_policies: dict[str, RoleSessionPolicy] = _default_role_policies()

    @model_validator(mode="after")
    def _ensure_default_policy(self) -> "SessionSettings":
        if "default" not in self.role_policies:
            self.role_policies["default"] = _default_role_policies()["default"]
        return self


class LockoutSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", env_prefix="LOCKOUT_"
    )

    max_attempts: int = 5
    base_lockout_seconds: int = 15 * 60
    attempt_window_seconds: int = 60 * 60
    max_lockout_seconds: int = 24 * 60 * 60
    progressive: bool = True

    # Inactive records are removed by the Mongo TTL monitor after this long
    record_ttl_seconds: int = 24 * 60 * 60

    # Store round-trip budget; a timed-out call counts as a store failure
    store_timeout_ms: int = 250
    store_retries: int = 2

    # False: reject logins while the counter store is unreachable.
    # True: let logins through unprotected and log lockout_store_fail_open.
    fail_open: bool = False

    # Also count failures per client IP, not only per email
    track_ip: bool = False


class RecoverySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    otp_ttl_seconds: int = 600
    otp_max_attempts: int = 5
    # Max OTP emails per address per hour (needs Redis)
    otp_requests_per_hour: int = 3

    reset_token_ttl_hours: int = 24

    frontend_url: str = "http://localhost:4200"
    care_app_url: str = "http://localhost:8100"
    mobile_app_scheme: str = "historacare"

    # Origins the Google callback may redirect back to
    allowed_redirect_origins: list[str] = [
        "http://localhost:4200",
        "http://localhost:8100",
    ]


class OAuthProviderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    google_oauth_client_id: str = ""
    google_oauth_client_secret: str = ""
    google_oauth_redirect_uri: str = ""


class EmailSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    zepto_api_token: str = ""
    zepto_from_email: str = "noreply@historahealth.com"
    zepto_from_name: str = "Histora"


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    # PII stays off: this service handles patient identities
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    secret_key: str = ""
    env: str = "development"
    app_name: str = "histora-auth"

    cors_origins: list[str] = ["http://localhost:4200", "http://localhost:8100"]

    # Peers (IPs or CIDRs) whose forwarded-for headers are believed; empty
    # means the socket peer is always taken as the client address
    trusted_proxies: list[str] = []

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    redis: Optional[RedisSettings] = None
    jwt: Optional[JWTSettings] = None
    session: Optional[SessionSettings] = None
    lockout: Optional[LockoutSettings] = None
    recovery: Optional[RecoverySettings] = None
    oauth: Optional[OAuthProviderSettings] = None
    email: Optional[EmailSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @field_validator("trusted_proxies")
    @classmethod
    def _check_proxies(cls, value: list[str]) -> list[str]:
        for entry in value:
            ipaddress.ip_network(entry, strict=False)
        return value

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        # Populate sub-configs from the same env/dotenv source
        if self.db is None:
            self.db = DatabaseSettings()
        if self.redis is None:
            self.redis = RedisSettings()
        if self.jwt is None:
            self.jwt = JWTSettings()
        if self.session is None:
            self.session = SessionSettings()
        if self.lockout is None:
            self.lockout = LockoutSettings()
        if self.recovery is None:
            self.recovery = RecoverySettings()
        if self.oauth is None:
            self.oauth = OAuthProviderSettings()
        if self.email is None:
            self.email = EmailSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()
        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"
