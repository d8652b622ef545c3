"""
Shared fixtures: settings built in code, in-memory repositories, a settable
clock, and the full service graph wired the way app.attach_services does it.
"""

from __future__ import annotations

import pytest

from config import (
    AppSettings,
    DatabaseSettings,
    EmailSettings,
    JWTSettings,
    LockoutSettings,
    LoggingSettings,
    OAuthProviderSettings,
    RecoverySettings,
    RedisSettings,
    SentrySettings,
    SessionSettings,
)
from fakes import (
    PASSWORD,
    T0,
    FakeClock,
    FakeEmailProvider,
    FakeLoginAttemptRepository,
    FakeThrottle,
    FakeUserRepository,
)
from schemas.models.user import UserDoc
from services.auth_service import AuthService
from services.federated_identity_service import FederatedIdentityService
from services.lockout_service import LockoutService
from services.password_recovery_service import PasswordRecoveryService
from services.session_policy import SessionPolicy
from services.token_service import TokenService
from shared.crypto import hash_password


@pytest.fixture(autouse=True)
def disable_dotenv_loading(monkeypatch):
    """Keep pydantic-settings away from a developer's real .env file."""
    import pydantic_settings.sources.providers.dotenv as ps_dotenv

    monkeypatch.setattr(ps_dotenv, "dotenv_values", lambda *a, **kw: {})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def jwt_settings() -> JWTSettings:
    return JWTSettings(
        jwt_secret="unit-test-secret-with-enough-length",
        jwt_private_key="",
        jwt_public_key="",
        cookie_secure=False,
    )


@pytest.fixture
def lockout_settings() -> LockoutSettings:
    return LockoutSettings(
        max_attempts=5,
        base_lockout_seconds=900,
        attempt_window_seconds=3600,
        max_lockout_seconds=86400,
        progressive=True,
        fail_open=False,
        track_ip=False,
    )


@pytest.fixture
def recovery_settings() -> RecoverySettings:
    return RecoverySettings(
        frontend_url="https://app.histora.test",
        care_app_url="https://care.histora.test",
        mobile_app_scheme="historacare",
        allowed_redirect_origins=["https://app.histora.test"],
    )


@pytest.fixture
def settings(jwt_settings, lockout_settings, recovery_settings) -> AppSettings:
    return AppSettings(
        secret_key="session-secret",
        env="test",
        db=DatabaseSettings(mongodb_uri="mongodb://localhost:27017/"),
        redis=RedisSettings(redis_uri=None),
        jwt=jwt_settings,
        session=SessionSettings(),
        lockout=lockout_settings,
        recovery=recovery_settings,
        oauth=OAuthProviderSettings(
            google_oauth_client_id="", google_oauth_client_secret=""
        ),
        email=EmailSettings(zepto_api_token="test-token"),
        logging=LoggingSettings(log_level="WARNING", log_format="console"),
        sentry=SentrySettings(sentry_dsn=""),
    )


@pytest.fixture
def user_repo() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def attempt_repo() -> FakeLoginAttemptRepository:
    return FakeLoginAttemptRepository()


@pytest.fixture
def email_provider() -> FakeEmailProvider:
    return FakeEmailProvider()


@pytest.fixture
def throttle() -> FakeThrottle:
    return FakeThrottle()


@pytest.fixture
def sessions(settings) -> SessionPolicy:
    return SessionPolicy(settings.session)


@pytest.fixture
def token_service(settings, user_repo, sessions, clock) -> TokenService:
    return TokenService(settings.jwt, user_repo, sessions, clock=clock)


@pytest.fixture
def lockout_service(settings, attempt_repo, clock) -> LockoutService:
    return LockoutService(settings.lockout, attempt_repo, clock=clock)


@pytest.fixture
def recovery_service(
    settings, user_repo, email_provider, throttle, clock
) -> PasswordRecoveryService:
    return PasswordRecoveryService(
        settings.recovery, user_repo, email_provider, throttle, clock=clock
    )


@pytest.fixture
def federated_service(user_repo, clock) -> FederatedIdentityService:
    return FederatedIdentityService(user_repo, clock=clock)


@pytest.fixture
def auth_service(
    settings,
    user_repo,
    token_service,
    lockout_service,
    recovery_service,
    federated_service,
    sessions,
    clock,
) -> AuthService:
    return AuthService(
        user_repo,
        token_service,
        lockout_service,
        recovery_service,
        federated_service,
        sessions,
        settings.lockout,
        clock=clock,
    )


@pytest.fixture(scope="session")
def password_hash() -> str:
    return hash_password(PASSWORD)


@pytest.fixture
def make_user(user_repo, password_hash):
    """Insert a user straight into the fake store and return a copy."""

    def _make(**overrides) -> UserDoc:
        fields = dict(
            email="ana@example.com",
            password_hash=password_hash,
            role="patient",
            first_name="Ana",
            last_name="Quispe",
            terms_accepted=True,
        )
        fields.update(overrides)
        return user_repo.add(UserDoc(**fields))

    return _make
