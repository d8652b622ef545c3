"""Unit tests for AuthService — the flows the HTTP layer calls."""

from datetime import timedelta

import pytest

from config import LockoutSettings
from errors import (
    AccountInactiveError,
    AccountLockedError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidInputError,
    OtpInvalidError,
    TokenInvalidError,
)
from infrastructure.oauth_clients import FederatedProfile
from services.auth_service import AuthService, RegistrationProfile
from services.registration_rules import Acceptances
from shared.crypto import verify_password

from fakes import PASSWORD

NEW_PASSWORD = "brand-new-pass-1"


def _patient(**overrides) -> RegistrationProfile:
    fields = dict(
        first_name="Luis",
        last_name="Rojas",
        role="patient",
        acceptances=Acceptances(terms_accepted=True),
    )
    fields.update(overrides)
    return RegistrationProfile(**fields)


def _google(**overrides) -> FederatedProfile:
    fields = dict(
        provider="google",
        provider_user_id="google-sub-9",
        email="luis@example.com",
        email_verified=True,
        given_name="Luis",
        family_name="Rojas",
    )
    fields.update(overrides)
    return FederatedProfile(**fields)


# ── Registration ──────────────────────────────────────────────────────────────


class TestRegister:
    async def test_creates_user_and_session(self, auth_service, token_service, clock):
        result = await auth_service.register("Luis@Example.com", PASSWORD, _patient())
        assert result.user.email == "luis@example.com"
        assert result.user.role == "patient"
        assert verify_password(PASSWORD, result.user.password_hash)

        claims = token_service.validate_access_token(result.access.token)
        assert claims.sub == result.user.user_id
        # Patient default: 24 h access, 30 day refresh
        assert result.access.expires_at == clock.now + timedelta(hours=24)
        assert result.refresh.expires_at == clock.now + timedelta(days=30)

    async def test_duplicate_email(self, auth_service, make_user):
        make_user(email="luis@example.com")
        with pytest.raises(EmailAlreadyRegisteredError):
            await auth_service.register("LUIS@example.com", PASSWORD, _patient())

    async def test_weak_password(self, auth_service):
        with pytest.raises(InvalidInputError) as exc:
            await auth_service.register("luis@example.com", "short", _patient())
        assert exc.value.field == "password"

    async def test_terms_required(self, auth_service):
        with pytest.raises(InvalidInputError):
            await auth_service.register(
                "luis@example.com", PASSWORD, _patient(acceptances=Acceptances())
            )

    async def test_clinic_owner_gets_tenant(self, auth_service):
        result = await auth_service.register(
            "owner@example.com",
            PASSWORD,
            _patient(
                role="clinic_owner",
                role_fields={"clinic_name": "Clinica Sol"},
                acceptances=Acceptances(True, True),
            ),
        )
        assert result.user.tenant_id is not None
        # Staff session: 4 h access
        assert result.access.expires_at - result.user.last_login_at == timedelta(hours=4)


# ── Login ─────────────────────────────────────────────────────────────────────


class TestLogin:
    async def test_success(self, auth_service, make_user, user_repo, clock):
        user = make_user()
        result = await auth_service.login("ana@example.com", PASSWORD)
        assert result.user.id == user.id
        assert user_repo.get(user.id).last_login_at == clock.now

    async def test_remember_me_extends_session(self, auth_service, make_user, clock):
        make_user()
        result = await auth_service.login("ana@example.com", PASSWORD, remember_me=True)
        assert result.access.expires_at == clock.now + timedelta(days=7)
        assert result.refresh.expires_at == clock.now + timedelta(days=90)

    async def test_wrong_password_reports_remaining(self, auth_service, make_user):
        make_user()
        with pytest.raises(InvalidCredentialsError) as exc:
            await auth_service.login("ana@example.com", "wrong-password")
        assert exc.value.details == {"attempts_remaining": 4}

    async def test_unknown_email_looks_the_same(self, auth_service):
        with pytest.raises(InvalidCredentialsError) as exc:
            await auth_service.login("ghost@example.com", "whatever-123")
        assert exc.value.message == "Invalid credentials"
        assert exc.value.details == {"attempts_remaining": 4}

    async def test_google_only_account_cannot_password_login(
        self, auth_service, make_user
    ):
        make_user(password_hash=None, google_id="g-1", auth_provider="google")
        with pytest.raises(InvalidCredentialsError):
            await auth_service.login("ana@example.com", "")

    async def test_locks_after_five_failures(self, auth_service, make_user):
        make_user()
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("ana@example.com", "wrong-password")
        # Correct password is refused while locked
        with pytest.raises(AccountLockedError) as exc:
            await auth_service.login("ana@example.com", PASSWORD)
        assert exc.value.remaining_seconds == 900
        assert exc.value.headers() == {"Retry-After": "900"}

    async def test_lock_expires(self, auth_service, make_user, clock):
        make_user()
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("ana@example.com", "wrong-password")
        clock.advance(minutes=15, seconds=1)
        result = await auth_service.login("ana@example.com", PASSWORD)
        assert result.user.email == "ana@example.com"

    async def test_success_clears_counter(self, auth_service, make_user, attempt_repo):
        make_user()
        with pytest.raises(InvalidCredentialsError):
            await auth_service.login("ana@example.com", "wrong-password")
        await auth_service.login("ana@example.com", PASSWORD)
        assert attempt_repo.records == {}

    async def test_inactive_account(self, auth_service, make_user):
        make_user(is_active=False)
        with pytest.raises(AccountInactiveError):
            await auth_service.login("ana@example.com", PASSWORD)

    async def test_tracks_ip_when_enabled(
        self,
        settings,
        user_repo,
        token_service,
        lockout_service,
        recovery_service,
        federated_service,
        sessions,
        attempt_repo,
        clock,
        make_user,
    ):
        service = AuthService(
            user_repo,
            token_service,
            lockout_service,
            recovery_service,
            federated_service,
            sessions,
            LockoutSettings(track_ip=True),
            clock=clock,
        )
        make_user()
        with pytest.raises(InvalidCredentialsError):
            await service.login("ana@example.com", "nope-nope", client_ip="203.0.113.7")
        assert set(attempt_repo.records) == {"ana@example.com", "203.0.113.7"}


# ── Refresh and logout ────────────────────────────────────────────────────────


class TestRefreshAndLogout:
    async def test_refresh_rotates(self, auth_service, make_user):
        make_user()
        first = await auth_service.login("ana@example.com", PASSWORD)
        second = await auth_service.refresh(first.refresh.token)
        assert second.refresh.token != first.refresh.token
        with pytest.raises(TokenInvalidError):
            await auth_service.refresh(first.refresh.token)

    async def test_refresh_refused_for_deactivated_user(
        self, auth_service, make_user, user_repo
    ):
        user = make_user()
        session = await auth_service.login("ana@example.com", PASSWORD)
        user_repo.get(user.id).is_active = False
        with pytest.raises(AccountInactiveError):
            await auth_service.refresh(session.refresh.token)
        assert user_repo.get(user.id).refresh_token is None

    async def test_logout_revokes_refresh(self, auth_service, make_user):
        user = make_user()
        session = await auth_service.login("ana@example.com", PASSWORD)
        await auth_service.logout(user.user_id)
        with pytest.raises(TokenInvalidError):
            await auth_service.refresh(session.refresh.token)


# ── Passwords ─────────────────────────────────────────────────────────────────


class TestChangePassword:
    async def test_requires_current_password(self, auth_service, make_user):
        user = make_user()
        with pytest.raises(InvalidCredentialsError) as exc:
            await auth_service.change_password(user.user_id, "wrong", NEW_PASSWORD)
        assert exc.value.field == "current_password"

    async def test_changes_password(self, auth_service, make_user, user_repo):
        user = make_user()
        await auth_service.change_password(user.user_id, PASSWORD, NEW_PASSWORD)
        assert verify_password(NEW_PASSWORD, user_repo.get(user.id).password_hash)

    async def test_google_account_sets_first_password(
        self, auth_service, make_user, user_repo
    ):
        user = make_user(password_hash=None, google_id="g-1", auth_provider="google")
        await auth_service.change_password(user.user_id, None, NEW_PASSWORD)
        assert verify_password(NEW_PASSWORD, user_repo.get(user.id).password_hash)


class TestRecoveryThroughFacade:
    async def test_otp_reset_clears_lockout(
        self, auth_service, make_user, email_provider
    ):
        make_user()
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.login("ana@example.com", "wrong-password")

        await auth_service.request_password_otp("ana@example.com")
        code = email_provider.otps[-1]["code"]
        verification = await auth_service.verify_password_otp("ana@example.com", code)
        assert verification.valid
        await auth_service.reset_password_with_otp("ana@example.com", code, NEW_PASSWORD)

        result = await auth_service.login("ana@example.com", NEW_PASSWORD)
        assert result.user.email == "ana@example.com"

    async def test_weak_new_password_checked_before_code(
        self, auth_service, make_user, email_provider, user_repo
    ):
        user = make_user()
        await auth_service.request_password_otp("ana@example.com")
        with pytest.raises(InvalidInputError):
            await auth_service.reset_password_with_otp("ana@example.com", "000000", "x")
        # The code was not touched
        assert user_repo.get(user.id).password_reset_otp_attempts == 0

    async def test_wrong_code(self, auth_service, make_user, email_provider):
        make_user()
        await auth_service.request_password_otp("ana@example.com")
        code = email_provider.otps[-1]["code"]
        wrong = "000000" if code != "000000" else "111111"
        with pytest.raises(OtpInvalidError):
            await auth_service.reset_password_with_otp("ana@example.com", wrong, NEW_PASSWORD)

    async def test_link_reset_revokes_sessions(
        self, auth_service, make_user, email_provider
    ):
        make_user()
        session = await auth_service.login("ana@example.com", PASSWORD)
        await auth_service.forgot_password("ana@example.com")
        token = email_provider.links[-1]["link"].split("token=", 1)[1]
        await auth_service.reset_password(token, NEW_PASSWORD)
        with pytest.raises(TokenInvalidError):
            await auth_service.refresh(session.refresh.token)


# ── Google ────────────────────────────────────────────────────────────────────


class TestGoogle:
    async def test_first_sign_in_is_pending(self, auth_service, token_service):
        result = await auth_service.google_login(_google())
        assert result.is_new_user
        assert result.user.is_pending
        assert token_service.validate_access_token(result.access.token).is_pending

    async def test_abandoned_role_selection_is_still_new(self, auth_service):
        await auth_service.google_login(_google())
        again = await auth_service.google_login(_google())
        assert again.is_new_user

    async def test_complete_registration_issues_role_token(
        self, auth_service, token_service
    ):
        pending = await auth_service.google_login(_google())
        done = await auth_service.complete_google_registration(
            pending.user.user_id,
            "nurse",
            {"cep_number": "108245"},
            Acceptances(True, True),
        )
        assert done.user.role == "nurse"
        claims = token_service.validate_access_token(done.access.token)
        assert claims.role == "nurse"

        later = await auth_service.google_login(_google())
        assert not later.is_new_user

    async def test_inactive_google_user(self, auth_service, make_user):
        make_user(email="luis@example.com", google_id="google-sub-9", is_active=False)
        with pytest.raises(AccountInactiveError):
            await auth_service.google_login(_google())
