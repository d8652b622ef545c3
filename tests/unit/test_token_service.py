"""Unit tests for TokenService: access JWTs and refresh-token rotation."""

import asyncio
from datetime import timedelta

import jwt
import pytest

from config import JWTSettings
from errors import TokenExpiredError, TokenInvalidError
from services.token_service import TokenService
from shared.crypto import hash_token


# ── Access tokens ─────────────────────────────────────────────────────────────


class TestAccessTokens:
    def test_issue_and_validate_round_trip(self, token_service, make_user, clock):
        user = make_user()
        issued = token_service.issue_access_token(user, timedelta(hours=1))
        assert issued.expires_at == clock.now + timedelta(hours=1)

        claims = token_service.validate_access_token(issued.token)
        assert claims.sub == user.user_id
        assert claims.email == "ana@example.com"
        assert claims.role == "patient"
        assert claims.ver == 1
        assert claims.exp == int((clock.now + timedelta(hours=1)).timestamp())

    def test_uses_hs256_without_rsa_keys(self, token_service):
        assert token_service.algorithm == "HS256"

    def test_missing_secret_refuses_to_start(self, settings, user_repo, sessions):
        bad = JWTSettings(jwt_secret="", jwt_private_key="", jwt_public_key="")
        with pytest.raises(RuntimeError):
            TokenService(bad, user_repo, sessions)

    def test_clinic_owner_carries_tenant(self, token_service, make_user):
        from bson import ObjectId

        tenant = ObjectId()
        user = make_user(role="clinic_owner", tenant_id=tenant)
        issued = token_service.issue_access_token(user, timedelta(hours=1))
        claims = token_service.validate_access_token(issued.token)
        assert claims.tenant_id == str(tenant)

    def test_pending_user_has_no_role_claim(self, token_service, make_user):
        user = make_user(role=None, google_id="g-1", password_hash=None)
        issued = token_service.issue_access_token(user, timedelta(hours=1))
        payload = jwt.decode(issued.token, options={"verify_signature": False})
        assert "role" not in payload
        assert token_service.validate_access_token(issued.token).is_pending

    def test_expired_by_injected_clock(self, token_service, make_user, clock):
        user = make_user()
        issued = token_service.issue_access_token(user, timedelta(minutes=5))
        clock.advance(minutes=5)
        with pytest.raises(TokenExpiredError):
            token_service.validate_access_token(issued.token)

    def test_tampered_signature_rejected(self, token_service, make_user):
        user = make_user()
        issued = token_service.issue_access_token(user, timedelta(hours=1))
        head, body, sig = issued.token.split(".")
        forged = ".".join([head, body, sig[:-2] + ("AA" if sig[-2:] != "AA" else "BB")])
        with pytest.raises(TokenInvalidError):
            token_service.validate_access_token(forged)

    def test_wrong_audience_rejected(self, token_service, jwt_settings, make_user, clock):
        user = make_user()
        payload = {
            "ver": 1,
            "sub": user.user_id,
            "email": user.email,
            "iss": jwt_settings.jwt_issuer,
            "aud": "someone-else",
            "iat": int(clock.now.timestamp()),
            "exp": int((clock.now + timedelta(hours=1)).timestamp()),
        }
        token = jwt.encode(payload, jwt_settings.jwt_secret, algorithm="HS256")
        with pytest.raises(TokenInvalidError):
            token_service.validate_access_token(token)

    def test_unknown_claims_version_rejected(
        self, token_service, jwt_settings, make_user, clock
    ):
        user = make_user()
        payload = {
            "ver": 99,
            "sub": user.user_id,
            "email": user.email,
            "iss": jwt_settings.jwt_issuer,
            "aud": jwt_settings.jwt_audience,
            "iat": int(clock.now.timestamp()),
            "exp": int((clock.now + timedelta(hours=1)).timestamp()),
        }
        token = jwt.encode(payload, jwt_settings.jwt_secret, algorithm="HS256")
        with pytest.raises(TokenInvalidError):
            token_service.validate_access_token(token)

    def test_extra_claims_rejected(self, token_service, jwt_settings, make_user, clock):
        user = make_user()
        payload = {
            "ver": 1,
            "sub": user.user_id,
            "email": user.email,
            "iss": jwt_settings.jwt_issuer,
            "aud": jwt_settings.jwt_audience,
            "iat": int(clock.now.timestamp()),
            "exp": int((clock.now + timedelta(hours=1)).timestamp()),
            "is_admin": True,
        }
        token = jwt.encode(payload, jwt_settings.jwt_secret, algorithm="HS256")
        with pytest.raises(TokenInvalidError):
            token_service.validate_access_token(token)

    def test_garbage_rejected(self, token_service):
        with pytest.raises(TokenInvalidError):
            token_service.validate_access_token("not-a-jwt")


# ── Refresh tokens ────────────────────────────────────────────────────────────


class TestRefreshTokens:
    async def test_issue_stores_only_digest(self, token_service, make_user, user_repo):
        user = make_user()
        issued = await token_service.issue_refresh_token(user.id, timedelta(days=7))
        assert len(issued.token) == 128
        stored = user_repo.get(user.id)
        assert stored.refresh_token == hash_token(issued.token)
        assert stored.refresh_token != issued.token

    async def test_new_token_revokes_previous(self, token_service, make_user):
        user = make_user()
        first = await token_service.issue_refresh_token(user.id, timedelta(days=7))
        await token_service.issue_refresh_token(user.id, timedelta(days=7))
        with pytest.raises(TokenInvalidError):
            await token_service.rotate_on_refresh(first.token)

    async def test_rotation_returns_new_token(self, token_service, make_user, user_repo):
        user = make_user()
        old = await token_service.issue_refresh_token(user.id, timedelta(days=7))
        rotated = await token_service.rotate_on_refresh(old.token)
        assert rotated.refresh.token != old.token
        assert rotated.user.id == user.id
        assert user_repo.get(user.id).refresh_token == hash_token(rotated.refresh.token)

    async def test_old_token_unusable_after_rotation(self, token_service, make_user):
        user = make_user()
        old = await token_service.issue_refresh_token(user.id, timedelta(days=7))
        await token_service.rotate_on_refresh(old.token)
        with pytest.raises(TokenInvalidError):
            await token_service.rotate_on_refresh(old.token)

    async def test_concurrent_rotation_has_one_winner(self, token_service, make_user):
        user = make_user()
        old = await token_service.issue_refresh_token(user.id, timedelta(days=7))
        results = await asyncio.gather(
            token_service.rotate_on_refresh(old.token),
            token_service.rotate_on_refresh(old.token),
            return_exceptions=True,
        )
        wins = [r for r in results if not isinstance(r, Exception)]
        losses = [r for r in results if isinstance(r, TokenInvalidError)]
        assert len(wins) == 1
        assert len(losses) == 1

    async def test_expired_refresh_rejected(self, token_service, make_user, clock):
        user = make_user()
        old = await token_service.issue_refresh_token(user.id, timedelta(days=1))
        clock.advance(days=1, seconds=1)
        with pytest.raises(TokenInvalidError):
            await token_service.rotate_on_refresh(old.token)

    async def test_rotation_keeps_longer_remember_me_horizon(
        self, token_service, make_user, clock
    ):
        user = make_user()  # patient: 30 days standard, 90 days remembered
        old = await token_service.issue_refresh_token(user.id, timedelta(days=90))
        rotated = await token_service.rotate_on_refresh(old.token)
        assert rotated.refresh.expires_at == clock.now + timedelta(days=90)

    async def test_rotation_extends_to_standard_lifetime(
        self, token_service, make_user, clock
    ):
        user = make_user()
        old = await token_service.issue_refresh_token(user.id, timedelta(days=2))
        rotated = await token_service.rotate_on_refresh(old.token)
        assert rotated.refresh.expires_at == clock.now + timedelta(days=30)

    async def test_unknown_and_empty_tokens_rejected(self, token_service):
        with pytest.raises(TokenInvalidError):
            await token_service.rotate_on_refresh("f" * 128)
        with pytest.raises(TokenInvalidError):
            await token_service.rotate_on_refresh("")

    async def test_revoke_clears_slot(self, token_service, make_user, user_repo):
        user = make_user()
        issued = await token_service.issue_refresh_token(user.id, timedelta(days=7))
        await token_service.revoke(user.id)
        assert user_repo.get(user.id).refresh_token is None
        with pytest.raises(TokenInvalidError):
            await token_service.rotate_on_refresh(issued.token)

    async def test_revoke_none_is_noop(self, token_service):
        await token_service.revoke(None)
