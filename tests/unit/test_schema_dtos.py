"""Unit tests for request and response DTOs."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from schemas.dto.requests.auth import (
    CompleteRegistrationRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetWithOtpRequest,
    VerifyOtpRequest,
)
from schemas.dto.responses.auth import AuthUser, ProfileResponse
from schemas.dto.responses.common import ErrorResponse, MessageResponse
from schemas.models.user import UserDoc


class TestRegisterRequest:
    def test_accepts_camel_case(self):
        req = RegisterRequest.model_validate(
            {
                "email": "ana@example.com",
                "password": "long-enough-1",
                "firstName": "Ana",
                "lastName": "Quispe",
                "role": "nurse",
                "cepNumber": "108245",
                "termsAccepted": True,
                "professionalDisclaimerAccepted": True,
            }
        )
        assert req.first_name == "Ana"
        assert req.role_fields()["cep_number"] == "108245"
        assert req.professional_disclaimer_accepted

    def test_accepts_snake_case(self):
        req = RegisterRequest(
            email="ana@example.com",
            password="long-enough-1",
            first_name="Ana",
            last_name="Quispe",
        )
        assert req.role == "patient"
        assert req.terms_accepted is False

    def test_rejects_bad_email(self):
        with pytest.raises(ValidationError):
            RegisterRequest(
                email="not-an-email", password="x", first_name="A", last_name="B"
            )

    def test_rejects_admin_role(self):
        with pytest.raises(ValidationError):
            RegisterRequest(
                email="ana@example.com",
                password="long-enough-1",
                first_name="Ana",
                last_name="Quispe",
                role="platform_admin",
            )


class TestOtherRequests:
    def test_login_remember_me_alias(self):
        req = LoginRequest.model_validate(
            {"email": "a@b.test", "password": "p", "rememberMe": True}
        )
        assert req.remember_me is True

    def test_refresh_body_optional(self):
        assert RefreshRequest().refresh_token is None
        assert RefreshRequest.model_validate({"refreshToken": "abc"}).refresh_token == "abc"

    @pytest.mark.parametrize("otp", ["12345", "1234567", "12a456"])
    def test_otp_must_be_six_digits(self, otp):
        with pytest.raises(ValidationError):
            VerifyOtpRequest(email="a@b.test", otp=otp)

    def test_reset_with_otp(self):
        req = ResetWithOtpRequest.model_validate(
            {"email": "a@b.test", "otp": "012345", "newPassword": "long-enough-1"}
        )
        assert req.new_password == "long-enough-1"

    def test_complete_registration_requires_role(self):
        with pytest.raises(ValidationError):
            CompleteRegistrationRequest.model_validate({"termsAccepted": True})


class TestResponses:
    def test_auth_user_from_pending_user(self):
        user = UserDoc(_id=ObjectId(), email="a@b.test", google_id="g-1")
        out = AuthUser.from_user(user)
        assert out.role is None
        assert out.tenant_id is None
        assert out.id == user.user_id

    def test_auth_user_serializes_camel_case(self):
        user = UserDoc(
            _id=ObjectId(),
            email="owner@clinic.test",
            role="clinic_owner",
            first_name="Rosa",
            last_name="Huaman",
            tenant_id=ObjectId(),
        )
        body = AuthUser.from_user(user).model_dump(by_alias=True)
        assert body["firstName"] == "Rosa"
        assert body["lastName"] == "Huaman"
        assert body["tenantId"] == str(user.tenant_id)

    def test_profile_hides_credentials(self):
        user = UserDoc(
            _id=ObjectId(),
            email="a@b.test",
            role="patient",
            password_hash="$argon2id$...",
            refresh_token="digest",
            last_login_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        body = ProfileResponse.from_user(user).model_dump(by_alias=True)
        assert body["passwordSet"] is True
        assert "passwordHash" not in body
        assert "refreshToken" not in body

    def test_error_response(self):
        err = ErrorResponse(error="nope", code="forbidden")
        assert err.field is None

    def test_message_response(self):
        assert MessageResponse(success=True).message is None
