"""
Request DTOs for authentication endpoints.

RegisterRequest              — POST /auth/register
LoginRequest                 — POST /auth/login
RefreshRequest               — POST /auth/refresh  (body optional; cookie fallback)
ChangePasswordRequest        — POST /auth/change-password
ForgotPasswordRequest        — POST /auth/forgot-password
ResetPasswordRequest         — POST /auth/reset-password
RequestOtpRequest            — POST /auth/password-reset/request-otp
VerifyOtpRequest             — POST /auth/password-reset/verify-otp
ResetWithOtpRequest          — POST /auth/password-reset/reset-with-otp
CompleteRegistrationRequest  — POST /auth/google/complete-registration

Field names are snake_case; the web and mobile apps send camelCase, so both
spellings are accepted.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Platform = Literal["web", "mobile"]
SelfServiceRole = Literal["patient", "nurse", "clinic_owner"]

_ROLE_FIELD_NAMES = (
    "cep_number",
    "specialties",
    "clinic_name",
    "clinic_phone",
    "clinic_address",
    "specialty",
)


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class _RoleSelection(_Request):
    """Role choice plus the role-specific fields and consents it needs."""

    role: SelfServiceRole = "patient"

    # nurse
    cep_number: str | None = None
    specialties: list[str] = Field(default_factory=list)
    # clinic_owner
    clinic_name: str | None = None
    clinic_phone: str | None = None
    clinic_address: str | None = None
    specialty: str | None = None

    terms_accepted: bool = False
    professional_disclaimer_accepted: bool = False

    def role_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in _ROLE_FIELD_NAMES}


class RegisterRequest(_RoleSelection):
    """Request body for POST /auth/register."""

    email: EmailStr
    password: str
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = None


class LoginRequest(_Request):
    """Request body for POST /auth/login."""

    email: str
    password: str
    remember_me: bool = False


class RefreshRequest(_Request):
    """Request body for POST /auth/refresh. Web clients rely on the cookie."""

    refresh_token: str | None = None


class ChangePasswordRequest(_Request):
    """Request body for POST /auth/change-password.

    ``current_password`` may be omitted only by Google accounts that have
    never set a password.
    """

    current_password: str | None = None
    new_password: str


class ForgotPasswordRequest(_Request):
    """Request body for POST /auth/forgot-password (reset-link flow)."""

    email: str
    platform: Platform = "web"


class ResetPasswordRequest(_Request):
    """Request body for POST /auth/reset-password (reset-link flow)."""

    token: str
    new_password: str


class RequestOtpRequest(_Request):
    """Request body for POST /auth/password-reset/request-otp."""

    email: str
    platform: Platform = "web"


class VerifyOtpRequest(_Request):
    """Request body for POST /auth/password-reset/verify-otp."""

    email: str
    otp: str = Field(pattern=r"^\d{6}$")


class ResetWithOtpRequest(_Request):
    """Request body for POST /auth/password-reset/reset-with-otp."""

    email: str
    otp: str = Field(pattern=r"^\d{6}$")
    new_password: str


class CompleteRegistrationRequest(_RoleSelection):
    """Request body for POST /auth/google/complete-registration."""

    role: SelfServiceRole
