"""
User document model.

Maps to the `users` MongoDB collection.

Two creation paths produce slightly different shapes:
- Password registration: password_hash set, auth_provider "local", role chosen
  up front, email not yet verified
- Google sign-in: no password_hash, auth_provider "google", google_id set,
  role None ("pending") until complete-registration, email pre-verified

Secrets are stored only as SHA-256 digests: refresh_token,
password_reset_token (legacy link flow) and password_reset_otp.
Users are never hard-deleted; is_deleted hides them from every lookup.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from schemas.models.base import MongoBaseModel, PyObjectId

Role = Literal["platform_admin", "patient", "nurse", "clinic_owner"]

ROLE_PLATFORM_ADMIN = "platform_admin"
ROLE_PATIENT = "patient"
ROLE_NURSE = "nurse"
ROLE_CLINIC_OWNER = "clinic_owner"

# Roles a person may pick for themselves at sign-up
SELF_SERVICE_ROLES = (ROLE_PATIENT, ROLE_NURSE, ROLE_CLINIC_OWNER)
# Roles that must accept the professional disclaimer
PROFESSIONAL_ROLES = (ROLE_NURSE, ROLE_CLINIC_OWNER)

AUTH_PROVIDER_LOCAL = "local"
AUTH_PROVIDER_GOOGLE = "google"


class UserDoc(MongoBaseModel):
    """Document model for the `users` collection."""

    email: str
    password_hash: Optional[str] = None
    role: Optional[Role] = None

    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    avatar: Optional[str] = None

    auth_provider: str = AUTH_PROVIDER_LOCAL
    google_id: Optional[str] = None
    email_verified: bool = False

    is_active: bool = True
    is_deleted: bool = False

    # Clinic the user belongs to (clinic owners)
    tenant_id: Optional[PyObjectId] = None
    # Role-specific registration fields (cep_number, clinic_name, ...)
    role_profile: dict[str, Any] = Field(default_factory=dict)

    terms_accepted: bool = False
    terms_accepted_at: Optional[datetime] = None
    professional_disclaimer_accepted: bool = False
    professional_disclaimer_accepted_at: Optional[datetime] = None

    refresh_token: Optional[str] = None
    refresh_token_expires: Optional[datetime] = None

    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None

    password_reset_otp: Optional[str] = None
    password_reset_otp_expires: Optional[datetime] = None
    password_reset_otp_attempts: int = Field(default=0, ge=0)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @property
    def user_id(self) -> str:
        return str(self.id)

    @property
    def is_pending(self) -> bool:
        """Federated account that has not chosen a role yet."""
        return self.role is None

    @property
    def is_federated(self) -> bool:
        return self.google_id is not None

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)
