"""
Role-specific registration requirements, shared by password sign-up and
Google complete-registration.

- patient:       terms
- nurse:         terms, professional disclaimer, cep_number
                 (Colegio de Enfermeros del Perú registry number)
- clinic_owner:  terms, professional disclaimer, clinic_name
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from errors import InvalidInputError
from schemas.models.user import (
    PROFESSIONAL_ROLES,
    ROLE_CLINIC_OWNER,
    ROLE_NURSE,
    ROLE_PATIENT,
    SELF_SERVICE_ROLES,
)

REQUIRED_ROLE_FIELDS: dict[str, tuple[str, ...]] = {
    ROLE_PATIENT: (),
    ROLE_NURSE: ("cep_number",),
    ROLE_CLINIC_OWNER: ("clinic_name",),
}

OPTIONAL_ROLE_FIELDS: dict[str, tuple[str, ...]] = {
    ROLE_PATIENT: (),
    ROLE_NURSE: ("specialties",),
    ROLE_CLINIC_OWNER: ("clinic_phone", "clinic_address", "specialty"),
}


@dataclass(frozen=True)
class Acceptances:
    terms_accepted: bool = False
    professional_disclaimer_accepted: bool = False


def check_self_service_role(role: str) -> None:
    if role not in SELF_SERVICE_ROLES:
        raise InvalidInputError(
            f"Role must be one of: {', '.join(SELF_SERVICE_ROLES)}", field="role"
        )


def build_role_profile(role: str, fields: Mapping[str, Any]) -> dict[str, Any]:
    """Keep the fields *role* knows about; refuse if a required one is blank."""
    check_self_service_role(role)
    profile: dict[str, Any] = {}
    for name in REQUIRED_ROLE_FIELDS[role]:
        value = fields.get(name)
        if isinstance(value, str):
            value = value.strip()
        if not value:
            raise InvalidInputError(f"{name} is required for role {role}", field=name)
        profile[name] = value
    for name in OPTIONAL_ROLE_FIELDS[role]:
        value = fields.get(name)
        if value not in (None, "", []):
            profile[name] = value
    return profile


def acceptance_fields(
    role: str, acceptances: Acceptances, now: datetime
) -> dict[str, Any]:
    """Consent flags and timestamps to store; refuse missing consents."""
    if not acceptances.terms_accepted:
        raise InvalidInputError(
            "Terms and conditions must be accepted", field="terms_accepted"
        )
    fields: dict[str, Any] = {"terms_accepted": True, "terms_accepted_at": now}
    if role in PROFESSIONAL_ROLES:
        if not acceptances.professional_disclaimer_accepted:
            raise InvalidInputError(
                "The professional disclaimer must be accepted",
                field="professional_disclaimer_accepted",
            )
        fields["professional_disclaimer_accepted"] = True
        fields["professional_disclaimer_accepted_at"] = now
    return fields
