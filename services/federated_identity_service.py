"""
FederatedIdentityService — maps a Google profile to a local user.

resolve():
- known google_id             -> that user
- same email, not yet linked  -> link, but only if Google says the email is
                                 verified (otherwise anyone who controls an
                                 unverified Google address could take over
                                 the local account)
- nothing matches             -> new password-less user, email verified,
                                 role None ("pending") until
                                 complete_registration()
"""

from __future__ import annotations

from typing import Any, Mapping, Tuple

from bson import ObjectId

from errors import (
    EmailAlreadyRegisteredError,
    FederatedEmailUnverifiedError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    RegistrationAlreadyCompletedError,
)
from infrastructure.oauth_clients import FederatedProfile
from repositories.user_repository import UserRepository
from schemas.models.user import AUTH_PROVIDER_GOOGLE, ROLE_CLINIC_OWNER, UserDoc
from services.registration_rules import (
    Acceptances,
    acceptance_fields,
    build_role_profile,
)
from shared.datetime_utils import Clock, utcnow
from shared.logging import get_logger
from shared.masking import mask_email

log = get_logger(__name__)


class FederatedIdentityService:
    def __init__(self, user_repo: UserRepository, *, clock: Clock = utcnow) -> None:
        self._users = user_repo
        self._clock = clock

    async def resolve(self, profile: FederatedProfile) -> Tuple[UserDoc, bool]:
        """Return ``(user, is_new_user)`` for *profile*."""
        if not profile.provider_user_id or not profile.email:
            raise InvalidInputError("The identity provider returned an incomplete profile")

        user = await self._users.find_by_google_id(profile.provider_user_id)
        if user is not None:
            return user, False

        existing = await self._users.find_by_email(profile.email)
        if existing is not None:
            return await self._link(existing, profile), False

        if not profile.email_verified:
            log.warning("federated_email_unverified", email=mask_email(profile.email))
            raise FederatedEmailUnverifiedError(
                "Google has not verified this email address"
            )

        new_user = UserDoc(
            email=profile.email,
            role=None,
            first_name=profile.given_name,
            last_name=profile.family_name,
            avatar=profile.picture or None,
            auth_provider=AUTH_PROVIDER_GOOGLE,
            google_id=profile.provider_user_id,
            email_verified=True,
        )
        try:
            created = await self._users.create(new_user)
        except EmailAlreadyRegisteredError:
            # A concurrent callback for the same Google account created it first
            raced = await self._users.find_by_google_id(profile.provider_user_id)
            if raced is None:
                raise
            return raced, False

        log.info("federated_user_created", user_id=created.user_id)
        return created, True

    async def _link(self, existing: UserDoc, profile: FederatedProfile) -> UserDoc:
        if not profile.email_verified:
            log.warning(
                "federated_link_refused",
                user_id=existing.user_id,
                reason="email_unverified",
            )
            raise FederatedEmailUnverifiedError(
                "Google has not verified this email address"
            )
        if existing.google_id and existing.google_id != profile.provider_user_id:
            log.warning(
                "federated_link_refused",
                user_id=existing.user_id,
                reason="linked_to_other_account",
            )
            raise ForbiddenError(
                "This account is already linked to a different Google account"
            )

        linked = await self._users.link_google_account(
            existing.id,
            profile.provider_user_id,
            avatar=None if existing.avatar else (profile.picture or None),
        )
        log.info("federated_account_linked", user_id=existing.user_id)
        return linked or existing

    async def complete_registration(
        self,
        user_id: Any,
        role: str,
        role_fields: Mapping[str, Any],
        acceptances: Acceptances,
    ) -> UserDoc:
        """Give a pending Google user their role.

        Raises:
            NotFoundError: no such user.
            ForbiddenError: not a Google account.
            RegistrationAlreadyCompletedError: the user already has a role.
            InvalidInputError: unknown role, missing role field or consent.
        """
        user = await self._users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not user.is_federated:
            raise ForbiddenError("Only available for Google sign-ups")
        if not user.is_pending:
            raise RegistrationAlreadyCompletedError("Registration is already complete")

        now = self._clock()
        fields: dict[str, Any] = {
            "role": role,
            "role_profile": build_role_profile(role, role_fields),
            **acceptance_fields(role, acceptances, now),
        }
        if role == ROLE_CLINIC_OWNER:
            fields["tenant_id"] = ObjectId()

        updated = await self._users.complete_registration(user.id, fields)
        if updated is None:
            raise RegistrationAlreadyCompletedError("Registration is already complete")

        log.info("federated_registration_completed", user_id=user.user_id, role=role)
        return updated
