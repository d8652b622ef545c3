"""
Repository for the `users` collection.

Every read filters out soft-deleted users. Writes that guard a credential
(refresh rotation, OTP consumption, reset-link consumption) are single
conditional updates: the filter carries the value being replaced, so of two
concurrent callers exactly one matches.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import EmailAlreadyRegisteredError
from repositories.base_repository import BaseRepository
from schemas.models.base import to_object_id
from schemas.models.user import UserDoc
from shared.datetime_utils import utcnow
from shared.logging import get_logger
from shared.validators import normalize_email

log = get_logger(__name__)

_NOT_DELETED = {"is_deleted": {"$ne": True}}

_OTP_FIELDS = {
    "password_reset_otp": "",
    "password_reset_otp_expires": "",
    "password_reset_otp_attempts": "",
}
_RESET_LINK_FIELDS = {"password_reset_token": "", "password_reset_expires": ""}


class UserRepository(BaseRepository):
    # ── Reads ────────────────────────────────────────────────────────────────

    async def find_by_id(self, user_id: Any) -> Optional[UserDoc]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        doc = await self._call(
            "find_by_id", lambda: self._col.find_one({"_id": oid, **_NOT_DELETED})
        )
        return UserDoc.from_mongo(doc)

    async def find_by_email(self, email: str) -> Optional[UserDoc]:
        query = {"email": normalize_email(email), **_NOT_DELETED}
        doc = await self._call("find_by_email", lambda: self._col.find_one(query))
        return UserDoc.from_mongo(doc)

    async def find_by_google_id(self, google_id: str) -> Optional[UserDoc]:
        query = {"google_id": google_id, **_NOT_DELETED}
        doc = await self._call("find_by_google_id", lambda: self._col.find_one(query))
        return UserDoc.from_mongo(doc)

    async def find_by_refresh_hash(self, token_hash: str) -> Optional[UserDoc]:
        query = {"refresh_token": token_hash, **_NOT_DELETED}
        doc = await self._call(
            "find_by_refresh_hash", lambda: self._col.find_one(query)
        )
        return UserDoc.from_mongo(doc)

    async def find_by_reset_token_hash(
        self, token_hash: str, now: datetime
    ) -> Optional[UserDoc]:
        query = {
            "password_reset_token": token_hash,
            "password_reset_expires": {"$gt": now},
            **_NOT_DELETED,
        }
        doc = await self._call(
            "find_by_reset_token_hash", lambda: self._col.find_one(query)
        )
        return UserDoc.from_mongo(doc)

    # ── Writes ───────────────────────────────────────────────────────────────

    async def create(self, user: UserDoc) -> UserDoc:
        """Insert *user* and return it with its new ``_id``.

        Raises:
            EmailAlreadyRegisteredError: the unique email index rejected it.
        """
        now = utcnow()
        user.email = normalize_email(user.email)
        user.created_at = user.created_at or now
        user.updated_at = now
        doc = user.to_mongo()
        try:
            result = await self._call("insert", lambda: self._col.insert_one(doc))
        except DuplicateKeyError as e:
            raise EmailAlreadyRegisteredError() from e
        user.id = result.inserted_id
        return user

    async def update_fields(
        self,
        user_id: ObjectId,
        set_fields: dict,
        unset_fields: Optional[dict] = None,
    ) -> Optional[UserDoc]:
        """Apply ``$set`` / ``$unset`` and return the updated user."""
        update: dict = {"$set": {**set_fields, "updated_at": utcnow()}}
        if unset_fields:
            update["$unset"] = unset_fields
        doc = await self._call(
            "update_fields",
            lambda: self._col.find_one_and_update(
                {"_id": user_id, **_NOT_DELETED},
                update,
                return_document=ReturnDocument.AFTER,
            ),
        )
        return UserDoc.from_mongo(doc)

    async def update_last_login(self, user_id: ObjectId, when: datetime) -> None:
        await self._call(
            "update_last_login",
            lambda: self._col.update_one(
                {"_id": user_id}, {"$set": {"last_login_at": when}}
            ),
        )

    async def link_google_account(
        self, user_id: ObjectId, google_id: str, avatar: Optional[str] = None
    ) -> Optional[UserDoc]:
        fields: dict = {"google_id": google_id, "email_verified": True}
        if avatar:
            fields["avatar"] = avatar
        return await self.update_fields(user_id, fields)

    async def complete_registration(
        self, user_id: ObjectId, fields: dict
    ) -> Optional[UserDoc]:
        """Assign a role to a pending user; None if it is no longer pending."""
        doc = await self._call(
            "complete_registration",
            lambda: self._col.find_one_and_update(
                {"_id": user_id, "role": None, **_NOT_DELETED},
                {"$set": {**fields, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            ),
        )
        return UserDoc.from_mongo(doc)

    # ── Refresh token (single slot) ──────────────────────────────────────────

    async def set_refresh_token(
        self, user_id: ObjectId, token_hash: str, expires_at: datetime
    ) -> None:
        await self._call(
            "set_refresh_token",
            lambda: self._col.update_one(
                {"_id": user_id},
                {
                    "$set": {
                        "refresh_token": token_hash,
                        "refresh_token_expires": expires_at,
                    }
                },
            ),
        )

    async def swap_refresh_token(
        self,
        old_hash: str,
        new_hash: str,
        expires_at: datetime,
    ) -> Optional[UserDoc]:
        """Replace *old_hash* with *new_hash*; None when another caller won."""
        doc = await self._call(
            "swap_refresh_token",
            lambda: self._col.find_one_and_update(
                {"refresh_token": old_hash, **_NOT_DELETED},
                {
                    "$set": {
                        "refresh_token": new_hash,
                        "refresh_token_expires": expires_at,
                    }
                },
                return_document=ReturnDocument.AFTER,
            ),
        )
        return UserDoc.from_mongo(doc)

    async def clear_refresh_token(self, user_id: ObjectId) -> None:
        await self._call(
            "clear_refresh_token",
            lambda: self._col.update_one(
                {"_id": user_id},
                {"$unset": {"refresh_token": "", "refresh_token_expires": ""}},
            ),
        )

    # ── Password-reset OTP ───────────────────────────────────────────────────

    async def set_password_reset_otp(
        self, user_id: ObjectId, otp_hash: str, expires_at: datetime
    ) -> None:
        await self._call(
            "set_password_reset_otp",
            lambda: self._col.update_one(
                {"_id": user_id},
                {
                    "$set": {
                        "password_reset_otp": otp_hash,
                        "password_reset_otp_expires": expires_at,
                        "password_reset_otp_attempts": 0,
                    }
                },
            ),
        )

    async def increment_otp_attempts(self, user_id: ObjectId) -> int:
        """Atomically count one failed OTP check; returns the new total."""
        doc = await self._call(
            "increment_otp_attempts",
            lambda: self._col.find_one_and_update(
                {"_id": user_id},
                {"$inc": {"password_reset_otp_attempts": 1}},
                projection={"password_reset_otp_attempts": 1},
                return_document=ReturnDocument.AFTER,
            ),
        )
        return int((doc or {}).get("password_reset_otp_attempts", 0))

    async def clear_password_reset_otp(self, user_id: ObjectId) -> None:
        await self._call(
            "clear_password_reset_otp",
            lambda: self._col.update_one({"_id": user_id}, {"$unset": _OTP_FIELDS}),
        )

    async def reset_password_with_otp(
        self,
        user_id: ObjectId,
        otp_hash: str,
        password_hash: str,
        now: datetime,
        max_attempts: int,
    ) -> bool:
        """Set the new password and consume the OTP in one conditional write.

        The refresh slot is cleared too, so sessions opened with the old
        password end. Returns False if the code was already consumed,
        replaced, expired, or exhausted in the meantime.
        """
        result = await self._call(
            "reset_password_with_otp",
            lambda: self._col.update_one(
                {
                    "_id": user_id,
                    "password_reset_otp": otp_hash,
                    "password_reset_otp_expires": {"$gt": now},
                    "password_reset_otp_attempts": {"$lt": max_attempts},
                    **_NOT_DELETED,
                },
                {
                    "$set": {"password_hash": password_hash, "updated_at": now},
                    "$unset": {
                        **_OTP_FIELDS,
                        "refresh_token": "",
                        "refresh_token_expires": "",
                    },
                },
            ),
        )
        return result.modified_count == 1

    # ── Legacy reset link ────────────────────────────────────────────────────

    async def set_password_reset_token(
        self, user_id: ObjectId, token_hash: str, expires_at: datetime
    ) -> None:
        await self._call(
            "set_password_reset_token",
            lambda: self._col.update_one(
                {"_id": user_id},
                {
                    "$set": {
                        "password_reset_token": token_hash,
                        "password_reset_expires": expires_at,
                    }
                },
            ),
        )

    async def reset_password_with_token(
        self, token_hash: str, password_hash: str, now: datetime
    ) -> Optional[UserDoc]:
        """Consume a reset-link token and set the new password.

        Returns the updated user, or None when the token is unknown, expired
        or was already used.
        """
        doc = await self._call(
            "reset_password_with_token",
            lambda: self._col.find_one_and_update(
                {
                    "password_reset_token": token_hash,
                    "password_reset_expires": {"$gt": now},
                    **_NOT_DELETED,
                },
                {
                    "$set": {"password_hash": password_hash, "updated_at": now},
                    "$unset": {
                        **_RESET_LINK_FIELDS,
                        "refresh_token": "",
                        "refresh_token_expires": "",
                    },
                },
                return_document=ReturnDocument.AFTER,
            ),
        )
        return UserDoc.from_mongo(doc)

    async def set_password(
        self, user_id: ObjectId, password_hash: str
    ) -> Optional[UserDoc]:
        return await self.update_fields(user_id, {"password_hash": password_hash})
