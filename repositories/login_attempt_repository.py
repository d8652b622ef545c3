"""
Repository for the `login-attempts` collection.

The lockout guard never does a blind read-modify-write against this store.
It reads a record, computes the next state, then writes with either
``insert_if_absent`` (first failure) or ``compare_and_swap`` (guarded by the
record's ``version``). A False return means another writer got there first
and the caller must re-read and retry.
"""

from __future__ import annotations

from typing import Optional

from pymongo.errors import DuplicateKeyError

from repositories.base_repository import BaseRepository
from schemas.models.login_attempt import LoginAttemptDoc


class LoginAttemptRepository(BaseRepository):
    async def get(self, identifier: str) -> Optional[LoginAttemptDoc]:
        doc = await self._call("get", lambda: self._col.find_one({"_id": identifier}))
        return LoginAttemptDoc.from_mongo(doc)

    async def insert_if_absent(self, record: LoginAttemptDoc) -> bool:
        doc = record.to_mongo()
        try:
            await self._call("insert", lambda: self._col.insert_one(doc))
        except DuplicateKeyError:
            return False
        return True

    async def compare_and_swap(
        self, record: LoginAttemptDoc, expected_version: int
    ) -> bool:
        """Replace the stored record only if its version is still *expected_version*."""
        doc = record.to_mongo()
        result = await self._call(
            "compare_and_swap",
            lambda: self._col.replace_one(
                {"_id": record.identifier, "version": expected_version}, doc
            ),
        )
        return result.matched_count == 1

    async def delete(self, identifier: str) -> bool:
        result = await self._call(
            "delete", lambda: self._col.delete_one({"_id": identifier})
        )
        return result.deleted_count > 0
