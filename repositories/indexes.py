"""
Index bootstrap, run once from the app lifespan.

create_index is idempotent, so calling this on every boot is safe.
"""

from __future__ import annotations

from pymongo import ASCENDING
from pymongo.asynchronous.database import AsyncDatabase

from shared.logging import get_logger

log = get_logger(__name__)

USERS_COLLECTION = "users"
LOGIN_ATTEMPTS_COLLECTION = "login-attempts"


async def ensure_indexes(db: AsyncDatabase) -> None:
    users = db[USERS_COLLECTION]
    await users.create_index([("email", ASCENDING)], unique=True, name="email_unique")
    # Password users store google_id as null, which a sparse index would still
    # count, so uniqueness only applies to real ids
    await users.create_index(
        [("google_id", ASCENDING)],
        unique=True,
        partialFilterExpression={"google_id": {"$type": "string"}},
        name="google_id_unique",
    )
    await users.create_index(
        [("refresh_token", ASCENDING)], sparse=True, name="refresh_token"
    )
    await users.create_index(
        [("password_reset_token", ASCENDING)], sparse=True, name="password_reset_token"
    )

    attempts = db[LOGIN_ATTEMPTS_COLLECTION]
    # expires_at already accounts for any active lock, so delete right at it
    await attempts.create_index(
        [("expires_at", ASCENDING)], expireAfterSeconds=0, name="expires_at_ttl"
    )

    log.info("indexes_ensured", collections=[USERS_COLLECTION, LOGIN_ATTEMPTS_COLLECTION])
