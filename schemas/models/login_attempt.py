"""
Login-attempt document model.

Maps to the `login-attempts` MongoDB collection.

_id is the normalized (lower-cased) identifier: an email or a client IP.
version is bumped on every write and used as the compare-and-swap guard so
concurrent failures for the same identifier never overwrite each other.
expires_at carries a TTL index; the Mongo TTL monitor drops idle records.
write_id is fresh on every write. A write that timed out and was retried
may already have landed; the lockout guard recognizes it by this marker
instead of counting the failure a second time.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LoginAttemptDoc(BaseModel):
    """Document model for the `login-attempts` collection."""

    model_config = ConfigDict(populate_by_name=True)

    identifier: str = Field(alias="_id")
    attempts: int = Field(default=0, ge=0)
    locked_until: Optional[datetime] = None
    last_attempt: datetime
    version: int = Field(default=0, ge=0)
    expires_at: Optional[datetime] = None
    write_id: Optional[str] = None

    def to_mongo(self) -> dict:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_mongo(cls, data: Optional[dict]) -> Optional["LoginAttemptDoc"]:
        if data is None:
            return None
        return cls.model_validate(data)
