"""
Per-role session lifetimes.

Patients keep long sessions (they may need the app in an emergency);
staff and admins get shorter ones. "Remember me" switches to the extended
column. Pending federated users (no role yet) use the "default" row.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import RoleSessionPolicy, SessionSettings


@dataclass(frozen=True)
class SessionTimes:
    access_ttl: timedelta
    refresh_ttl: timedelta

    def access_expires_at(self, now: datetime) -> datetime:
        return now + self.access_ttl

    def refresh_expires_at(self, now: datetime) -> datetime:
        return now + self.refresh_ttl


class SessionPolicy:
    def __init__(self, settings: SessionSettings) -> None:
        self._policies = settings.role_policies

    def policy_for(self, role: Optional[str]) -> RoleSessionPolicy:
        return self._policies.get(role or "default", self._policies["default"])

    def times_for(self, role: Optional[str], remember_me: bool = False) -> SessionTimes:
        policy = self.policy_for(role)
        if remember_me:
            return SessionTimes(
                access_ttl=timedelta(seconds=policy.remember_access_ttl_seconds),
                refresh_ttl=timedelta(days=policy.remember_refresh_ttl_days),
            )
        return SessionTimes(
            access_ttl=timedelta(seconds=policy.access_ttl_seconds),
            refresh_ttl=timedelta(days=policy.refresh_ttl_days),
        )
