"""
LockoutService — progressive brute-force lockout per identifier.

Identifiers are emails or client IPs, lower-cased before use. State lives in
the shared `login-attempts` collection so every instance sees the same
counters and a restart forgets nothing.

Rules (defaults from LockoutSettings):
- failures are counted inside a rolling window (1 h); a failure arriving
  after the window has elapsed since the previous one starts again at 1
- reaching max_attempts (5) locks for base_lockout_seconds (15 min)
- every further completed cycle of max_attempts doubles the lock, capped
  at max_lockout_seconds (24 h)
- an expired lock reports "not locked" but keeps the count, so a repeat
  offender escalates
- a successful login or an admin unlock deletes the record

Counter updates are optimistic compare-and-swap on the record's version,
retried on conflict, so concurrent failures never collapse into one.

Store outages: every call is bounded by store_timeout_ms and retried
store_retries times. After that the guard fails closed
(ServiceUnavailableError) unless fail_open is set, in which case it logs
lockout_store_fail_open and lets the login proceed unguarded.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import LockoutSettings
from repositories.login_attempt_repository import LoginAttemptRepository
from schemas.models.login_attempt import LoginAttemptDoc
from shared.datetime_utils import Clock, as_utc, seconds_until, utcnow
from shared.logging import get_logger
from shared.masking import mask_identifier
from shared.store_retry import StoreUnavailableError
from shared.validators import normalize_identifier

log = get_logger(__name__)

# Upper bound on CAS rounds for one failure; only reached under heavy contention
_MAX_CAS_ROUNDS = 16
# 2**32 * base is far beyond any sane cap
_MAX_EXPONENT = 32


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    remaining_seconds: int = 0


@dataclass(frozen=True)
class FailedAttemptResult:
    locked: bool
    attempts_remaining: int
    lockout_seconds: int = 0


@dataclass(frozen=True)
class AttemptInfo:
    attempts: int
    max_attempts: int
    locked: bool
    locked_until: Optional[datetime]
    remaining_seconds: int = 0


class LockoutService:
    def __init__(
        self,
        settings: LockoutSettings,
        repo: LoginAttemptRepository,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._settings = settings
        self._repo = repo
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self._settings.max_attempts

    def lockout_duration(self, attempts: int) -> int:
        """Lock length in seconds for a record that has reached *attempts*."""
        s = self._settings
        if attempts < s.max_attempts:
            return 0
        if not s.progressive:
            return min(s.base_lockout_seconds, s.max_lockout_seconds)
        exponent = min(attempts // s.max_attempts - 1, _MAX_EXPONENT)
        return min(s.base_lockout_seconds * (2**exponent), s.max_lockout_seconds)

    # ── Queries ──────────────────────────────────────────────────────────────

    async def is_locked(self, identifier: str) -> LockStatus:
        key = normalize_identifier(identifier)
        try:
            record = await self._repo.get(key)
        except StoreUnavailableError:
            self._on_store_failure("is_locked", key)
            return LockStatus(locked=False)
        return self._lock_status(record, self._clock())

    async def get_attempt_info(self, identifier: str) -> AttemptInfo:
        key = normalize_identifier(identifier)
        record = await self._repo.get(key)
        status = self._lock_status(record, self._clock())
        return AttemptInfo(
            attempts=record.attempts if record else 0,
            max_attempts=self._settings.max_attempts,
            locked=status.locked,
            locked_until=as_utc(record.locked_until) if record else None,
            remaining_seconds=status.remaining_seconds,
        )

    # ── Mutations ────────────────────────────────────────────────────────────

    async def record_failed_attempt(self, identifier: str) -> FailedAttemptResult:
        key = normalize_identifier(identifier)
        try:
            record = await self._increment(key)
        except StoreUnavailableError:
            self._on_store_failure("record_failed_attempt", key)
            return FailedAttemptResult(
                locked=False,
                attempts_remaining=self._settings.max_attempts,
            )

        if record.attempts >= self._settings.max_attempts:
            duration = self.lockout_duration(record.attempts)
            log.warning(
                "account_locked",
                identifier=mask_identifier(key),
                attempts=record.attempts,
                lockout_seconds=duration,
            )
            return FailedAttemptResult(
                locked=True, attempts_remaining=0, lockout_seconds=duration
            )

        remaining = self._settings.max_attempts - record.attempts
        log.info(
            "login_attempt_failed",
            identifier=mask_identifier(key),
            attempts=record.attempts,
            attempts_remaining=remaining,
        )
        return FailedAttemptResult(locked=False, attempts_remaining=remaining)

    async def record_successful_login(self, identifier: str) -> None:
        key = normalize_identifier(identifier)
        try:
            deleted = await self._repo.delete(key)
        except StoreUnavailableError:
            # A stale counter only delays the next lock; never block a valid login
            log.warning("lockout_reset_failed", identifier=mask_identifier(key))
            return
        if deleted:
            log.debug("login_attempts_reset", identifier=mask_identifier(key))

    async def unlock(self, identifier: str) -> bool:
        """Administrative unlock. Returns True if a record existed."""
        key = normalize_identifier(identifier)
        deleted = await self._repo.delete(key)
        log.info("account_unlocked", identifier=mask_identifier(key), existed=deleted)
        return deleted

    # ── Internals ────────────────────────────────────────────────────────────

    def _lock_status(
        self, record: Optional[LoginAttemptDoc], now: datetime
    ) -> LockStatus:
        if record is None or record.locked_until is None:
            return LockStatus(locked=False)
        locked_until = as_utc(record.locked_until)
        if now < locked_until:
            return LockStatus(
                locked=True, remaining_seconds=seconds_until(locked_until, now)
            )
        return LockStatus(locked=False)

    def _next_state(
        self, current: Optional[LoginAttemptDoc], key: str, now: datetime
    ) -> LoginAttemptDoc:
        s = self._settings
        attempts = 0
        locked_until: Optional[datetime] = None
        version = 0
        if current is not None:
            version = current.version
            elapsed = (now - as_utc(current.last_attempt)).total_seconds()
            if elapsed <= s.attempt_window_seconds:
                attempts = current.attempts
                locked_until = as_utc(current.locked_until)

        attempts += 1
        if attempts >= s.max_attempts:
            candidate = now + timedelta(seconds=self.lockout_duration(attempts))
            # Never shorten a lock that is already further out
            locked_until = max(locked_until, candidate) if locked_until else candidate

        expires_at = now + timedelta(seconds=s.record_ttl_seconds)
        if locked_until is not None and locked_until > expires_at:
            expires_at = locked_until

        return LoginAttemptDoc(
            identifier=key,
            attempts=attempts,
            locked_until=locked_until,
            last_attempt=now,
            version=version + 1,
            expires_at=expires_at,
            write_id=uuid.uuid4().hex,
        )

    async def _increment(self, key: str) -> LoginAttemptDoc:
        attempted: Optional[LoginAttemptDoc] = None
        for _ in range(_MAX_CAS_ROUNDS):
            current = await self._repo.get(key)
            # A retried write reports a conflict even when its first try landed
            if (
                attempted is not None
                and current is not None
                and current.write_id == attempted.write_id
            ):
                log.debug("lockout_write_applied", identifier=mask_identifier(key))
                return attempted
            updated = self._next_state(current, key, self._clock())
            if current is None:
                written = await self._repo.insert_if_absent(updated)
            else:
                written = await self._repo.compare_and_swap(updated, current.version)
            attempted = updated
            if written:
                return updated
            log.debug("lockout_write_conflict", identifier=mask_identifier(key))

        log.error("lockout_write_contention", identifier=mask_identifier(key))
        raise StoreUnavailableError("Login attempt store is busy. Please retry.")

    def _on_store_failure(self, operation: str, key: str) -> None:
        if self._settings.fail_open:
            log.warning(
                "lockout_store_fail_open",
                operation=operation,
                identifier=mask_identifier(key),
            )
            return
        log.error(
            "lockout_store_fail_closed",
            operation=operation,
            identifier=mask_identifier(key),
        )
        raise StoreUnavailableError()
