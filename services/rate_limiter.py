"""Failure counting and lockout for credential checks, plus a coarse
per-origin request ceiling for the public self-identification endpoint.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import NamedTuple, Optional

from services.expiring_store import ExpiringStore, now_ts


class RateLimitStatus(NamedTuple):
    blocked: bool
    minutes_remaining: int = 0


@dataclass(frozen=True)
class RateLimitRecord:
    failures: int
    last_attempt_at: float
    locked_until: Optional[float] = None


def _minutes_until(deadline: float, now: float) -> int:
    return max(1, math.ceil((deadline - now) / 60))


class LoginRateLimiter:
    """Locks an (origin, identifier) pair out after repeated failures.

    Records expire `lockout_seconds` after their last failed attempt, which
    is also when a lockout triggered by that attempt ends, so an expired
    record means the counter starts again from zero.
    """

    def __init__(self, max_failures: int = 5, lockout_seconds: float = 15 * 60,
                 name: str = 'login_attempts') -> None:
        self.max_failures = int(max_failures)
        self.lockout_seconds = float(lockout_seconds)
        self.store = ExpiringStore(name, lockout_seconds)

    @staticmethod
    def _key(origin: str, identifier: str) -> tuple[str, str]:
        return (str(origin or 'unknown'), str(identifier or '').strip().lower())

    def check(self, origin: str, identifier: str, now: Optional[float] = None) -> RateLimitStatus:
        t = now_ts() if now is None else float(now)
        record: Optional[RateLimitRecord] = self.store.get(self._key(origin, identifier), now=t)
        if record is None or record.locked_until is None or t >= record.locked_until:
            return RateLimitStatus(blocked=False)
        return RateLimitStatus(blocked=True, minutes_remaining=_minutes_until(record.locked_until, t))

    def record_failure(self, origin: str, identifier: str, now: Optional[float] = None) -> int:
        t = now_ts() if now is None else float(now)
        key = self._key(origin, identifier)

        def bump(current: Optional[RateLimitRecord]) -> RateLimitRecord:
            failures = (current.failures if current else 0) + 1
            locked_until = None
            if failures >= self.max_failures:
                locked_until = t + self.lockout_seconds
            return RateLimitRecord(failures=failures, last_attempt_at=t, locked_until=locked_until)

        with self.store.atomic():
            # A failure reported during an active lockout must not extend it.
            if self.check(origin, identifier, now=t).blocked:
                return self.failures(origin, identifier, now=t)
            record = self.store.upsert(key, bump, now=t)
        return record.failures

    def failures(self, origin: str, identifier: str, now: Optional[float] = None) -> int:
        record = self.store.get(self._key(origin, identifier), now=now)
        return record.failures if record else 0

    def clear(self, origin: str, identifier: str) -> None:
        self.store.delete(self._key(origin, identifier))


class RequestCeiling:
    """At most `limit` counted requests per origin; no escalating lockout.

    The window slides with the last counted request and the counter resets
    once a full window passes without one. Rejected requests are not counted.
    """

    def __init__(self, limit: int = 10, window_seconds: float = 60 * 60,
                 name: str = 'registration_ceiling') -> None:
        self.limit = int(limit)
        self.window_seconds = float(window_seconds)
        self.store = ExpiringStore(name, window_seconds)

    def check(self, origin: str, now: Optional[float] = None) -> RateLimitStatus:
        t = now_ts() if now is None else float(now)
        key = str(origin or 'unknown')
        record: Optional[RateLimitRecord] = self.store.get(key, now=t)
        if record is None or record.failures < self.limit:
            return RateLimitStatus(blocked=False)
        return RateLimitStatus(
            blocked=True,
            minutes_remaining=_minutes_until(record.last_attempt_at + self.window_seconds, t),
        )

    def hit(self, origin: str, now: Optional[float] = None) -> RateLimitStatus:
        """Count one request, unless the origin is already at the ceiling."""
        t = now_ts() if now is None else float(now)
        key = str(origin or 'unknown')
        with self.store.atomic():
            status = self.check(key, now=t)
            if status.blocked:
                return status

            def bump(current: Optional[RateLimitRecord]) -> RateLimitRecord:
                if current is None:
                    return RateLimitRecord(failures=1, last_attempt_at=t)
                return replace(current, failures=current.failures + 1, last_attempt_at=t)

            self.store.upsert(key, bump, now=t)
        return RateLimitStatus(blocked=False)
