"""Deduplicates repeated self-identifications of one customer at one merchant."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from services.expiring_store import ExpiringStore, now_ts


@dataclass(frozen=True)
class CooldownRecord:
    identified_at: float
    identification_id: str
    is_new: bool
    display_name: Optional[str]
    points_balance: int
    customer_id: Optional[int] = None
    visit_count: int = 0
    duplicate_flagged: bool = False

    def minutes_since(self, now: float) -> int:
        return max(0, int((now - self.identified_at) // 60))


class IdentificationCooldowns:
    """Remembers the outcome of the last identification per (merchant, identifier).

    The window is measured from the identification itself and is never
    extended by repeats.
    """

    def __init__(self, window_seconds: float = 15 * 60) -> None:
        self.window_seconds = float(window_seconds)
        self.store = ExpiringStore('identification_cooldowns', window_seconds)

    @staticmethod
    def _key(merchant_id: int, identifier: str) -> tuple[int, str]:
        return (int(merchant_id), str(identifier))

    def record_outcome(self, merchant_id: int, identifier: str, outcome: CooldownRecord,
                       now: Optional[float] = None) -> None:
        t = outcome.identified_at if now is None else float(now)
        self.store.put(self._key(merchant_id, identifier), outcome, inserted_at=t)

    def get_outcome(self, merchant_id: int, identifier: str,
                    now: Optional[float] = None) -> Optional[CooldownRecord]:
        return self.store.get(self._key(merchant_id, identifier), now=now)

    def flag_duplicate(self, merchant_id: int, identifier: str, now: Optional[float] = None) -> bool:
        """Mark that a recent-duplicate entry was queued for this window.

        Returns True only for the first caller; later repeats are absorbed.
        """
        t = now_ts() if now is None else float(now)
        key = self._key(merchant_id, identifier)
        with self.store.atomic():
            record: Optional[CooldownRecord] = self.store.get(key, now=t)
            if record is None or record.duplicate_flagged:
                return False
            self.store.modify(key, lambda r: replace(r, duplicate_flagged=True), now=t)
            return True

    def record_outcome_if_absent(self, merchant_id: int, identifier: str, outcome: CooldownRecord,
                                 now: Optional[float] = None) -> CooldownRecord:
        """Store `outcome` unless a live one exists; return whichever is in effect.

        Concurrent first identifications of the same customer all get the
        same answer: the caller whose outcome is returned unchanged won.
        """
        t = outcome.identified_at if now is None else float(now)
        key = self._key(merchant_id, identifier)
        with self.store.atomic():
            existing: Optional[CooldownRecord] = self.store.get(key, now=t)
            if existing is not None:
                return existing
            self.store.put(key, outcome, inserted_at=t)
            return outcome
