"""Per-merchant queue of "this customer is at the counter" events.

Customers raise identifications from their phone; staff list, consume or
dismiss them. An identification is visible for `ttl_seconds` after it was
raised, whether or not the sweeper has run.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import Optional

from services.errors import IdentificationNotFound
from services.expiring_store import ExpiringStore, now_ts


def new_identification_id() -> str:
    return secrets.token_urlsafe(16)


@dataclass(frozen=True)
class IdentificationRecord:
    """Snapshot of a customer taken when they identified themselves."""
    display_name: Optional[str]
    points_balance: int
    visit_count: int
    is_new: bool
    created_at: float = field(default_factory=now_ts)
    customer_id: Optional[int] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    recent_duplicate: bool = False
    minutes_since_previous: Optional[int] = None

    def to_dict(self):
        data = {
            'customerId': self.customer_id,
            'displayName': self.display_name,
            'email': self.email,
            'phone': self.phone,
            'pointsBalance': self.points_balance,
            'visitCount': self.visit_count,
            'isNew': self.is_new,
            'recentDuplicate': self.recent_duplicate,
        }
        if self.recent_duplicate:
            data['minutesSincePrevious'] = self.minutes_since_previous
        return data


@dataclass(frozen=True)
class QueuedIdentification:
    identification_id: str
    record: IdentificationRecord
    elapsed_seconds: int

    def to_dict(self):
        data = self.record.to_dict()
        data['identificationId'] = self.identification_id
        data['elapsedSeconds'] = self.elapsed_seconds
        return data


@dataclass(frozen=True)
class _Slot:
    merchant_id: int
    identifier: str
    record: IdentificationRecord


class IdentificationQueue:
    """Entries are keyed by identification id; a secondary index maps
    (merchant, identifier, kind) to the live id of that kind."""

    def __init__(self, ttl_seconds: float = 15 * 60) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self.store = ExpiringStore('pending_identifications', ttl_seconds)
        self._index: dict[tuple[int, str, bool], str] = {}

    @staticmethod
    def _index_key(merchant_id: int, identifier: str, recent_duplicate: bool) -> tuple[int, str, bool]:
        return (int(merchant_id), str(identifier), bool(recent_duplicate))

    def _unindex(self, identification_id: str, slot: _Slot) -> None:
        key = self._index_key(slot.merchant_id, slot.identifier, slot.record.recent_duplicate)
        if self._index.get(key) == identification_id:
            del self._index[key]

    def enqueue(self, merchant_id: int, identifier: str, record: IdentificationRecord,
                identification_id: Optional[str] = None) -> str:
        """Queue `record` and return its identification id.

        A live entry of the same kind (plain or recent-duplicate) for the same
        identifier at this merchant is replaced. `identification_id` lets the
        caller use an id it reserved beforehand.
        """
        merchant_id = int(merchant_id)
        index_key = self._index_key(merchant_id, identifier, record.recent_duplicate)
        with self.store.atomic():
            previous_id = self._index.pop(index_key, None)
            if previous_id is not None:
                self.store.delete(previous_id)

            if identification_id is None:
                identification_id = new_identification_id()
                while self.store.get(identification_id, now=record.created_at) is not None:
                    identification_id = new_identification_id()
            self.store.put(
                identification_id,
                _Slot(merchant_id=merchant_id, identifier=identifier, record=record),
                inserted_at=record.created_at,
            )
            self._index[index_key] = identification_id
        return identification_id

    def list(self, merchant_id: int, now: Optional[float] = None) -> list[QueuedIdentification]:
        """Live identifications for the merchant, most recent first."""
        t = now_ts() if now is None else float(now)
        merchant_id = int(merchant_id)
        entries = [
            QueuedIdentification(
                identification_id=key,
                record=slot.record,
                elapsed_seconds=max(0, int(t - inserted_at)),
            )
            for key, slot, inserted_at in self.store.live_items(now=t)
            if slot.merchant_id == merchant_id
        ]
        entries.sort(key=lambda e: t - e.record.created_at)
        return entries

    def get(self, merchant_id: int, identification_id: str,
            now: Optional[float] = None) -> Optional[IdentificationRecord]:
        slot: Optional[_Slot] = self.store.get(identification_id, now=now)
        if slot is None or slot.merchant_id != int(merchant_id):
            return None
        return slot.record

    def consume(self, merchant_id: int, identification_id: str,
                now: Optional[float] = None) -> IdentificationRecord:
        """Remove and return the identification; exactly one caller succeeds."""
        t = now_ts() if now is None else float(now)
        with self.store.atomic():
            slot: Optional[_Slot] = self.store.get(identification_id, now=t)
            if slot is None or slot.merchant_id != int(merchant_id):
                raise IdentificationNotFound()
            self.store.delete(identification_id)
            self._unindex(identification_id, slot)
        return slot.record

    def dismiss(self, merchant_id: int, identification_id: str, now: Optional[float] = None) -> None:
        with self.store.atomic():
            slot: Optional[_Slot] = self.store.get(identification_id, now=now)
            if slot is not None and slot.merchant_id == int(merchant_id):
                self.store.delete(identification_id)
                self._unindex(identification_id, slot)

    def prune_index(self, now: Optional[float] = None) -> int:
        """Drop index entries whose identification expired or was swept."""
        t = now_ts() if now is None else float(now)
        with self.store.atomic():
            stale = [key for key, ident in self._index.items()
                     if self.store.get(ident, now=t) is None]
            for key in stale:
                del self._index[key]
        return len(stale)
