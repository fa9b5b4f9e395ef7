"""In-memory key/value store with per-entry timestamps and TTL eviction.

Every piece of short-lived recognition state (pending identifications,
cooldowns, rate-limit counters, capability tokens) lives in its own instance.
Entries past the TTL are invisible to readers immediately; `sweep()` only
reclaims the memory.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional


def now_ts() -> float:
    return time.time()


@dataclass
class _Entry:
    value: Any
    inserted_at: float


class ExpiringStore:
    """Thread-safe map whose entries expire `ttl_seconds` after insertion."""

    def __init__(self, name: str, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError('ttl_seconds must be positive')
        self.name = name
        self.ttl_seconds = float(ttl_seconds)
        self._lock = threading.RLock()
        self._data: dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def atomic(self) -> threading.RLock:
        """Lock for compound operations performed by the owning component."""
        return self._lock

    def _is_live(self, entry: _Entry, now: float, ttl: Optional[float] = None) -> bool:
        limit = self.ttl_seconds if ttl is None else float(ttl)
        return (now - entry.inserted_at) <= limit

    def put(self, key: Hashable, value: Any, inserted_at: Optional[float] = None) -> None:
        ts = now_ts() if inserted_at is None else float(inserted_at)
        with self._lock:
            self._data[key] = _Entry(value=value, inserted_at=ts)

    def get(self, key: Hashable, now: Optional[float] = None) -> Any:
        t = now_ts() if now is None else float(now)
        with self._lock:
            entry = self._data.get(key)
            if entry is None or not self._is_live(entry, t):
                return None
            return entry.value

    def inserted_at(self, key: Hashable, now: Optional[float] = None) -> Optional[float]:
        t = now_ts() if now is None else float(now)
        with self._lock:
            entry = self._data.get(key)
            if entry is None or not self._is_live(entry, t):
                return None
            return entry.inserted_at

    def pop(self, key: Hashable, now: Optional[float] = None) -> Any:
        """Remove the entry and return its value if it was still live."""
        t = now_ts() if now is None else float(now)
        with self._lock:
            entry = self._data.pop(key, None)
        if entry is None or not self._is_live(entry, t):
            return None
        return entry.value

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def upsert(self, key: Hashable, fn: Callable[[Any], Any], now: Optional[float] = None) -> Any:
        """Replace the value with `fn(current_or_None)` and restamp it with `now`."""
        t = now_ts() if now is None else float(now)
        with self._lock:
            entry = self._data.get(key)
            current = entry.value if entry is not None and self._is_live(entry, t) else None
            value = fn(current)
            self._data[key] = _Entry(value=value, inserted_at=t)
            return value

    def modify(self, key: Hashable, fn: Callable[[Any], Any], now: Optional[float] = None) -> Any:
        """Replace a live value with `fn(current)`, keeping its original timestamp.

        Returns the new value, or None when the key is absent or expired.
        """
        t = now_ts() if now is None else float(now)
        with self._lock:
            entry = self._data.get(key)
            if entry is None or not self._is_live(entry, t):
                return None
            entry.value = fn(entry.value)
            return entry.value

    def live_items(self, now: Optional[float] = None) -> list[tuple[Hashable, Any, float]]:
        t = now_ts() if now is None else float(now)
        with self._lock:
            return [
                (key, entry.value, entry.inserted_at)
                for key, entry in self._data.items()
                if self._is_live(entry, t)
            ]

    def sweep(self, now: Optional[float] = None, ttl_seconds: Optional[float] = None) -> int:
        """Evict entries older than the TTL and return how many were removed."""
        t = now_ts() if now is None else float(now)
        with self._lock:
            keys = list(self._data.keys())

        removed = 0
        for key in keys:
            with self._lock:
                entry = self._data.get(key)
                # Re-checked under the lock: the key may have been re-inserted
                # since the snapshot was taken.
                if entry is not None and not self._is_live(entry, t, ttl_seconds):
                    del self._data[key]
                    removed += 1
        return removed

    def __repr__(self) -> str:
        return f'<ExpiringStore {self.name} ttl={self.ttl_seconds:g}s size={len(self)}>'
