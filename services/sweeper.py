"""Periodic eviction of expired entries from every ExpiringStore.

Readers already ignore expired entries, so a late or skipped sweep only
delays reclaiming memory.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Optional

from services.expiring_store import ExpiringStore, now_ts


class StoreSweeper:

    def __init__(self, stores: Iterable[ExpiringStore], interval_seconds: float = 120,
                 logger: Optional[logging.Logger] = None,
                 after_sweep: Iterable[Callable[[float], int]] = ()) -> None:
        self.stores = list(stores)
        self.after_sweep = list(after_sweep)
        self.interval_seconds = float(interval_seconds)
        self.logger = logger or logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, now: Optional[float] = None) -> dict[str, int]:
        """Sweep every store once; a failing store does not stop the others."""
        t = now_ts() if now is None else float(now)
        removed: dict[str, int] = {}
        for store in self.stores:
            try:
                removed[store.name] = store.sweep(now=t)
            except Exception:
                self.logger.exception('⚠️ Sweep failed for store %s', store.name)
        for hook in self.after_sweep:
            try:
                hook(t)
            except Exception:
                self.logger.exception('⚠️ Post-sweep hook %r failed', hook)
        return removed

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            removed = self.run_once()
            total = sum(removed.values())
            if total:
                self.logger.debug('🧹 Swept %d expired entries: %s', total, removed)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='store-sweeper', daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
