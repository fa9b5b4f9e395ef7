"""Single-use, time-boxed capability tokens.

A token proves that an earlier step happened (a QR identification was
consumed by staff, a customer card was scanned) so a later request can skip a
check, or it stands in for a stored secret so the caller never handles the
secret itself. Reading a token deletes it.
"""

from __future__ import annotations

import secrets
from typing import NamedTuple, Optional

from services.expiring_store import ExpiringStore, now_ts


class CapabilityGrant(NamedTuple):
    payload: Optional[str]
    issued_at: float


class CapabilityTokenIssuer:
    """Mints opaque tokens into a store of its own.

    Each issuer owns a separate store, so a token minted by one issuer can
    never be resolved by another.
    """

    def __init__(self, name: str, ttl_seconds: float) -> None:
        self.name = name
        self.ttl_seconds = float(ttl_seconds)
        self.store = ExpiringStore(name, ttl_seconds)

    def issue(self, payload: Optional[str] = None, now: Optional[float] = None) -> str:
        t = now_ts() if now is None else float(now)
        token = secrets.token_urlsafe(32)
        with self.store.atomic():
            while self.store.get(token, now=t) is not None:
                token = secrets.token_urlsafe(32)
            self.store.put(token, CapabilityGrant(payload=payload, issued_at=t), inserted_at=t)
        return token

    def resolve(self, token: Optional[str], now: Optional[float] = None) -> Optional[CapabilityGrant]:
        """Return the grant once; unknown, reused and expired tokens give None."""
        key = str(token or '').strip()
        if not key:
            return None
        return self.store.pop(key, now=now)

    def __repr__(self) -> str:
        return f'<CapabilityTokenIssuer {self.name} ttl={self.ttl_seconds:g}s>'
