"""Composition of the in-memory recognition state.

One engine per Flask app, stored in ``app.extensions['recognition']``.
Nothing here is persisted; a restart empties every store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from flask import current_app

from services.capability_tokens import CapabilityTokenIssuer
from services.cooldown import IdentificationCooldowns
from services.expiring_store import ExpiringStore
from services.identification_queue import IdentificationQueue
from services.rate_limiter import LoginRateLimiter, RequestCeiling
from services.sweeper import StoreSweeper

EXTENSION_KEY = 'recognition'


@dataclass
class RecognitionEngine:
    identifications: IdentificationQueue
    cooldowns: IdentificationCooldowns
    login_limiter: LoginRateLimiter
    staff_login_limiter: LoginRateLimiter
    registration_ceiling: RequestCeiling
    pin_tokens: CapabilityTokenIssuer
    verify_tokens: CapabilityTokenIssuer
    sweeper: StoreSweeper

    @property
    def stores(self) -> list[ExpiringStore]:
        return list(self.sweeper.stores)

    def grant_customer_access(self, merchant_id: int, end_user_id: int,
                              pin_hash: Optional[str] = None,
                              now: Optional[float] = None) -> dict[str, str]:
        """Tokens handed to staff once they have the customer in front of them.

        The verify token lets one redemption skip the PIN for this customer at
        this merchant. The PIN token carries the stored PIN hash.
        """
        tokens = {'verifyToken': self.verify_tokens.issue(_subject(merchant_id, end_user_id), now=now)}
        if pin_hash:
            tokens['pinToken'] = self.pin_tokens.issue(pin_hash, now=now)
        return tokens

    def check_verify_token(self, token: Optional[str], merchant_id: int, end_user_id: int,
                           now: Optional[float] = None) -> bool:
        grant = self.verify_tokens.resolve(token, now=now)
        return grant is not None and grant.payload == _subject(merchant_id, end_user_id)

    def pin_hash_for(self, token: Optional[str], now: Optional[float] = None) -> Optional[str]:
        grant = self.pin_tokens.resolve(token, now=now)
        return grant.payload if grant else None

    def shutdown(self) -> None:
        self.sweeper.stop()


def _subject(merchant_id: int, end_user_id: int) -> str:
    return f'{int(merchant_id)}:{int(end_user_id)}'


def _setting(config: Mapping[str, Any], key: str, default: float) -> float:
    value = config.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def build_engine(config: Mapping[str, Any], logger: Optional[logging.Logger] = None) -> RecognitionEngine:
    """Create every store with the TTLs and thresholds from `config`."""
    max_failures = int(_setting(config, 'LOGIN_MAX_FAILED_ATTEMPTS', 5))
    lockout = _setting(config, 'LOGIN_LOCKOUT_SECONDS', 15 * 60)

    identifications = IdentificationQueue(_setting(config, 'QR_IDENTIFICATION_TTL_SECONDS', 15 * 60))
    cooldowns = IdentificationCooldowns(_setting(config, 'QR_COOLDOWN_SECONDS', 15 * 60))
    login_limiter = LoginRateLimiter(max_failures, lockout, name='client_login_attempts')
    staff_login_limiter = LoginRateLimiter(max_failures, lockout, name='staff_login_attempts')
    registration_ceiling = RequestCeiling(
        int(_setting(config, 'QR_REGISTRATION_LIMIT', 10)),
        _setting(config, 'QR_REGISTRATION_WINDOW_SECONDS', 60 * 60),
    )
    pin_tokens = CapabilityTokenIssuer('pin_tokens', _setting(config, 'PIN_TOKEN_TTL_SECONDS', 5 * 60))
    verify_tokens = CapabilityTokenIssuer('verify_tokens', _setting(config, 'VERIFY_TOKEN_TTL_SECONDS', 30 * 60))

    sweeper = StoreSweeper(
        [
            identifications.store,
            cooldowns.store,
            login_limiter.store,
            staff_login_limiter.store,
            registration_ceiling.store,
            pin_tokens.store,
            verify_tokens.store,
        ],
        interval_seconds=_setting(config, 'QR_SWEEP_INTERVAL_SECONDS', 2 * 60),
        logger=logger,
        after_sweep=[identifications.prune_index],
    )

    return RecognitionEngine(
        identifications=identifications,
        cooldowns=cooldowns,
        login_limiter=login_limiter,
        staff_login_limiter=staff_login_limiter,
        registration_ceiling=registration_ceiling,
        pin_tokens=pin_tokens,
        verify_tokens=verify_tokens,
        sweeper=sweeper,
    )


def get_engine() -> RecognitionEngine:
    return current_app.extensions[EXTENSION_KEY]
