"""Email and phone normalization so the same customer always maps to the same key.

Env vars:
  - DEFAULT_COUNTRY_CODE (default: 32)
"""

from __future__ import annotations

import os
import re
from typing import NamedTuple, Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _default_country_code() -> str:
    cc = (os.getenv('DEFAULT_COUNTRY_CODE') or '32').strip().lstrip('+')
    return cc or '32'


def normalize_email(value: Optional[str]) -> Optional[str]:
    """Trim + lowercase. Returns None if the result is not an email address."""
    if not value or not isinstance(value, str):
        return None
    email = value.strip().lower()
    if not _EMAIL_RE.match(email):
        return None
    return email


def normalize_phone(value: Optional[str], country_code: Optional[str] = None) -> Optional[str]:
    """Best-effort E.164 formatting.

    Examples (default country code 32):
      - +32497123456   -> +32497123456
      - 0032497123456  -> +32497123456
      - 0497 12 34 56  -> +32497123456
      - 497123456      -> +32497123456
    """
    if not value or not isinstance(value, str):
        return None

    raw = value.strip()
    has_plus = raw.startswith('+')
    digits = ''.join(ch for ch in raw if ch.isdigit())
    if len(digits) < 8:
        return None

    cc = (country_code or _default_country_code()).strip().lstrip('+')

    if has_plus:
        phone = f'+{digits}'
    elif digits.startswith('00'):
        phone = f'+{digits[2:]}'
    elif digits.startswith('0'):
        phone = f'+{cc}{digits[1:]}'
    else:
        phone = f'+{cc}{digits}'

    # E.164: + followed by 10-15 digits
    if not re.fullmatch(r'\+\d{10,15}', phone):
        return None
    return phone


class ContactInfo(NamedTuple):
    email: Optional[str]
    phone: Optional[str]

    @property
    def identifier(self) -> str:
        """Stable key for per-customer ephemeral state."""
        return self.email or self.phone or ''


def parse_contact_info(value: Optional[str]) -> Optional[ContactInfo]:
    """Classify a free-form contact field as email or phone.

    Returns None when it is neither.
    """
    raw = (value or '').strip() if isinstance(value, str) else ''
    if not raw:
        return None
    if '@' in raw:
        email = normalize_email(raw)
        return ContactInfo(email=email, phone=None) if email else None
    phone = normalize_phone(raw)
    return ContactInfo(email=None, phone=phone) if phone else None


def is_valid_pin(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(re.fullmatch(r'\d{4}', value))
