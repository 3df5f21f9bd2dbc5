"""
Normalise-then-hash helpers for enhanced conversions.

The ad platform matches SHA-256 hex digests of normalised values, so raw
PII is hashed here before it is attached to any event.
"""

import hashlib
import re
from typing import Optional

SHA256_HEX = re.compile(r'^[a-f0-9]{64}$')


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


def is_sha256_hex(value: Optional[str]) -> bool:
    return bool(value) and bool(SHA256_HEX.match(value))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str) -> str:
    """Keep digits only, preserving a leading '+' (E.164 style)"""
    phone = phone.strip()
    digits = re.sub(r'\D', '', phone)
    return f"+{digits}" if phone.startswith('+') else digits


def normalize_text(value: str) -> str:
    return value.strip().lower()


def hash_email(email: Optional[str]) -> Optional[str]:
    if not email or not email.strip():
        return None
    return sha256_hex(normalize_email(email))


def hash_phone(phone: Optional[str]) -> Optional[str]:
    if not phone or not normalize_phone(phone).lstrip('+'):
        return None
    return sha256_hex(normalize_phone(phone))


def hash_text(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    return sha256_hex(normalize_text(value))
