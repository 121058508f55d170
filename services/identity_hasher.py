"""
Identity Hasher
Derives the privacy-preserving identity hash used as the registry key and as
the indexed topic on transfer events.

One canonical normalization is applied at every call site (transfer recipient,
transfer sender, history query) so the same phone always yields the same hash.
"""

import hashlib
import logging
import re
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException

logger = logging.getLogger(__name__)

ZERO_HASH = "0x" + "0" * 64

_NON_DIGITS = re.compile(r"\D")
_IDENTITY_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")
_WALLET_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _country_digits(default_country_code: Optional[str]) -> str:
    return _NON_DIGITS.sub("", default_country_code or "")


def _is_possible_international(candidate: str) -> bool:
    try:
        return phonenumbers.is_possible_number(phonenumbers.parse(candidate, None))
    except NumberParseException:
        return False


def normalize_phone(raw: Optional[str], default_country_code: Optional[str] = None) -> str:
    """
    Canonicalize raw user input into a phone identifier.

    Keeps digits and a leading '+'. Without a '+':
    - a leading '00' is the international dialling prefix and becomes '+'
    - a single leading trunk '0' is replaced by the default country code
    - digits that already start with the country code are kept as-is when
      they form a possible international number
    - otherwise the default country code is prepended

    Never raises; empty input yields an empty string.
    """
    trimmed = (raw or "").strip()
    has_plus = trimmed.startswith("+")
    digits = _NON_DIGITS.sub("", trimmed)

    if not digits:
        return ""
    if has_plus:
        return f"+{digits}"
    if digits.startswith("00"):
        return f"+{digits[2:]}"

    country = _country_digits(default_country_code)
    if not country:
        return digits
    if digits.startswith("0"):
        return f"+{country}{digits[1:]}"
    if digits.startswith(country) and _is_possible_international(f"+{digits}"):
        return f"+{digits}"
    return f"+{country}{digits}"


def hash_phone(identifier: str) -> str:
    """SHA-256 of the UTF-8 identifier as 0x-prefixed lowercase hex"""
    return "0x" + hashlib.sha256(identifier.encode("utf-8")).hexdigest()


def identity_hash_for(raw: str, default_country_code: Optional[str] = None) -> str:
    return hash_phone(normalize_phone(raw, default_country_code))


def is_identity_hash(value: Optional[str]) -> bool:
    return bool(value) and bool(_IDENTITY_HASH_PATTERN.match(value))


def is_wallet_address(value: Optional[str]) -> bool:
    return bool(value) and bool(_WALLET_ADDRESS_PATTERN.match(value))


def is_zero_hash(value: Optional[str]) -> bool:
    return not value or value.lower() == ZERO_HASH


def same_hash(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left.lower() == right.lower()


def mask_phone(phone: Optional[str]) -> str:
    """Phone numbers are logged with the middle digits hidden"""
    if not phone:
        return "<none>"
    if len(phone) <= 6:
        return phone[:2] + "***"
    return f"{phone[:4]}***{phone[-3:]}"


class IdentityHasher:
    """Binds the configured default country code to normalize/hash"""

    def __init__(self, default_country_code: Optional[str] = None):
        self.default_country_code = default_country_code

    def normalize(self, raw: Optional[str]) -> str:
        return normalize_phone(raw, self.default_country_code)

    def hash(self, identifier: str) -> str:
        return hash_phone(identifier)

    def identity_for(self, raw: Optional[str]) -> str:
        normalized = self.normalize(raw)
        identity = hash_phone(normalized)
        logger.debug(f"Identity for {mask_phone(normalized)}: {identity[:12]}...")
        return identity
