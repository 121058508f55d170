"""
Input validation for transfer and history requests
All failures raise InputInvalid before any store or ledger call is made
"""

import re
import logging
from decimal import Decimal
from typing import Iterable, Optional, Union

from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import InputInvalid

logger = logging.getLogger(__name__)


class InputValidator:
    """Validation for the produced interface's inputs"""

    WALLET_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
    IDENTITY_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")
    GROUPED_AMOUNT_PATTERN = re.compile(r"^\d{1,3}(,\d{3})+(\.\d+)?$")

    MAX_LIMIT = 100

    @classmethod
    def validate_amount(cls, amount: Union[str, int, float, Decimal, None]) -> Decimal:
        """Positive amount with at most 18 decimal places"""
        if amount is None or (isinstance(amount, str) and not amount.strip()):
            raise InputInvalid("Amount cannot be empty")
        if isinstance(amount, str):
            amount = amount.strip()
            if "," in amount:
                # Commas are only thousands separators; "1,5" is not 1.5 or 15
                if not cls.GROUPED_AMOUNT_PATTERN.match(amount):
                    raise InputInvalid("Invalid amount format. Use a dot for decimals, e.g. 1.5")
                amount = amount.replace(",", "")
        try:
            value = MonetaryDecimal.to_decimal(amount, "transfer_amount")
        except ValueError:
            raise InputInvalid("Invalid amount format. Please enter a valid number")

        if not value.is_finite() or value <= 0:
            raise InputInvalid("Amount must be greater than zero")

        exponent = value.as_tuple().exponent
        if isinstance(exponent, int) and exponent < -18:
            raise InputInvalid("Amount cannot have more than 18 decimal places")
        return value

    @classmethod
    def validate_token(cls, token: Optional[str], supported: Iterable[str]) -> str:
        """Only native-token symbols are accepted"""
        symbol = (token or "").strip().upper()
        supported = [s.upper() for s in supported]
        if not symbol:
            raise InputInvalid("Token symbol cannot be empty")
        if symbol not in supported:
            raise InputInvalid(
                f"Unsupported token: {token}. Only {' and '.join(supported)} (native) transfers are supported."
            )
        return symbol

    @classmethod
    def validate_phone(cls, phone: Optional[str], field_name: str = "recipient phone") -> str:
        """A non-empty phone string with enough digits to be a number at all"""
        if not phone or not phone.strip():
            raise InputInvalid(f"Missing {field_name}")
        digits = re.sub(r"\D", "", phone)
        if len(digits) < 6:
            raise InputInvalid(f"Invalid {field_name}: {phone}")
        return phone.strip()

    @classmethod
    def validate_wallet_address(cls, address: Optional[str]) -> str:
        address = (address or "").strip()
        if not cls.WALLET_ADDRESS_PATTERN.match(address):
            raise InputInvalid("Wallet address must be a valid address (0x followed by 40 hex characters)")
        return address

    @classmethod
    def validate_identity_hash(cls, identity_hash: Optional[str]) -> str:
        identity_hash = (identity_hash or "").strip()
        if not cls.IDENTITY_HASH_PATTERN.match(identity_hash):
            raise InputInvalid("Identity hash must be 0x followed by 64 hex characters")
        return identity_hash.lower()

    @classmethod
    def validate_limit(cls, limit: Optional[int], default: int) -> int:
        if limit is None:
            return default
        try:
            value = int(limit)
        except (TypeError, ValueError):
            raise InputInvalid("Limit must be a whole number")
        if value <= 0:
            raise InputInvalid("Limit must be at least 1")
        return min(value, cls.MAX_LIMIT)
