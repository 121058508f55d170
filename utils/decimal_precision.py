#!/usr/bin/env python3
"""
Decimal Precision Utilities for Native Token Amounts
Enforces consistent Decimal usage between user input, wei and display text
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_DOWN, getcontext
from typing import Union

logger = logging.getLogger(__name__)

# Set global decimal precision for financial calculations
getcontext().prec = 78

WEI_PER_UNIT = Decimal(10) ** 18
MIN_DISPLAY_AMOUNT = Decimal("0.0001")


class MonetaryDecimal:
    """Decimal-only conversions between token units and wei"""

    WEI_PRECISION = Decimal("0.000000000000000001")  # 18 decimal places

    @classmethod
    def to_decimal(cls, value: Union[str, int, float, Decimal], context: str = "monetary") -> Decimal:
        """Convert any numeric value to Decimal; raises ValueError when not numeric"""
        if isinstance(value, Decimal):
            return value
        try:
            # Convert to string first to avoid float precision issues
            return Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            logger.error(f"Failed to convert {value!r} to Decimal in context {context}: {e}")
            raise ValueError(f"Invalid amount: {value!r}") from e

    @classmethod
    def to_wei(cls, amount: Union[str, int, float, Decimal]) -> int:
        """Token units to wei, truncating anything below 1 wei"""
        units = cls.to_decimal(amount, "to_wei").quantize(cls.WEI_PRECISION, rounding=ROUND_DOWN)
        return int(units * WEI_PER_UNIT)

    @classmethod
    def from_wei(cls, amount_wei: int) -> Decimal:
        """Wei to token units, normalized so 1.5 reads as 1.5"""
        value = Decimal(int(amount_wei)) / WEI_PER_UNIT
        return value.normalize() if value else Decimal("0")

    @classmethod
    def format_token_amount(cls, amount_wei: int, token: str) -> str:
        """
        Display rule for history text:
        below 0.0001 the exact amount, below 1 four decimals, otherwise two
        """
        amount = cls.from_wei(amount_wei)
        if amount < MIN_DISPLAY_AMOUNT:
            return f"{amount:f} {token}"
        if amount < 1:
            return f"{amount:.4f} {token}"
        return f"{amount:.2f} {token}"


def to_wei(amount: Union[str, int, float, Decimal]) -> int:
    return MonetaryDecimal.to_wei(amount)


def from_wei(amount_wei: int) -> Decimal:
    return MonetaryDecimal.from_wei(amount_wei)


def format_token_amount(amount_wei: int, token: str) -> str:
    return MonetaryDecimal.format_token_amount(amount_wei, token)
