#!/usr/bin/env python3
"""
Decimal Precision Utilities for Token Amounts
Enforces consistent Decimal usage when converting between human token units
and on-chain integer base units
"""

import logging
from decimal import Context, Decimal, ROUND_DOWN, InvalidOperation
from typing import Union

logger = logging.getLogger(__name__)


class TokenAmount:
    """Decimal-only conversions between token units and base units"""

    NATIVE_DECIMALS = 18
    # 78 digits covers the full uint256 range
    CONTEXT = Context(prec=78)

    @classmethod
    def to_decimal(cls, value: Union[str, int, float, Decimal], context: str = "token") -> Decimal:
        """Convert a numeric value to Decimal, rejecting non-finite input"""
        if isinstance(value, Decimal):
            decimal_value = value
        else:
            try:
                # Convert to string first to avoid float precision issues
                decimal_value = Decimal(str(value).strip())
            except (InvalidOperation, ValueError) as e:
                raise ValueError(f"Invalid amount {value!r} in context {context}") from e

        if not decimal_value.is_finite():
            raise ValueError(f"Non-finite amount {value!r} in context {context}")
        return decimal_value

    @classmethod
    def to_base_units(cls, amount: Union[str, int, float, Decimal], decimals: int) -> int:
        """
        Scale a human amount to integer base units (like parseUnits).
        Digits beyond the token's precision are an error, never silently dropped.
        """
        decimal_amount = cls.to_decimal(amount, "to_base_units")
        if decimal_amount < 0:
            raise ValueError(f"Negative token amount: {decimal_amount}")

        scaled = decimal_amount.scaleb(decimals, context=cls.CONTEXT)
        integral = scaled.to_integral_value(rounding=ROUND_DOWN, context=cls.CONTEXT)
        if integral != scaled:
            raise ValueError(f"Amount {decimal_amount} has more than {decimals} decimal places")
        return int(integral)

    @classmethod
    def from_base_units(cls, units: int, decimals: int) -> Decimal:
        """Scale integer base units back to a human Decimal (like formatUnits)"""
        return Decimal(int(units)).scaleb(-decimals, context=cls.CONTEXT)

    @classmethod
    def quantize_to_decimals(cls, amount: Union[str, int, float, Decimal], decimals: int) -> Decimal:
        """Truncate an amount to a token's precision"""
        decimal_amount = cls.to_decimal(amount, "quantize")
        return decimal_amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN, context=cls.CONTEXT)

    @classmethod
    def format_amount(cls, amount: Union[str, int, float, Decimal], decimals: int) -> str:
        """Normalized string for logs and receipts"""
        quantized = cls.quantize_to_decimals(amount, decimals)
        text = format(quantized.normalize(context=cls.CONTEXT), "f")
        return text if text not in ("-0", "") else "0"
