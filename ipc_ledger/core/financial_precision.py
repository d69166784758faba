"""
DECIMAL PRECISION & FINANCIAL UTILITIES

This module provides:
1. Conversion of float/int/str inputs to Decimal (via str, no binary drift)
2. Safe arithmetic with explicit zero on division by zero
3. Percentage helpers and [0, 100] clamping
4. Rounding at calculation boundary only

Quantities keep full precision; only money shown on documents is rounded.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union
import logging

from ipc_ledger import config

logger = logging.getLogger(__name__)

Number = Union[float, int, str, Decimal]

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')
HUNDRED = Decimal('100')
ZERO = Decimal('0')


class FinancialPrecisionError(Exception):
    """Raised when a value cannot be used in a financial calculation"""
    pass


def to_decimal(value: Number) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    None is treated as zero, the way missing backend fields are.
    NaN and infinity are rejected.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise FinancialPrecisionError(f"Not a number: {value!r}")
    else:
        raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")

    if not result.is_finite():
        raise FinancialPrecisionError(f"Not a finite number: {value!r}")
    return result


def to_float(value: Number) -> float:
    """Convert back to float for models and wire payloads (no rounding)."""
    return float(to_decimal(value))


def round_financial(value: Number) -> Decimal:
    """
    Round a value to 2 decimal places (half up).
    This should be called ONLY at calculation boundaries.
    """
    return to_decimal(value).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def safe_multiply(a: Number, b: Number) -> Decimal:
    """Safe multiplication preserving precision"""
    return to_decimal(a) * to_decimal(b)


def safe_divide(numerator: Number, denominator: Number) -> Decimal:
    """Safe division with zero check"""
    denom = to_decimal(denominator)
    if denom == ZERO:
        return ZERO
    return to_decimal(numerator) / denom


def safe_subtract(a: Number, b: Number) -> Decimal:
    """Safe subtraction preserving precision"""
    return to_decimal(a) - to_decimal(b)


def safe_add(*values: Number) -> Decimal:
    """Safe addition of multiple values"""
    result = ZERO
    for v in values:
        result += to_decimal(v)
    return result


def calculate_percentage(amount: Number, percentage: Number) -> Decimal:
    """
    Calculate percentage of an amount.
    Example: calculate_percentage(1000, 10) = 100
    """
    return safe_multiply(amount, percentage) / HUNDRED


def ratio_percent(part: Number, whole: Number) -> Decimal:
    """part / whole * 100, zero when whole is zero."""
    return safe_divide(part, whole) * HUNDRED


def floor_zero(value: Number) -> Decimal:
    """max(0, value)"""
    return max(ZERO, to_decimal(value))


def clamp_percentage(value: Number) -> Decimal:
    """Clamp a percentage into [MIN_PERCENTAGE, MAX_PERCENTAGE]."""
    low = to_decimal(config.MIN_PERCENTAGE)
    high = to_decimal(config.MAX_PERCENTAGE)
    return min(high, max(low, to_decimal(value)))
