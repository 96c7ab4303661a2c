"""
stakefarm/fixedpoint.py

Integer fixed-point helpers.

All ledger quantities are unsigned 256-bit integers. Python ints never
overflow, so every helper checks its result against UINT256_MAX and raises
ArithmeticOverflowError instead of wrapping. Division always floors.
"""

from .config import PERCENT_SCALE, UINT256_MAX
from .errors import ArithmeticOverflowError


def checked(value: int) -> int:
    """Return value if it fits in a uint256, raise otherwise."""
    if value < 0 or value > UINT256_MAX:
        raise ArithmeticOverflowError()
    return value


def add(a: int, b: int) -> int:
    return checked(a + b)


def sub(a: int, b: int) -> int:
    return checked(a - b)


def mul(a: int, b: int) -> int:
    return checked(a * b)


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    floor(a * b / denominator) with a full-precision intermediate.

    Only the inputs and the result must fit in a uint256; the product
    itself may not.

    Raises:
        ZeroDivisionError: denominator is zero
        ArithmeticOverflowError: an input or the result is out of range
    """
    checked(a)
    checked(b)
    if denominator == 0:
        raise ZeroDivisionError("mul_div by zero")
    return checked((a * b) // denominator)


def percent_of(amount: int, percent: int) -> int:
    """amount * percent / 100, percent in whole percents."""
    return mul_div(amount, percent, 100)


def scaled_percent_of(amount: int, percent: int, scale: int = PERCENT_SCALE) -> int:
    """amount * percent / (100 * scale), percent in fixed point."""
    return mul_div(amount, percent, 100 * scale)
