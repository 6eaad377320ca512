"""
fixed_point.py - Unsigned integer arithmetic for the lending ledger

All ledger amounts are unsigned 256-bit integers in an asset's smallest
unit. Division truncates (floor). Any result outside [0, MAX_UINT256]
raises ArithmeticOverflow instead of wrapping.

Key formulas:
    basis_points_of(x, bps) = x * bps // 10000
    scale_by_time(annual, seconds) = annual * seconds // SECONDS_PER_YEAR
"""

from __future__ import annotations

from .core import ArithmeticOverflow, BASIS_POINTS, MAX_UINT256, SECONDS_PER_YEAR


def _check(result: int, operation: str, left: int, right: int) -> int:
    if result < 0 or result > MAX_UINT256:
        raise ArithmeticOverflow(operation, left, right)
    return result


def checked_add(a: int, b: int) -> int:
    return _check(a + b, "+", a, b)


def checked_sub(a: int, b: int) -> int:
    """Subtract, raising ArithmeticOverflow on underflow."""
    return _check(a - b, "-", a, b)


def checked_mul(a: int, b: int) -> int:
    return _check(a * b, "*", a, b)


def mul_div(x: int, numerator: int, denominator: int) -> int:
    """
    Compute floor(x * numerator / denominator).

    The intermediate product is checked, matching 256-bit semantics.

    Raises:
        ArithmeticOverflow: If x * numerator exceeds MAX_UINT256.
        ZeroDivisionError: If denominator is zero.
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    return checked_mul(x, numerator) // denominator


def basis_points_of(x: int, bps: int) -> int:
    """
    Take a basis-point percentage of an amount.

    Example:
        basis_points_of(500, 15000) == 750   # 150% of 500
    """
    return mul_div(x, bps, BASIS_POINTS)


def scale_by_time(annual_amount: int, elapsed_seconds: int) -> int:
    """
    Pro-rate an annual amount over elapsed seconds.

    Negative elapsed time (clock skew) is treated as zero.

    Example:
        scale_by_time(25, SECONDS_PER_YEAR) == 25
    """
    if elapsed_seconds <= 0:
        return 0
    return mul_div(annual_amount, elapsed_seconds, SECONDS_PER_YEAR)
