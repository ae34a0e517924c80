"""
fixed_point.py - Checked unsigned fixed-point arithmetic

All market math runs on unsigned integers. Ratios (exchange rates, borrow
indices, haircuts) are "mantissas": integers scaled by EXP_SCALE = 1e18, so
0.6 is represented as 600_000_000_000_000_000.

Rules every helper follows:
    - Operands must be unsigned ints (ValueError otherwise)
    - Multiply before dividing, and truncate toward zero
    - Underflow, overflow past UINT_MAX and division by zero raise
      ArithmeticViolation subclasses; nothing ever wraps

Example:
    >>> mul_scalar_truncate(500, 600_000_000_000_000_000)
    300
    >>> fraction(400, 1000)
    400000000000000000
"""

from __future__ import annotations

from .core import (
    EXP_SCALE, UINT_MAX,
    ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero,
    require_uint,
)


def _check_overflow(result: int, op: str) -> int:
    if result > UINT_MAX:
        raise ArithmeticOverflow(f"{op} overflow: result exceeds UINT_MAX")
    return result


def add_u(a: int, b: int) -> int:
    """Return a + b, raising ArithmeticOverflow past UINT_MAX."""
    require_uint(a, "a")
    require_uint(b, "b")
    return _check_overflow(a + b, "addition")


def sub_u(a: int, b: int) -> int:
    """Return a - b, raising ArithmeticUnderflow if b > a."""
    require_uint(a, "a")
    require_uint(b, "b")
    if b > a:
        raise ArithmeticUnderflow(f"subtraction underflow: {a} - {b}")
    return a - b


def mul_u(a: int, b: int) -> int:
    """Return a * b, raising ArithmeticOverflow past UINT_MAX."""
    require_uint(a, "a")
    require_uint(b, "b")
    return _check_overflow(a * b, "multiplication")


def div_u(a: int, b: int) -> int:
    """Return a // b, raising DivisionByZero if b is zero."""
    require_uint(a, "a")
    require_uint(b, "b")
    if b == 0:
        raise DivisionByZero(f"division by zero: {a} / 0")
    return a // b


def mul_scalar_truncate(amount: int, mantissa: int) -> int:
    """
    Scale an amount by a fixed-point ratio: amount * mantissa / 1e18.

    Used to turn market tokens into underlying (mantissa = exchange rate) and
    to apply a survival multiplier to a claim.
    """
    return div_u(mul_u(amount, mantissa), EXP_SCALE)


def div_scalar_by_exp(amount: int, mantissa: int) -> int:
    """
    Divide an amount by a fixed-point ratio: amount * 1e18 / mantissa.

    Inverse of mul_scalar_truncate; used to turn underlying into market tokens.
    """
    return div_u(mul_u(amount, EXP_SCALE), mantissa)


def fraction(numerator: int, denominator: int) -> int:
    """Return numerator / denominator as a mantissa (numerator * 1e18 / denominator)."""
    return div_u(mul_u(numerator, EXP_SCALE), denominator)


def scale_by_index(principal: int, new_index: int, old_index: int) -> int:
    """
    Grow a principal recorded at old_index to new_index: principal * new / old.

    This is how borrow balances accrue interest between index updates.
    """
    return div_u(mul_u(principal, new_index), old_index)


def to_display(mantissa: int, places: int = 6) -> str:
    """Render a mantissa as a decimal string (for verbose output only)."""
    require_uint(mantissa, "mantissa")
    whole, frac = divmod(mantissa, EXP_SCALE)
    frac_str = str(frac).rjust(18, "0")[:places]
    return f"{whole}.{frac_str}"
