"""
test_fixed_point.py - Unit tests for checked unsigned fixed-point math

Tests:
- Basic checked operations
- Underflow, overflow and division by zero
- Scaling by mantissas (multiply-then-divide order)
- Operand validation
"""

import pytest

from lending_ledger import (
    EXP_SCALE, UINT_MAX,
    add_u, sub_u, mul_u, div_u,
    mul_scalar_truncate, div_scalar_by_exp, fraction, scale_by_index,
    ArithmeticUnderflow, ArithmeticOverflow, DivisionByZero, ArithmeticViolation,
)
from lending_ledger.fixed_point import to_display


class TestCheckedOperations:
    """Tests for add_u / sub_u / mul_u / div_u."""

    def test_add(self):
        assert add_u(2, 3) == 5

    def test_add_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            add_u(UINT_MAX, 1)

    def test_sub(self):
        assert sub_u(10, 4) == 6

    def test_sub_to_zero(self):
        assert sub_u(7, 7) == 0

    def test_sub_underflow_raises_instead_of_wrapping(self):
        with pytest.raises(ArithmeticUnderflow, match="underflow"):
            sub_u(400, 1000)

    def test_mul_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            mul_u(UINT_MAX, 2)

    def test_div_truncates(self):
        assert div_u(7, 2) == 3

    def test_div_by_zero(self):
        with pytest.raises(DivisionByZero):
            div_u(1, 0)

    def test_errors_share_base_class(self):
        """All arithmetic failures are catchable as ArithmeticViolation."""
        for fn, args in [(sub_u, (0, 1)), (div_u, (1, 0)), (add_u, (UINT_MAX, 1))]:
            with pytest.raises(ArithmeticViolation):
                fn(*args)


class TestOperandValidation:
    """Operands must be unsigned ints."""

    @pytest.mark.parametrize("bad", [-1, 1.5, "10", None, True])
    def test_rejects_non_uint(self, bad):
        with pytest.raises(ValueError):
            add_u(bad, 1)

    def test_rejects_operand_above_uint_max(self):
        with pytest.raises(ValueError, match="UINT_MAX"):
            sub_u(UINT_MAX + 1, 1)


class TestMantissaScaling:
    """Tests for mantissa helpers."""

    def test_mul_scalar_truncate(self):
        # 500 * 0.6 = 300
        assert mul_scalar_truncate(500, 600_000_000_000_000_000) == 300

    def test_mul_scalar_truncate_rounds_down(self):
        # 1 * 0.999... = 0.999... -> 0
        assert mul_scalar_truncate(1, EXP_SCALE - 1) == 0

    def test_div_scalar_by_exp(self):
        # 300 underlying at 2.0 underlying/token = 150 tokens
        assert div_scalar_by_exp(300, 2 * EXP_SCALE) == 150

    def test_div_scalar_by_zero_rate(self):
        with pytest.raises(DivisionByZero):
            div_scalar_by_exp(300, 0)

    def test_fraction(self):
        assert fraction(400, 1000) == 400_000_000_000_000_000

    def test_fraction_zero_denominator(self):
        with pytest.raises(DivisionByZero):
            fraction(0, 0)

    def test_multiply_before_divide_preserves_precision(self):
        """1/3 of 3e18 computed as (1 * 1e18 / 3) loses less than dividing first."""
        third = fraction(1, 3)
        assert third == 333_333_333_333_333_333
        assert mul_scalar_truncate(3 * EXP_SCALE, third) == 999_999_999_999_999_999

    def test_scale_by_index(self):
        # Principal 1000 borrowed at index 1.0, now index 1.1 -> 1100
        assert scale_by_index(1000, 1_100_000_000_000_000_000, EXP_SCALE) == 1100

    def test_to_display(self):
        assert to_display(600_000_000_000_000_000) == "0.600000"
        assert to_display(EXP_SCALE, places=2) == "1.00"
