"""
Tests for the fixed-point decimal codec.

============================================================
PURPOSE
============================================================
- Exact scaling for magnitudes beyond float precision
- Lenient handling of null / non-numeric input
- toFixed-style rendering

============================================================
"""

from decimal import Decimal

import pytest

from portfolio_exporter.codec import (
    format_fixed,
    plain,
    scale_down,
    scale_up,
    to_decimal,
    to_decimal_string,
)


class TestToDecimal:
    """Tests for raw value parsing."""

    def test_parses_int_and_string(self):
        assert to_decimal(42) == Decimal(42)
        assert to_decimal("-1500") == Decimal(-1500)
        assert to_decimal(" 12.5 ") == Decimal("12.5")

    def test_rejects_non_numeric(self):
        assert to_decimal(None) is None
        assert to_decimal("abc") is None
        assert to_decimal(True) is None
        assert to_decimal([1]) is None

    def test_rejects_non_finite(self):
        assert to_decimal("NaN") is None
        assert to_decimal(float("inf")) is None


class TestToDecimalString:
    """Tests for raw integer -> decimal string rendering."""

    def test_default_exponent_is_six(self):
        assert to_decimal_string(1500000) == "1.5"

    def test_explicit_exponent(self):
        assert to_decimal_string(1234, 2) == "12.34"
        assert to_decimal_string(5, 0) == "5"

    def test_negative_amount(self):
        assert to_decimal_string(-2500000, 6) == "-2.5"

    def test_zero_renders_as_zero(self):
        assert to_decimal_string(0, 6) == "0"
        assert to_decimal_string("0", 18) == "0"

    def test_null_and_garbage_render_as_zero(self):
        assert to_decimal_string(None, 6) == "0"
        assert to_decimal_string("not-a-number", 6) == "0"

    def test_no_precision_loss_beyond_float_range(self):
        """Magnitudes above 2^53 keep their low-order digits."""
        raw = 123456789012345678901
        assert to_decimal_string(raw, 6) == "123456789012345.678901"
        assert to_decimal_string(str(raw), 0) == "123456789012345678901"

    def test_large_exponent(self):
        assert to_decimal_string(1, 18) == "0.000000000000000001"

    @pytest.mark.parametrize("raw,exp,expected", [
        (10 ** 18, 18, "1"),
        (10 ** 18 - 1, 18, "0.999999999999999999"),
        (-(10 ** 18), 6, "-1000000000000"),
    ])
    def test_boundary_magnitudes(self, raw, exp, expected):
        assert to_decimal_string(raw, exp) == expected


class TestScaling:
    """Tests for scale_down / scale_up."""

    def test_scale_down_then_up_is_exact(self):
        value = scale_down(5000000000, 9)
        assert value == Decimal(5)
        assert scale_up(value, 6) == Decimal(5000000)

    def test_scale_down_garbage_is_zero(self):
        assert scale_down("oops", 6) == Decimal(0)


class TestFormatting:
    """Tests for plain() and format_fixed()."""

    def test_plain_strips_trailing_zeros(self):
        assert plain(Decimal("50.000000")) == "50"
        assert plain(Decimal("1.2300")) == "1.23"
        assert plain(Decimal("1E+3")) == "1000"

    def test_format_fixed_pads(self):
        assert format_fixed(Decimal(50), 6) == "50.000000"
        assert format_fixed(Decimal("0.5"), 0) == "0"

    def test_format_fixed_rounds_half_even(self):
        assert format_fixed(Decimal("1.005"), 2) == "1.00"
        assert format_fixed(Decimal("1.015"), 2) == "1.02"

    def test_format_fixed_never_negative_zero(self):
        assert format_fixed(Decimal("-0.0000001"), 2) == "0.00"

    def test_format_fixed_many_places(self):
        text = format_fixed(Decimal("12345.5"), 60)

        assert text == "12345.5" + "0" * 59
