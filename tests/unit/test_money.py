"""Unit tests for fixed-point money helpers"""

import pytest
from decimal import Decimal
from finplan_engine.domain.exceptions import ComputationFailureError
from finplan_engine.domain.money import guarded_arithmetic, quantize, round_money, safe_divide, to_decimal


def test_to_decimal_rejects_float():
    """Floats have already lost precision, so they are refused"""
    with pytest.raises(TypeError):
        to_decimal(0.1)


def test_to_decimal_accepts_str_and_int():
    assert to_decimal("0.1") == Decimal("0.1")
    assert to_decimal(3) == Decimal("3")


def test_round_money_is_bankers_rounding():
    """Ties round to the even neighbour"""
    assert round_money(Decimal("10.125"), 2) == Decimal("10.12")
    assert round_money(Decimal("10.135"), 2) == Decimal("10.14")
    assert round_money(Decimal("2.5"), 0) == Decimal("2")


def test_quantize_keeps_six_digits():
    assert quantize(Decimal("1") / Decimal("3")) == Decimal("0.333333")


def test_safe_divide_zero_denominator():
    assert safe_divide(Decimal("5"), Decimal("0")) is None
    assert safe_divide(Decimal("5"), Decimal("2")) == Decimal("2.5")


def test_guarded_arithmetic_wraps_decimal_errors():
    with pytest.raises(ComputationFailureError):
        with guarded_arithmetic("test division"):
            Decimal("1") / Decimal("0")
