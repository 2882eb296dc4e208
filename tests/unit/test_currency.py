"""Unit tests for effective-dated currency conversion"""

import pytest
from datetime import date
from decimal import Decimal
from finplan_engine.domain.currency import CurrencyConverter, InMemoryRateSource, select_effective_rate
from finplan_engine.domain.exceptions import NotFoundError, RateNotFoundError
from finplan_engine.domain.models import ExchangeRate
from finplan_engine.domain.money import round_money


@pytest.fixture
def converter() -> CurrencyConverter:
    rates = InMemoryRateSource(
        [
            ExchangeRate("EUR", "USD", Decimal("1.10"), date(2024, 1, 1)),
            ExchangeRate("EUR", "USD", Decimal("1.20"), date(2024, 7, 1)),
            ExchangeRate("USD", "JPY", Decimal("150"), date(2024, 1, 1)),
        ]
    )
    return CurrencyConverter(rates)


def test_same_currency_is_identity(converter: CurrencyConverter):
    assert converter.convert(Decimal("123.45"), "USD", "USD", date(2020, 1, 1)) == Decimal("123.45")


def test_uses_most_recent_rate_not_after_date(converter: CurrencyConverter):
    assert converter.convert(Decimal("100"), "EUR", "USD", date(2024, 3, 1)) == Decimal("110")
    assert converter.convert(Decimal("100"), "EUR", "USD", date(2024, 7, 1)) == Decimal("120")


def test_never_uses_future_rate(converter: CurrencyConverter):
    """No rate was effective in 2023, and later ones must not be back-filled"""
    with pytest.raises(RateNotFoundError):
        converter.convert(Decimal("100"), "EUR", "USD", date(2023, 12, 31))


def test_inverse_rate_fallback(converter: CurrencyConverter):
    """USD->EUR is only stored as EUR->USD"""
    assert converter.convert(Decimal("110"), "USD", "EUR", date(2024, 3, 1)) == Decimal("100")

    rate = converter.resolve("USD", "EUR", date(2024, 3, 1))
    assert rate.source.startswith("inverse")
    assert abs(rate.rate * Decimal("1.10") - 1) < Decimal("1e-20")


def test_missing_pair_raises_rate_not_found(converter: CurrencyConverter):
    with pytest.raises(RateNotFoundError) as exc_info:
        converter.convert(Decimal("1"), "EUR", "JPY", date(2024, 3, 1))
    assert isinstance(exc_info.value, NotFoundError)


@pytest.mark.parametrize("amount", ["0.01", "19.99", "1234.56", "999999.99"])
def test_round_trip_within_one_minor_unit(converter: CurrencyConverter, amount: str):
    """convert(convert(a, X, Y), Y, X) == a within one minor unit"""
    value = Decimal(amount)
    on = date(2024, 3, 1)
    there = converter.convert(value, "USD", "JPY", on)
    back = converter.convert(there, "JPY", "USD", on)
    assert abs(round_money(back, 2) - value) <= Decimal("0.01")


def test_select_effective_rate_same_day_last_appended_wins():
    first = ExchangeRate("EUR", "USD", Decimal("1.10"), date(2024, 1, 1), source="a")
    correction = ExchangeRate("EUR", "USD", Decimal("1.11"), date(2024, 1, 1), source="b")

    assert select_effective_rate([first, correction], date(2024, 2, 1)) is correction
    assert select_effective_rate([first, correction], date(2023, 2, 1)) is None
