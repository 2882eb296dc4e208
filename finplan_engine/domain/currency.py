"""Currency conversion at effective-dated exchange rates"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from finplan_engine.domain.exceptions import RateNotFoundError
from finplan_engine.domain.models import ExchangeRate
from finplan_engine.domain.money import DEFAULT_SCALE, guarded_arithmetic, quantize


class RateSource(Protocol):
    """Anything that can look up the rate effective for a currency pair on a date"""

    def find_rate(self, from_code: str, to_code: str, as_of: date) -> Optional[ExchangeRate]:
        ...


def select_effective_rate(rates: Iterable[ExchangeRate], as_of: date) -> Optional[ExchangeRate]:
    """
    Pick the most recent rate with effective_date <= as_of.

    Future rates are never used and nothing is extrapolated. When two rates
    share an effective date the one appended last wins.
    """
    selected: Optional[ExchangeRate] = None
    for rate in rates:
        if rate.effective_date > as_of:
            continue
        if selected is None or rate.effective_date >= selected.effective_date:
            selected = rate
    return selected


class InMemoryRateSource:
    """Append-only rate table held in memory"""

    def __init__(self, rates: Iterable[ExchangeRate] = ()):
        self._rates: Dict[Tuple[str, str], List[ExchangeRate]] = {}
        for rate in rates:
            self.add(rate)

    def add(self, rate: ExchangeRate) -> None:
        self._rates.setdefault((rate.from_code, rate.to_code), []).append(rate)

    def find_rate(self, from_code: str, to_code: str, as_of: date) -> Optional[ExchangeRate]:
        return select_effective_rate(self._rates.get((from_code, to_code), []), as_of)


@dataclass(frozen=True)
class Conversion:
    """Converted amount together with the rate that produced it"""

    amount: Decimal
    rate: Decimal
    rate_date: Optional[date]
    inverted: bool = False


class CurrencyConverter:
    """Converts amounts between currencies using the rate valid at a date"""

    def __init__(self, rates: RateSource, scale: int = DEFAULT_SCALE):
        self.rates = rates
        self.scale = scale

    def _lookup(self, from_code: str, to_code: str, as_of: date) -> Tuple[ExchangeRate, bool]:
        direct = self.rates.find_rate(from_code, to_code, as_of)
        if direct is not None:
            return direct, False

        inverse = self.rates.find_rate(to_code, from_code, as_of)
        if inverse is not None and inverse.rate != 0:
            return inverse, True

        raise RateNotFoundError(from_code, to_code, as_of)

    def resolve(self, from_code: str, to_code: str, as_of: date) -> ExchangeRate:
        """
        Find the rate converting from_code into to_code on as_of.

        Falls back to the inverse pair (rate' = 1/rate) when no direct rate
        exists; the returned record then carries the reciprocal.

        Raises:
            RateNotFoundError: neither direction has a rate effective by as_of
        """
        if from_code == to_code:
            return ExchangeRate(from_code, to_code, Decimal("1"), as_of, source="identity")

        record, inverted = self._lookup(from_code, to_code, as_of)
        if not inverted:
            return record
        with guarded_arithmetic("Inverse rate"):
            reciprocal = Decimal("1") / record.rate
        return ExchangeRate(
            from_code, to_code, reciprocal, record.effective_date, source=f"inverse:{record.source}", id=record.id
        )

    def convert_detailed(self, amount: Decimal, from_code: str, to_code: str, as_of: date) -> Conversion:
        if from_code == to_code:
            return Conversion(amount=quantize(amount, self.scale), rate=Decimal("1"), rate_date=None)

        record, inverted = self._lookup(from_code, to_code, as_of)
        with guarded_arithmetic("Currency conversion"):
            if inverted:
                # Divide by the stored rate rather than multiplying by a rounded reciprocal
                converted = amount / record.rate
                rate = Decimal("1") / record.rate
            else:
                converted = amount * record.rate
                rate = record.rate
        return Conversion(quantize(converted, self.scale), rate, record.effective_date, inverted)

    def convert(self, amount: Decimal, from_code: str, to_code: str, as_of: date) -> Decimal:
        """Convert amount; identity when both codes match"""
        return self.convert_detailed(amount, from_code, to_code, as_of).amount
