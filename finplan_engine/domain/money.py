"""Fixed-point money helpers shared by every computation"""

import decimal
from contextlib import contextmanager
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Iterable, Iterator, Optional, Union

from finplan_engine.domain.exceptions import ComputationFailureError

DEFAULT_SCALE = 6

Number = Union[Decimal, int, str]


def to_decimal(value: Number) -> Decimal:
    """
    Coerce a value into Decimal without passing through binary floats.

    Floats are rejected outright: a float has already lost precision by the
    time it reaches us, so accepting it would hide the defect.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Money values must be Decimal, int or str, got {type(value).__name__}")
    return Decimal(value)


def quantize(amount: Decimal, scale: int = DEFAULT_SCALE) -> Decimal:
    """Round to the internal fixed-point precision"""
    return amount.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_EVEN)


def round_money(amount: Decimal, decimal_places: int) -> Decimal:
    """
    Round to a currency's minor units (banker's rounding).

    Only presentation boundaries (reports, API output) call this; stored and
    intermediate values keep DEFAULT_SCALE digits.

    Example:
        round_money(Decimal("10.125"), 2) -> Decimal("10.12")
        round_money(Decimal("10.135"), 2) -> Decimal("10.14")
    """
    return quantize(amount, decimal_places)


def sum_money(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, Decimal("0"))


def safe_divide(numerator: Decimal, denominator: Decimal) -> Optional[Decimal]:
    """Divide, returning None instead of raising when the denominator is zero"""
    if denominator == 0:
        return None
    return numerator / denominator


@contextmanager
def guarded_arithmetic(what: str) -> Iterator[None]:
    """Re-raise unexpected decimal failures as ComputationFailureError"""
    try:
        yield
    except (decimal.DecimalException, ZeroDivisionError) as e:
        raise ComputationFailureError(f"{what} failed: {e!r}") from e
