"""Period manipulation utilities"""

from typing import Iterable, List, TypeVar

from finplan_engine.domain.models import Period


def add_months(period: Period, months: int) -> Period:
    """Shift a period by a number of calendar months (may be negative)"""
    index = period.year * 12 + (period.month - 1) + months
    return Period(index // 12, index % 12 + 1)


def distinct_periods(periods: Iterable[Period]) -> List[Period]:
    """Sorted list of the distinct periods present"""
    return sorted(set(periods))


T = TypeVar("T")


def trailing(values: List[T], count: int) -> List[T]:
    """Last `count` entries of a period-ordered list"""
    if count <= 0:
        return []
    return values[-count:]
