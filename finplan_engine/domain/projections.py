"""Aggregation of projection items by explicit grouping keys"""

import logging
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Protocol, Sequence, Tuple

from finplan_engine.domain.models import (
    FinancialCategory,
    Period,
    ProjectionItem,
    ProjectionType,
    Scenario,
    normalize_label,
)
from finplan_engine.domain.money import quantize
from finplan_engine.utils.period_utils import add_months, distinct_periods

logger = logging.getLogger(__name__)

# Cash direction of each projection type; CashFlow items carry their own sign
_CASH_SIGN = {
    ProjectionType.REVENUE: 1,
    ProjectionType.EXPENSE: -1,
    ProjectionType.ASSET: -1,
    ProjectionType.LIABILITY: 1,
    ProjectionType.EQUITY: 1,
}

ACQUISITION_TAGS = {"customeracquisition", "acquisition", "marketing"}


class ProjectionSource(Protocol):
    """Read access to a plan's normalized projection items"""

    def list_by_plan_and_scenario(self, plan_id: uuid.UUID, scenario: Scenario) -> List[ProjectionItem]:
        ...


@dataclass(frozen=True)
class RecurringOccurrence:
    period: Period
    amount: Decimal
    base_amount: Decimal


def cash_effect(item: ProjectionItem) -> Decimal:
    """Signed base-currency cash impact of an item (inflow positive)"""
    if item.projection_type == ProjectionType.CASH_FLOW:
        return item.base_amount
    return item.base_amount * _CASH_SIGN[item.projection_type]


def operating_effect(item: ProjectionItem) -> Decimal:
    """Revenue minus expenses; other projection types do not count"""
    if item.projection_type == ProjectionType.REVENUE:
        return item.base_amount
    if item.projection_type == ProjectionType.EXPENSE:
        return -item.base_amount
    return Decimal("0")


def is_acquisition_spend(item: ProjectionItem) -> bool:
    if item.projection_type != ProjectionType.EXPENSE:
        return False
    return normalize_label(item.category) in ACQUISITION_TAGS or normalize_label(item.sub_category) in ACQUISITION_TAGS


def unique_items(items: Iterable[ProjectionItem]) -> List[ProjectionItem]:
    """Drop repeated references to the same stored item (same id)"""
    seen = set()
    result = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        result.append(item)
    return result


def find_duplicate_keys(items: Iterable[ProjectionItem]) -> List[tuple]:
    """
    Logical keys (plan, scenario, category, sub-category, year, month) held by
    more than one stored item.

    Each such item is still summed exactly once; the duplicates are surfaced
    so callers can report them instead of hiding them.
    """
    counts = Counter(item.grouping_key for item in unique_items(items))
    duplicates = sorted((key for key, count in counts.items() if count > 1), key=lambda k: (k[4], k[5], k[2], k[3]))
    if duplicates:
        logger.warning(
            "Duplicate projection keys in aggregation",
            extra={"duplicate_count": len(duplicates)},
        )
    return duplicates


def aggregate(
    items: Iterable[ProjectionItem],
    key: Callable[[ProjectionItem], Hashable],
    value: Callable[[ProjectionItem], Decimal] = lambda item: item.base_amount,
) -> Dict[Hashable, Decimal]:
    """Sum values grouped by an explicit key"""
    totals: Dict[Hashable, Decimal] = defaultdict(lambda: Decimal("0"))
    for item in unique_items(items):
        totals[key(item)] += value(item)
    return dict(totals)


def periods_of(items: Iterable[ProjectionItem]) -> List[Period]:
    return distinct_periods(item.period for item in items)


def period_series(
    items: Sequence[ProjectionItem],
    value: Callable[[ProjectionItem], Decimal],
    periods: Optional[List[Period]] = None,
) -> List[Tuple[Period, Decimal]]:
    """Per-period totals in ascending period order (zero where a period has no items)"""
    periods = periods if periods is not None else periods_of(items)
    totals = aggregate(items, key=lambda item: item.period, value=value)
    return [(period, totals.get(period, Decimal("0"))) for period in periods]


def category_total(items: Iterable[ProjectionItem], *categories: FinancialCategory) -> Decimal:
    wanted = set(categories)
    totals = aggregate(items, key=lambda item: item.canonical_category)
    return sum((amount for category, amount in totals.items() if category in wanted), Decimal("0"))


def type_total(items: Iterable[ProjectionItem], projection_type: ProjectionType) -> Decimal:
    return aggregate(items, key=lambda item: item.projection_type).get(projection_type, Decimal("0"))


def expand_recurring(item: ProjectionItem, occurrences: int) -> List[RecurringOccurrence]:
    """
    Expand a recurring item into its series.

    Occurrence k falls `k * frequency.months` months after the item's period
    and is grown by `growth_rate` percent per occurrence:
        amount_k = amount * (1 + growth_rate / 100) ** k

    A non-recurring item yields only itself.
    """
    if not item.is_recurring or item.frequency is None or occurrences <= 1:
        return [RecurringOccurrence(item.period, item.amount, item.base_amount)]

    factor = Decimal("1") + item.growth_rate / Decimal("100")
    series = []
    growth = Decimal("1")
    for k in range(occurrences):
        series.append(
            RecurringOccurrence(
                period=add_months(item.period, k * item.frequency.months),
                amount=quantize(item.amount * growth),
                base_amount=quantize(item.base_amount * growth),
            )
        )
        growth *= factor
    return series


def _in_category(category: FinancialCategory) -> Callable[[ProjectionItem], Decimal]:
    return lambda item: item.base_amount if item.canonical_category == category else Decimal("0")


def projection_warnings(items: Sequence[ProjectionItem]) -> List[str]:
    """Non-fatal plausibility checks on a scenario's item set"""
    warnings = []
    periods = periods_of(items)
    revenue = dict(period_series(items, _in_category(FinancialCategory.REVENUE), periods))
    cogs = dict(period_series(items, _in_category(FinancialCategory.COST_OF_GOODS_SOLD), periods))
    net = dict(period_series(items, cash_effect, periods))

    for period in periods:
        if cogs[period] > revenue[period]:
            warnings.append(f"{period.label}: cost of goods sold exceeds revenue, gross profit is negative")
        if net[period] < 0:
            warnings.append(f"{period.label}: negative net cash flow")

    for key in find_duplicate_keys(items):
        warnings.append(f"{key[4]:04d}-{key[5]:02d}: more than one item for category '{key[2]}/{key[3]}'")
    return warnings
