"""Unit tests for projection aggregation and recurring series"""

from decimal import Decimal
from finplan_engine.domain.models import FinancialCategory, Frequency, Period, ProjectionType
from finplan_engine.domain.projections import (
    aggregate,
    cash_effect,
    category_total,
    expand_recurring,
    period_series,
    projection_warnings,
)
from finplan_engine.utils.period_utils import add_months, trailing


def test_cash_effect_signs(plan_id, make_item):
    assert cash_effect(make_item(plan_id, ProjectionType.REVENUE, "Revenue", "10")) == Decimal("10")
    assert cash_effect(make_item(plan_id, ProjectionType.EXPENSE, "Rent", "10")) == Decimal("-10")
    assert cash_effect(make_item(plan_id, ProjectionType.ASSET, "Equipment", "10")) == Decimal("-10")
    assert cash_effect(make_item(plan_id, ProjectionType.LIABILITY, "Loan", "10")) == Decimal("10")
    # CashFlow items carry their own sign
    assert cash_effect(make_item(plan_id, ProjectionType.CASH_FLOW, "Other", "-25")) == Decimal("-25")


def test_aggregate_by_explicit_key(plan_id, startup_items):
    totals = aggregate(startup_items, key=lambda item: item.canonical_category)

    assert totals[FinancialCategory.REVENUE] == Decimal("3600")
    assert totals[FinancialCategory.COST_OF_GOODS_SOLD] == Decimal("1500")
    assert category_total(startup_items, FinancialCategory.OPERATING_EXPENSES) == Decimal("1900")


def test_period_series_fills_gaps(plan_id, make_item):
    items = [
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "100", month=1),
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "300", month=3),
    ]
    periods = [Period(2024, m) for m in (1, 2, 3)]

    series = period_series(items, cash_effect, periods)

    assert series == [(Period(2024, 1), Decimal("100")), (Period(2024, 2), Decimal("0")), (Period(2024, 3), Decimal("300"))]


def test_expand_recurring_compounds_growth(plan_id, make_item):
    item = make_item(
        plan_id,
        ProjectionType.REVENUE,
        "Subscriptions",
        "1000",
        month=11,
        is_recurring=True,
        frequency=Frequency.MONTHLY,
        growth_rate=Decimal("10"),
    )

    series = expand_recurring(item, 3)

    assert [o.period for o in series] == [Period(2024, 11), Period(2024, 12), Period(2025, 1)]
    assert [o.amount for o in series] == [Decimal("1000"), Decimal("1100"), Decimal("1210")]


def test_expand_recurring_quarterly_step(plan_id, make_item):
    item = make_item(
        plan_id, ProjectionType.EXPENSE, "Insurance", "50", month=2, is_recurring=True, frequency=Frequency.QUARTERLY
    )

    series = expand_recurring(item, 4)

    assert [o.period.month for o in series] == [2, 5, 8, 11]
    assert all(o.amount == Decimal("50") for o in series)


def test_non_recurring_yields_itself(plan_id, make_item):
    item = make_item(plan_id, ProjectionType.EXPENSE, "Rent", "50")
    assert len(expand_recurring(item, 12)) == 1


def test_projection_warnings(plan_id, make_item):
    items = [
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "100", month=1),
        make_item(plan_id, ProjectionType.EXPENSE, "COGS", "150", month=1),
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "20", month=2),
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "30", month=2),
    ]

    warnings = projection_warnings(items)

    assert any("2024-01: cost of goods sold exceeds revenue" in w for w in warnings)
    assert any("2024-01: negative net cash flow" in w for w in warnings)
    assert any(w.startswith("2024-02: more than one item") for w in warnings)
    assert not any("2024-02: negative" in w for w in warnings)


def test_period_helpers():
    assert add_months(Period(2024, 12), 1) == Period(2025, 1)
    assert add_months(Period(2024, 1), -1) == Period(2023, 12)
    assert trailing([1, 2, 3, 4], 3) == [2, 3, 4]
    assert trailing([1, 2], 0) == []
