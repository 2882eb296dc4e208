"""Unit tests for KPI derivation"""

import pytest
from decimal import Decimal
from finplan_engine.domain.exceptions import ComputationFailureError, NotFoundError
from finplan_engine.domain.kpis import (
    BREAK_EVEN_REVENUE,
    BURN_RATE,
    CAC,
    GROSS_MARGIN,
    LTV,
    NET_MARGIN,
    REVENUE_GROWTH_RATE,
    RUNWAY,
    KPIAssumptions,
    KPICalculator,
    build_kpis,
    find_kpi_definition,
)
from finplan_engine.domain.models import ProjectionType, Scenario
from finplan_engine.domain.projections import find_duplicate_keys


def _values(kpis):
    return {kpi.name: kpi.value for kpi in kpis}


def test_catalogue_values(plan_id, startup_items):
    """Revenue 3600, COGS 1500, OpEx 1900 over four periods"""
    values = _values(build_kpis(plan_id, Scenario.REALISTIC, startup_items, KPIAssumptions(), "USD"))

    assert values[GROSS_MARGIN] == Decimal("0.583333")
    assert values[NET_MARGIN] == Decimal("0.055556")
    assert values[BREAK_EVEN_REVENUE] == Decimal("3257.142857")
    # Trailing three periods net +300, +400, +500: cash-generating, so burn is negative
    assert values[BURN_RATE] == Decimal("-400")


def test_undefined_kpis_are_none_not_errors(plan_id, startup_items):
    """Zero denominators leave the value undefined in the batch result"""
    values = _values(build_kpis(plan_id, Scenario.REALISTIC, startup_items, KPIAssumptions()))

    assert values[REVENUE_GROWTH_RATE] is None  # first-period revenue is 0
    assert values[RUNWAY] is None  # burn rate <= 0
    assert values[CAC] is None  # no customer count supplied
    assert values[LTV] is None


def test_unit_economics(plan_id, startup_items, make_item):
    items = startup_items + [make_item(plan_id, ProjectionType.EXPENSE, "Marketing", "400", month=1)]
    assumptions = KPIAssumptions(new_customers=4, active_customers=10, customer_lifetime_periods=24)

    values = _values(build_kpis(plan_id, Scenario.REALISTIC, items, assumptions))

    assert values[CAC] == Decimal("100")
    # 3600 revenue / 4 periods / 10 customers = 90 per customer-period, x 24
    assert values[LTV] == Decimal("2160")


def test_runway_with_positive_burn(plan_id, make_item):
    items = [
        make_item(plan_id, ProjectionType.EXPENSE, "OperatingExpenses", "1000", month=m) for m in (1, 2, 3)
    ]
    values = _values(build_kpis(plan_id, Scenario.REALISTIC, items, KPIAssumptions(opening_cash_balance=Decimal("9000"))))

    assert values[BURN_RATE] == Decimal("1000")
    # 9000 opening - 3000 spent = 6000 left at 1000 per period
    assert values[RUNWAY] == Decimal("6")


def test_kpi_currency_only_on_amount_kpis(plan_id, startup_items):
    kpis = {k.name: k for k in build_kpis(plan_id, Scenario.REALISTIC, startup_items, KPIAssumptions(), "EUR")}

    assert kpis[BREAK_EVEN_REVENUE].currency_code == "EUR"
    assert kpis[GROSS_MARGIN].currency_code == ""
    assert all(k.scenario == Scenario.REALISTIC for k in kpis.values())


def test_single_accessor_raises_on_zero_revenue(plan_id, make_item, list_source):
    calculator = KPICalculator(list_source([make_item(plan_id, ProjectionType.EXPENSE, "CostOfGoodsSold", "500")]))

    batch = _values(calculator.calculate(plan_id, Scenario.REALISTIC))
    assert batch[GROSS_MARGIN] is None

    with pytest.raises(ComputationFailureError):
        calculator.calculate_one(plan_id, Scenario.REALISTIC, "gross margin")


def test_single_accessor_unknown_name(plan_id, list_source):
    with pytest.raises(NotFoundError):
        KPICalculator(list_source([])).calculate_one(plan_id, Scenario.REALISTIC, "Happiness Index")


def test_find_kpi_definition_ignores_case_and_separators():
    assert find_kpi_definition("break_even revenue").name == BREAK_EVEN_REVENUE


def test_scenarios_are_kept_apart(plan_id, make_item, list_source):
    items = [
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "1000", scenario=Scenario.REALISTIC),
        make_item(plan_id, ProjectionType.EXPENSE, "COGS", "400", scenario=Scenario.REALISTIC),
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "2000", scenario=Scenario.OPTIMISTIC),
        make_item(plan_id, ProjectionType.EXPENSE, "COGS", "400", scenario=Scenario.OPTIMISTIC),
    ]
    calculator = KPICalculator(list_source(items))

    assert _values(calculator.calculate(plan_id, Scenario.REALISTIC))[GROSS_MARGIN] == Decimal("0.6")
    assert _values(calculator.calculate(plan_id, Scenario.OPTIMISTIC))[GROSS_MARGIN] == Decimal("0.8")
    assert _values(calculator.calculate(plan_id, Scenario.PESSIMISTIC))[GROSS_MARGIN] is None


def test_duplicates_counted_once_and_reported(plan_id, make_item):
    """Two stored items sharing a logical key are each summed once; a repeated reference is not"""
    first = make_item(plan_id, ProjectionType.REVENUE, "Revenue", "1000")
    second = make_item(plan_id, ProjectionType.REVENUE, "Revenue", "500")
    cogs = make_item(plan_id, ProjectionType.EXPENSE, "CostOfGoodsSold", "300")

    values = _values(build_kpis(plan_id, Scenario.REALISTIC, [first, second, first, cogs], KPIAssumptions()))

    assert values[GROSS_MARGIN] == Decimal("0.8")  # (1500 - 300) / 1500
    assert len(find_duplicate_keys([first, second, cogs])) == 1
