"""Unit tests for scenario comparison, sensitivity and break-even"""

import pytest
from decimal import Decimal
from finplan_engine.domain.exceptions import OperationCancelledError, ValidationError
from finplan_engine.domain.investment import InvestmentAnalyzer, InvestmentInputs
from finplan_engine.domain.kpis import GROSS_MARGIN, KPICalculator
from finplan_engine.domain.models import ProjectionType, Scenario
from finplan_engine.domain.scenarios import ScenarioEngine, break_even_point
from finplan_engine.utils.cancellation import CancellationToken


@pytest.fixture
def scenario_engine(startup_items, list_source):
    source = list_source(startup_items)
    return ScenarioEngine(source, KPICalculator(source), InvestmentAnalyzer(source))


def test_compare_only_realistic_data(plan_id, scenario_engine):
    """Scenarios without items come back empty, never filled from Realistic"""
    results = scenario_engine.compare(plan_id, InvestmentInputs(Decimal("100"), Decimal("0.1"), 4))

    assert set(results) == set(Scenario)
    assert results[Scenario.REALISTIC].kpis
    assert results[Scenario.REALISTIC].npv is not None
    for scenario in (Scenario.OPTIMISTIC, Scenario.PESSIMISTIC):
        assert results[scenario].kpis == []
        assert results[scenario].npv is None
        assert results[scenario].roi is None


def test_compare_keeps_scenarios_separate(plan_id, startup_items, make_item, list_source):
    items = startup_items + [
        make_item(plan_id, ProjectionType.REVENUE, "Revenue", "1000", scenario=Scenario.OPTIMISTIC),
        make_item(plan_id, ProjectionType.EXPENSE, "COGS", "100", scenario=Scenario.OPTIMISTIC),
    ]
    source = list_source(items)
    results = ScenarioEngine(source, KPICalculator(source), InvestmentAnalyzer(source)).compare(plan_id)

    optimistic = {k.name: k.value for k in results[Scenario.OPTIMISTIC].kpis}
    realistic = {k.name: k.value for k in results[Scenario.REALISTIC].kpis}
    assert optimistic[GROSS_MARGIN] == Decimal("0.9")
    assert realistic[GROSS_MARGIN] == Decimal("0.583333")


def test_compare_honours_cancellation(plan_id, scenario_engine):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelledError):
        scenario_engine.compare(plan_id, token=token)


def test_sensitivity_preserves_delta_order(plan_id, scenario_engine):
    deltas = [Decimal("0.2"), Decimal("-0.2"), Decimal("0")]
    inputs = InvestmentInputs(Decimal("500"), Decimal("0"), 4)

    result = scenario_engine.sensitivity(plan_id, "initial_investment", deltas, inputs, metric="npv")

    assert [delta for delta, _ in result.points] == deltas
    # NPV at 0% = flows (200) - investment
    assert [value for _, value in result.points] == [Decimal("-400"), Decimal("-200"), Decimal("-300")]
    assert result.base_value == Decimal("-300")


def test_sensitivity_on_revenue_changes_kpi(plan_id, scenario_engine):
    result = scenario_engine.sensitivity(plan_id, "revenue", [Decimal("-0.5")], metric="Gross Margin")

    # Revenue 1800 against COGS 1500
    assert result.points[0][1] == Decimal("0.166667")


def test_sensitivity_expected_return_with_explicit_flows(plan_id, scenario_engine):
    """Expected return defaults to the sum of the explicit flows before scaling"""
    inputs = InvestmentInputs(Decimal("1000"), Decimal("0.1"), 4, cash_flows=[Decimal(v) for v in ("300", "400", "500", "600")])

    result = scenario_engine.sensitivity(plan_id, "expected_return", [Decimal("0.1")], inputs, metric="roi")

    # Expected return 1800, scaled to 1980
    assert result.base_value == Decimal("0.8")
    assert result.points[0][1] == Decimal("0.98")


def test_sensitivity_on_revenue_ignores_explicit_flows(plan_id, scenario_engine):
    """Revenue moves returns through the items even when flows were given"""
    inputs = InvestmentInputs(Decimal("100"), Decimal("0"), 4, cash_flows=[Decimal(v) for v in ("300", "400", "500", "600")])

    result = scenario_engine.sensitivity(plan_id, "revenue", [Decimal("-0.5"), Decimal("0.5")], inputs, metric="npv")

    # Derived flows sum to 200; revenue 3600 against 3400 of expenses
    assert result.base_value == Decimal("100")
    assert [value for _, value in result.points] == [Decimal("-1700"), Decimal("1900")]


def test_sensitivity_rejects_unknown_inputs(plan_id, scenario_engine):
    with pytest.raises(ValidationError) as exc_info:
        scenario_engine.sensitivity(plan_id, "weather", [Decimal("0.1")], metric="mood")
    fields = {e.field for e in exc_info.value.errors}
    assert {"variable", "metric"} <= fields


def test_sensitivity_needs_inputs_for_investment_metrics(plan_id, scenario_engine):
    with pytest.raises(ValidationError):
        scenario_engine.sensitivity(plan_id, "revenue", [Decimal("0.1")], inputs=None, metric="npv")


def test_break_even_interpolates(startup_items):
    result = break_even_point(startup_items)

    assert result.reached
    assert result.period_index == Decimal("2.6")
    assert (result.period.year, result.period.month) == (2024, 4)
    assert [v for _, v in result.cumulative_cash_flow] == [Decimal(v) for v in ("-1000", "-700", "-300", "200")]
    assert result.fixed_costs == Decimal("1900")


def test_break_even_not_reached_is_not_an_error(plan_id, make_item):
    items = [make_item(plan_id, ProjectionType.EXPENSE, "OperatingExpenses", "100", month=m) for m in (1, 2)]

    result = break_even_point(items)

    assert not result.reached
    assert result.period is None
    assert result.status == "not reached within horizon"
