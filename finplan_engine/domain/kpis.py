"""KPI engine - derives financial KPIs from normalized projections"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from finplan_engine.domain.exceptions import ComputationFailureError, NotFoundError
from finplan_engine.domain.models import FinancialCategory, FinancialKPI, ProjectionItem, ProjectionType, Scenario, normalize_label
from finplan_engine.domain.money import guarded_arithmetic, quantize, safe_divide, sum_money
from finplan_engine.domain.projections import (
    ProjectionSource,
    cash_effect,
    category_total,
    is_acquisition_spend,
    period_series,
    type_total,
    unique_items,
)
from finplan_engine.utils.period_utils import trailing

GROSS_MARGIN = "Gross Margin"
NET_MARGIN = "Net Margin"
REVENUE_GROWTH_RATE = "Revenue Growth Rate"
BURN_RATE = "Burn Rate"
RUNWAY = "Runway"
CAC = "Customer Acquisition Cost"
LTV = "Customer Lifetime Value"
BREAK_EVEN_REVENUE = "Break-even Revenue"


@dataclass(frozen=True)
class KPIDefinition:
    name: str
    category: str
    unit: str
    description: str


KPI_CATALOGUE: Dict[str, KPIDefinition] = {
    d.name: d
    for d in [
        KPIDefinition(GROSS_MARGIN, "Profitability", "ratio", "(Revenue - COGS) / Revenue"),
        KPIDefinition(NET_MARGIN, "Profitability", "ratio", "(Revenue - total expenses) / Revenue"),
        KPIDefinition(REVENUE_GROWTH_RATE, "Growth", "ratio", "(last period revenue - first period revenue) / first period revenue"),
        KPIDefinition(BURN_RATE, "Liquidity", "amount", "Average net cash outflow per period over the trailing periods"),
        KPIDefinition(RUNWAY, "Liquidity", "periods", "Current cash balance / Burn Rate"),
        KPIDefinition(CAC, "Unit Economics", "amount", "Acquisition spend / new customers"),
        KPIDefinition(LTV, "Unit Economics", "amount", "Average revenue per customer per period x customer lifetime"),
        KPIDefinition(BREAK_EVEN_REVENUE, "Profitability", "amount", "Fixed costs / gross margin ratio"),
    ]
}

# Expense categories that do not scale with sales volume
FIXED_COST_CATEGORIES = (
    FinancialCategory.OPERATING_EXPENSES,
    FinancialCategory.MARKETING,
    FinancialCategory.INTEREST_EXPENSE,
    FinancialCategory.DEPRECIATION,
    FinancialCategory.AMORTIZATION,
)


def find_kpi_definition(name: str) -> KPIDefinition:
    """Look a KPI up by name, ignoring case and separators"""
    wanted = normalize_label(name)
    for definition in KPI_CATALOGUE.values():
        if normalize_label(definition.name) == wanted:
            return definition
    raise NotFoundError("FinancialKPI", name)


@dataclass
class KPIAssumptions:
    """Inputs the projection items cannot provide on their own"""

    opening_cash_balance: Decimal = Decimal("0")
    new_customers: Optional[int] = None
    active_customers: Optional[int] = None
    customer_lifetime_periods: int = 24
    trailing_periods: int = 3


@dataclass
class PlanFinancials:
    """Category totals extracted from one scenario's items"""

    revenue: Decimal
    cogs: Decimal
    total_expenses: Decimal
    fixed_costs: Decimal
    acquisition_spend: Decimal
    period_count: int
    revenue_by_period: List[Decimal] = field(default_factory=list)
    net_cash_flows: List[Decimal] = field(default_factory=list)
    cash_balance: Decimal = Decimal("0")


def analyze_projections(items: Sequence[ProjectionItem], assumptions: KPIAssumptions) -> PlanFinancials:
    """
    Extract the category totals every KPI formula works from.

    Items are summed once each by explicit category keys; periods are the
    distinct (year, month) pairs present, ascending.
    """
    items = unique_items(items)
    revenue_items = [i for i in items if i.projection_type == ProjectionType.REVENUE]
    expense_items = [i for i in items if i.projection_type == ProjectionType.EXPENSE]

    net_cash = period_series(items, cash_effect)
    revenue_series = [amount for _, amount in period_series(revenue_items, lambda i: i.base_amount)]

    return PlanFinancials(
        revenue=type_total(items, ProjectionType.REVENUE),
        cogs=category_total(expense_items, FinancialCategory.COST_OF_GOODS_SOLD),
        total_expenses=type_total(items, ProjectionType.EXPENSE),
        fixed_costs=category_total(expense_items, *FIXED_COST_CATEGORIES),
        acquisition_spend=sum_money(i.base_amount for i in expense_items if is_acquisition_spend(i)),
        period_count=len(net_cash),
        revenue_by_period=revenue_series,
        net_cash_flows=[amount for _, amount in net_cash],
        cash_balance=assumptions.opening_cash_balance + sum_money(amount for _, amount in net_cash),
    )


def gross_margin_ratio(financials: PlanFinancials) -> Optional[Decimal]:
    return safe_divide(financials.revenue - financials.cogs, financials.revenue)


def burn_rate(financials: PlanFinancials, trailing_periods: int) -> Optional[Decimal]:
    """Average net outflow per period over the trailing window (negative when cash-generating)"""
    window = trailing(financials.net_cash_flows, trailing_periods)
    if not window:
        return None
    return -sum_money(window) / len(window)


def compute_kpi_values(financials: PlanFinancials, assumptions: KPIAssumptions) -> Dict[str, Optional[Decimal]]:
    """
    Evaluate the KPI catalogue. A zero (or non-positive, where stated)
    denominator yields None for that KPI instead of raising.
    """
    with guarded_arithmetic("KPI calculation"):
        margin = gross_margin_ratio(financials)
        burn = burn_rate(financials, assumptions.trailing_periods)

        revenue_growth = None
        if len(financials.revenue_by_period) >= 2:
            first, last = financials.revenue_by_period[0], financials.revenue_by_period[-1]
            revenue_growth = safe_divide(last - first, first)

        runway = None
        if burn is not None and burn > 0:
            runway = financials.cash_balance / burn

        cac = None
        if assumptions.new_customers:
            cac = financials.acquisition_spend / assumptions.new_customers

        ltv = None
        if assumptions.active_customers and financials.period_count:
            revenue_per_customer = financials.revenue / financials.period_count / assumptions.active_customers
            ltv = revenue_per_customer * assumptions.customer_lifetime_periods

        break_even_revenue = None
        if margin is not None and margin > 0:
            break_even_revenue = financials.fixed_costs / margin

        return {
            GROSS_MARGIN: margin,
            NET_MARGIN: safe_divide(financials.revenue - financials.total_expenses, financials.revenue),
            REVENUE_GROWTH_RATE: revenue_growth,
            BURN_RATE: burn,
            RUNWAY: runway,
            CAC: cac,
            LTV: ltv,
            BREAK_EVEN_REVENUE: break_even_revenue,
        }


def build_kpis(
    plan_id: uuid.UUID,
    scenario: Scenario,
    items: Sequence[ProjectionItem],
    assumptions: KPIAssumptions,
    currency_code: str = "",
    computed_at: Optional[datetime] = None,
) -> List[FinancialKPI]:
    """Main entry point: one FinancialKPI per catalogue entry, tagged with the scenario"""
    computed_at = computed_at or datetime.now(timezone.utc)
    values = compute_kpi_values(analyze_projections(items, assumptions), assumptions)

    return [
        FinancialKPI(
            plan_id=plan_id,
            name=definition.name,
            category=definition.category,
            scenario=scenario,
            value=quantize(values[definition.name]) if values[definition.name] is not None else None,
            unit=definition.unit,
            currency_code=currency_code if definition.unit == "amount" else "",
            description=definition.description,
            computed_at=computed_at,
        )
        for definition in KPI_CATALOGUE.values()
    ]


class KPICalculator:
    """Computes the KPI catalogue for one plan and scenario at a time"""

    def __init__(self, source: ProjectionSource, default_assumptions: Optional[KPIAssumptions] = None):
        self.source = source
        self.default_assumptions = default_assumptions or KPIAssumptions()

    def calculate(
        self,
        plan_id: uuid.UUID,
        scenario: Scenario,
        assumptions: Optional[KPIAssumptions] = None,
        currency_code: str = "",
    ) -> List[FinancialKPI]:
        items = self.source.list_by_plan_and_scenario(plan_id, scenario)
        return build_kpis(plan_id, scenario, items, assumptions or self.default_assumptions, currency_code)

    def calculate_one(
        self,
        plan_id: uuid.UUID,
        scenario: Scenario,
        name: str,
        assumptions: Optional[KPIAssumptions] = None,
        currency_code: str = "",
    ) -> FinancialKPI:
        """
        Single-KPI accessor.

        Raises:
            NotFoundError: unknown KPI name
            ComputationFailureError: the KPI is undefined (zero denominator)
        """
        definition = find_kpi_definition(name)
        for kpi in self.calculate(plan_id, scenario, assumptions, currency_code):
            if kpi.name == definition.name:
                if kpi.value is None:
                    raise ComputationFailureError(
                        f"{kpi.name} is undefined for plan {plan_id} ({scenario.value}): zero denominator"
                    )
                return kpi
        raise NotFoundError("FinancialKPI", name)
