"""Scenario comparison, sensitivity and break-even analysis"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from finplan_engine.domain.exceptions import FieldError, NotFoundError, ValidationError
from finplan_engine.domain.investment import (
    InvestmentAnalyzer,
    InvestmentInputs,
    IrrNotConverged,
    cumulative_sum,
    derive_period_flows,
    interpolate_crossing,
)
from finplan_engine.domain.kpis import (
    KPIAssumptions,
    KPICalculator,
    analyze_projections,
    build_kpis,
    find_kpi_definition,
    gross_margin_ratio,
)
from finplan_engine.domain.models import FinancialKPI, Period, ProjectionItem, ProjectionType, Scenario
from finplan_engine.domain.money import sum_money
from finplan_engine.domain.projections import ProjectionSource, cash_effect, period_series
from finplan_engine.utils.cancellation import CancellationToken, check_cancelled

logger = logging.getLogger(__name__)

SENSITIVITY_VARIABLES = ("revenue", "expenses", "discount_rate", "initial_investment", "expected_return")
INVESTMENT_METRICS = ("npv", "irr", "roi")


@dataclass
class ScenarioResult:
    """KPIs and investment returns of one scenario, never blended with another"""

    scenario: Scenario
    kpis: List[FinancialKPI] = field(default_factory=list)
    npv: Optional[Decimal] = None
    roi: Optional[Decimal] = None
    irr: Optional[Decimal] = None
    revenue: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")
    item_count: int = 0


@dataclass
class SensitivityResult:
    variable: str
    metric: str
    base_value: Optional[Decimal]
    points: List[Tuple[Decimal, Optional[Decimal]]] = field(default_factory=list)


@dataclass
class BreakEvenResult:
    """
    Where the Realistic cumulative cash flow first turns non-negative.

    period_index is fractional (interpolated) and counted from the first
    projected period; reached is False when the horizon ends first.
    """

    reached: bool
    period_index: Optional[Decimal]
    period: Optional[Period]
    cumulative_cash_flow: List[Tuple[Period, Decimal]] = field(default_factory=list)
    fixed_costs: Decimal = Decimal("0")
    contribution_margin_ratio: Optional[Decimal] = None
    break_even_revenue: Optional[Decimal] = None

    @property
    def status(self) -> str:
        return "reached" if self.reached else "not reached within horizon"


def _scale_items(items: Sequence[ProjectionItem], projection_type: ProjectionType, factor: Decimal) -> List[ProjectionItem]:
    return [
        replace(item, base_amount=item.base_amount * factor) if item.projection_type == projection_type else item
        for item in items
    ]


def break_even_point(items: Sequence[ProjectionItem]) -> BreakEvenResult:
    """Scan the cumulative net cash flow in period order for its zero crossing"""
    series = period_series(items, cash_effect)
    periods = [period for period, _ in series]
    cumulative = cumulative_sum([amount for _, amount in series])
    crossing = interpolate_crossing(cumulative)

    financials = analyze_projections(items, KPIAssumptions())
    margin = gross_margin_ratio(financials)
    break_even_revenue = financials.fixed_costs / margin if margin is not None and margin > 0 else None

    period = None
    if crossing is not None:
        # The period in which cumulative cash becomes non-negative
        whole = int(crossing) if crossing == int(crossing) else int(crossing) + 1
        period = periods[whole]

    return BreakEvenResult(
        reached=crossing is not None,
        period_index=crossing,
        period=period,
        cumulative_cash_flow=list(zip(periods, cumulative)),
        fixed_costs=financials.fixed_costs,
        contribution_margin_ratio=margin,
        break_even_revenue=break_even_revenue,
    )


class ScenarioEngine:
    """Runs the KPI and investment engines per scenario"""

    def __init__(self, source: ProjectionSource, kpis: KPICalculator, analyzer: InvestmentAnalyzer):
        self.source = source
        self.kpis = kpis
        self.analyzer = analyzer

    def compare(
        self,
        plan_id: uuid.UUID,
        inputs: Optional[InvestmentInputs] = None,
        assumptions: Optional[KPIAssumptions] = None,
        currency_code: str = "",
        token: Optional[CancellationToken] = None,
    ) -> Dict[Scenario, ScenarioResult]:
        """
        Evaluate every scenario independently.

        A scenario without items gets an empty result; nothing is inferred
        from the other scenarios. Returns are derived from each scenario's own
        cash flows, so explicit cash flows and expected return in `inputs`
        are ignored here.
        """
        results: Dict[Scenario, ScenarioResult] = {}
        for scenario in Scenario:
            check_cancelled(token, "Scenario comparison")
            items = self.source.list_by_plan_and_scenario(plan_id, scenario)
            if not items:
                results[scenario] = ScenarioResult(scenario=scenario)
                continue

            result = ScenarioResult(
                scenario=scenario,
                kpis=build_kpis(plan_id, scenario, items, assumptions or self.kpis.default_assumptions, currency_code),
                revenue=sum_money(i.base_amount for i in items if i.projection_type == ProjectionType.REVENUE),
                expenses=sum_money(i.base_amount for i in items if i.projection_type == ProjectionType.EXPENSE),
                item_count=len(items),
            )
            if inputs is not None:
                metrics = self.analyzer.analyze_items(replace(inputs, cash_flows=None, expected_return=None), items)
                result.npv = metrics.npv
                result.roi = metrics.roi
                result.irr = metrics.irr_rate
            results[scenario] = result
        return results

    def _metric(
        self,
        plan_id: uuid.UUID,
        metric: str,
        items: Sequence[ProjectionItem],
        inputs: Optional[InvestmentInputs],
        assumptions: KPIAssumptions,
    ) -> Optional[Decimal]:
        if metric in INVESTMENT_METRICS:
            metrics = self.analyzer.analyze_items(inputs, items)
            if metric == "npv":
                return metrics.npv
            if metric == "roi":
                return metrics.roi
            if isinstance(metrics.irr, IrrNotConverged):
                logger.warning("IRR did not converge in sensitivity run", extra={"plan_id": str(plan_id), "reason": metrics.irr.reason})
            return metrics.irr_rate

        name = find_kpi_definition(metric).name
        kpis = build_kpis(plan_id, Scenario.REALISTIC, items, assumptions)
        return next(k.value for k in kpis if k.name == name)

    def sensitivity(
        self,
        plan_id: uuid.UUID,
        variable: str,
        deltas: Sequence[Decimal],
        inputs: Optional[InvestmentInputs] = None,
        metric: str = "npv",
        assumptions: Optional[KPIAssumptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> SensitivityResult:
        """
        Recompute `metric` on the Realistic scenario with one input scaled by
        (1 + delta) per delta, all else fixed. Points keep the caller's delta
        order. Revenue and expenses act through the projection items, so for
        those variables returns are always derived from the items and any
        explicit cash flows or expected return are ignored.

        Raises:
            ValidationError: unknown variable or metric, or investment
                metric/variable without investment inputs
        """
        errors = []
        if variable not in SENSITIVITY_VARIABLES:
            errors.append(FieldError("variable", f"must be one of {', '.join(SENSITIVITY_VARIABLES)}"))
        metric = metric.lower() if metric.lower() in INVESTMENT_METRICS else metric
        needs_inputs = metric in INVESTMENT_METRICS or variable not in ("revenue", "expenses")
        if needs_inputs and inputs is None:
            errors.append(FieldError("inputs", f"investment inputs are required for {variable}/{metric}"))
        if metric not in INVESTMENT_METRICS:
            try:
                find_kpi_definition(metric)
            except NotFoundError:
                errors.append(FieldError("metric", f"unknown metric '{metric}'"))
        if errors:
            raise ValidationError(errors)

        assumptions = assumptions or self.kpis.default_assumptions
        base_items = self.source.list_by_plan_and_scenario(plan_id, Scenario.REALISTIC)
        if inputs is not None and variable in ("revenue", "expenses"):
            # Item-driven variables only move returns derived from the items
            inputs = replace(inputs, cash_flows=None, expected_return=None)
        if inputs is not None and inputs.expected_return is None and variable == "expected_return":
            flows = inputs.cash_flows if inputs.cash_flows is not None else derive_period_flows(base_items, inputs.analysis_period)
            inputs = replace(inputs, expected_return=sum_money(flows))

        perturb: Dict[str, Callable[[Decimal], Tuple[Sequence[ProjectionItem], Optional[InvestmentInputs]]]] = {
            "revenue": lambda f: (_scale_items(base_items, ProjectionType.REVENUE, f), inputs),
            "expenses": lambda f: (_scale_items(base_items, ProjectionType.EXPENSE, f), inputs),
            "discount_rate": lambda f: (base_items, replace(inputs, discount_rate=inputs.discount_rate * f)),
            "initial_investment": lambda f: (base_items, replace(inputs, initial_investment=inputs.initial_investment * f)),
            "expected_return": lambda f: (base_items, replace(inputs, expected_return=inputs.expected_return * f)),
        }

        result = SensitivityResult(
            variable=variable,
            metric=metric,
            base_value=self._metric(plan_id, metric, base_items, inputs, assumptions),
        )
        for delta in deltas:
            check_cancelled(token, "Sensitivity analysis")
            items, perturbed_inputs = perturb[variable](Decimal("1") + delta)
            result.points.append((delta, self._metric(plan_id, metric, items, perturbed_inputs, assumptions)))
        return result

    def break_even(self, plan_id: uuid.UUID) -> BreakEvenResult:
        """Break-even on the Realistic scenario; not reaching it is a normal result"""
        return break_even_point(self.source.list_by_plan_and_scenario(plan_id, Scenario.REALISTIC))
