"""Investment returns - ROI, NPV, IRR and payback period"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence, Union

from finplan_engine.domain.exceptions import InvalidInputError, NoConvergenceError
from finplan_engine.domain.models import ProjectionItem, Scenario
from finplan_engine.domain.money import guarded_arithmetic, sum_money
from finplan_engine.domain.projections import ProjectionSource, operating_effect, period_series

IRR_LOWER_BOUND = Decimal("-0.99")
IRR_UPPER_BOUND = Decimal("10.0")
IRR_TOLERANCE = Decimal("0.000001")
IRR_MAX_ITERATIONS = 200


@dataclass(frozen=True)
class IrrConverged:
    rate: Decimal
    iterations: int


@dataclass(frozen=True)
class IrrNotConverged:
    reason: str
    iterations: int


IrrResult = Union[IrrConverged, IrrNotConverged]


@dataclass
class InvestmentInputs:
    """
    Parameters of an investment analysis.

    cash_flows, when given, are the period flows for t = 1..T; otherwise they
    are derived from the plan's revenue minus expenses per period. When
    expected_return is None it is the sum of those period flows.
    """

    initial_investment: Decimal
    discount_rate: Decimal
    analysis_period: int
    expected_return: Optional[Decimal] = None
    cash_flows: Optional[List[Decimal]] = None


@dataclass
class InvestmentMetrics:
    roi: Optional[Decimal]
    npv: Decimal
    irr: IrrResult
    payback_period: Optional[Decimal]
    expected_return: Decimal
    cash_flows: List[Decimal] = field(default_factory=list)

    @property
    def irr_rate(self) -> Optional[Decimal]:
        return self.irr.rate if isinstance(self.irr, IrrConverged) else None

    @property
    def irr_status(self) -> str:
        return "converged" if isinstance(self.irr, IrrConverged) else "no_convergence"


def calculate_roi(initial_investment: Decimal, expected_return: Decimal) -> Decimal:
    """
    ROI = (expected_return - initial_investment) / initial_investment

    Raises:
        InvalidInputError: initial_investment is zero
    """
    if initial_investment == 0:
        raise InvalidInputError("ROI is undefined for a zero initial investment")
    with guarded_arithmetic("ROI"):
        return (expected_return - initial_investment) / initial_investment


def calculate_npv(rate: Decimal, cash_flows: Sequence[Decimal]) -> Decimal:
    """NPV = sum(cash_flows[t] / (1 + rate) ** t) for t = 0..T"""
    with guarded_arithmetic("NPV"):
        growth = Decimal("1") + rate
        discount = Decimal("1")
        total = Decimal("0")
        for flow in cash_flows:
            total += flow / discount
            discount *= growth
        return total


def _npv_derivative(rate: Decimal, cash_flows: Sequence[Decimal]) -> Decimal:
    """d(NPV)/d(rate) = sum(-t * cash_flows[t] / (1 + rate) ** (t + 1))"""
    growth = Decimal("1") + rate
    discount = growth
    total = Decimal("0")
    for t, flow in enumerate(cash_flows):
        total -= t * flow / discount
        discount *= growth
    return total


def solve_irr(
    cash_flows: Sequence[Decimal],
    lower: Decimal = IRR_LOWER_BOUND,
    upper: Decimal = IRR_UPPER_BOUND,
    tolerance: Decimal = IRR_TOLERANCE,
    max_iterations: int = IRR_MAX_ITERATIONS,
) -> IrrResult:
    """
    Find r with NPV(r) = 0 inside [lower, upper].

    Safeguarded Newton iteration: every step keeps a sign-changing bracket,
    and a Newton step that would leave the bracket (or a flat derivative)
    is replaced by bisection. Stops when |NPV(r)| < tolerance.

    Returns IrrNotConverged when the endpoints do not bracket a root or the
    iteration budget runs out.
    """
    with guarded_arithmetic("IRR"):
        f_lower = calculate_npv(lower, cash_flows)
        f_upper = calculate_npv(upper, cash_flows)

        if abs(f_lower) < tolerance:
            return IrrConverged(lower, 0)
        if abs(f_upper) < tolerance:
            return IrrConverged(upper, 0)
        if (f_lower < 0) == (f_upper < 0):
            return IrrNotConverged(f"NPV has no sign change between {lower} and {upper}", 0)

        low, high = lower, upper
        rate = (low + high) / 2
        for iteration in range(1, max_iterations + 1):
            value = calculate_npv(rate, cash_flows)
            if abs(value) < tolerance:
                return IrrConverged(rate, iteration)

            # Keep the root bracketed
            if (value < 0) == (f_lower < 0):
                low, f_lower = rate, value
            else:
                high = rate

            slope = _npv_derivative(rate, cash_flows)
            candidate = rate - value / slope if slope != 0 else None
            if candidate is None or not (low < candidate < high):
                candidate = (low + high) / 2
            rate = candidate

        return IrrNotConverged(f"No convergence within {max_iterations} iterations", max_iterations)


def interpolate_crossing(cumulative: Sequence[Decimal]) -> Optional[Decimal]:
    """
    Fractional index at which a cumulative series first turns non-negative.

    Between a negative value at i and a non-negative one at i+1 the crossing
    is interpolated linearly: i + (-c[i]) / (c[i+1] - c[i]).
    Returns None when the series never turns non-negative.
    """
    if not cumulative:
        return None
    if cumulative[0] >= 0:
        return Decimal("0")
    for i in range(1, len(cumulative)):
        previous, current = cumulative[i - 1], cumulative[i]
        if previous < 0 <= current:
            return Decimal(i - 1) + (-previous) / (current - previous)
    return None


def cumulative_sum(values: Sequence[Decimal]) -> List[Decimal]:
    running = Decimal("0")
    result = []
    for value in values:
        running += value
        result.append(running)
    return result


def payback_period(cash_flows: Sequence[Decimal]) -> Optional[Decimal]:
    """Periods until cumulative cash flow (initial outlay included) recovers"""
    return interpolate_crossing(cumulative_sum(cash_flows))


def derive_period_flows(items: Sequence[ProjectionItem], analysis_period: int) -> List[Decimal]:
    """Revenue minus expenses for the first `analysis_period` periods, zero-padded"""
    flows = [amount for _, amount in period_series(items, operating_effect)][:analysis_period]
    return flows + [Decimal("0")] * (analysis_period - len(flows))


def analyze_investment(
    inputs: InvestmentInputs,
    items: Sequence[ProjectionItem] = (),
    lower: Decimal = IRR_LOWER_BOUND,
    upper: Decimal = IRR_UPPER_BOUND,
    tolerance: Decimal = IRR_TOLERANCE,
    max_iterations: int = IRR_MAX_ITERATIONS,
) -> InvestmentMetrics:
    """
    Compute ROI, NPV, IRR and payback in one pass so the results always
    describe the same inputs.

    ROI is None for a zero initial investment; calculate_roi raises instead.

    Raises:
        InvalidInputError: non-positive analysis period
    """
    if inputs.analysis_period <= 0 and inputs.cash_flows is None:
        raise InvalidInputError("Analysis period must be at least one period")

    if inputs.cash_flows is not None:
        period_flows = list(inputs.cash_flows)
    else:
        period_flows = derive_period_flows(items, inputs.analysis_period)

    cash_flows = [-inputs.initial_investment] + period_flows
    expected_return = inputs.expected_return if inputs.expected_return is not None else sum_money(period_flows)

    return InvestmentMetrics(
        roi=calculate_roi(inputs.initial_investment, expected_return) if inputs.initial_investment != 0 else None,
        npv=calculate_npv(inputs.discount_rate, cash_flows),
        irr=solve_irr(cash_flows, lower, upper, tolerance, max_iterations),
        payback_period=payback_period(cash_flows),
        expected_return=expected_return,
        cash_flows=cash_flows,
    )


class InvestmentAnalyzer:
    """Runs investment analyses against a plan's projections"""

    def __init__(
        self,
        source: ProjectionSource,
        lower: Decimal = IRR_LOWER_BOUND,
        upper: Decimal = IRR_UPPER_BOUND,
        tolerance: Decimal = IRR_TOLERANCE,
        max_iterations: int = IRR_MAX_ITERATIONS,
    ):
        self.source = source
        self.lower = lower
        self.upper = upper
        self.tolerance = tolerance
        self.max_iterations = max_iterations

    def analyze_items(self, inputs: InvestmentInputs, items: Sequence[ProjectionItem]) -> InvestmentMetrics:
        return analyze_investment(inputs, items, self.lower, self.upper, self.tolerance, self.max_iterations)

    def analyze(
        self,
        plan_id: uuid.UUID,
        inputs: InvestmentInputs,
        scenario: Scenario = Scenario.REALISTIC,
    ) -> InvestmentMetrics:
        items = [] if inputs.cash_flows is not None else self.source.list_by_plan_and_scenario(plan_id, scenario)
        return self.analyze_items(inputs, items)

    def irr(self, plan_id: uuid.UUID, inputs: InvestmentInputs, scenario: Scenario = Scenario.REALISTIC) -> Decimal:
        """
        Raises:
            NoConvergenceError: no root bracketed or iteration budget exhausted
        """
        result = self.analyze(plan_id, inputs, scenario).irr
        if isinstance(result, IrrNotConverged):
            raise NoConvergenceError(result.reason)
        return result.rate
