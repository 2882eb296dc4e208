"""Report generator - cash flow, profit & loss and balance sheet views"""

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from finplan_engine.domain.models import (
    FinancialCategory,
    Period,
    ProjectionItem,
    ProjectionType,
    ReportType,
    Scenario,
    normalize_label,
)
from finplan_engine.domain.money import round_money, sum_money
from finplan_engine.domain.projections import ProjectionSource, cash_effect, find_duplicate_keys, periods_of, unique_items
from finplan_engine.utils.cancellation import CancellationToken, check_cancelled

OPERATING = "operating"
INVESTING = "investing"
FINANCING = "financing"

_INVESTING_CATEGORIES = {FinancialCategory.CAPITAL_EXPENDITURE, FinancialCategory.ASSETS}
_FINANCING_CATEGORIES = {FinancialCategory.LOAN, FinancialCategory.EQUITY, FinancialCategory.LIABILITIES}

# P&L line for each expense category; anything unlisted is an operating expense
_PL_SECTIONS = {
    FinancialCategory.COST_OF_GOODS_SOLD: "cost_of_goods_sold",
    FinancialCategory.INTEREST_EXPENSE: "other_expenses",
    FinancialCategory.TAX_EXPENSE: "other_expenses",
    FinancialCategory.DEPRECIATION: "other_expenses",
    FinancialCategory.AMORTIZATION: "other_expenses",
}

BALANCE_SHEET_LIMITATIONS = [
    "Cash is the cumulative net cash flow of the projected periods plus the opening balance",
    "Assets, liabilities and equity are the sums of flows of those types; no opening stocks are modeled",
    "Depreciation of assets and repayment of liabilities are not tracked",
    "Retained earnings are the cumulative projected net income",
]


@dataclass
class ReportLine:
    label: str
    amount: Decimal


@dataclass
class ReportSection:
    name: str
    lines: List[ReportLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum_money(line.amount for line in self.lines)


@dataclass
class ReportHeader:
    plan_id: uuid.UUID
    scenario: Scenario
    currency_code: str
    first_period: Optional[Period]
    last_period: Optional[Period]
    generated_at: datetime
    item_count: int = 0
    duplicate_keys: List[tuple] = field(default_factory=list)


@dataclass
class ProfitLossReport:
    header: ReportHeader
    revenue: ReportSection
    cost_of_goods_sold: ReportSection
    operating_expenses: ReportSection
    other_expenses: ReportSection

    @property
    def gross_profit(self) -> Decimal:
        return self.revenue.total - self.cost_of_goods_sold.total

    @property
    def operating_income(self) -> Decimal:
        return self.gross_profit - self.operating_expenses.total

    @property
    def net_income(self) -> Decimal:
        return self.operating_income - self.other_expenses.total


@dataclass
class CashFlowPeriod:
    period: Period
    operating: Decimal
    investing: Decimal
    financing: Decimal

    @property
    def net_change(self) -> Decimal:
        return self.operating + self.investing + self.financing


@dataclass
class CashFlowReport:
    header: ReportHeader
    operating: ReportSection
    investing: ReportSection
    financing: ReportSection
    periods: List[CashFlowPeriod] = field(default_factory=list)
    opening_cash: Decimal = Decimal("0")

    @property
    def net_change(self) -> Decimal:
        return self.operating.total + self.investing.total + self.financing.total

    @property
    def closing_cash(self) -> Decimal:
        return self.opening_cash + self.net_change


@dataclass
class BalanceSheetReport:
    """
    Best-effort position at the last projected period.

    The data model only holds flows, so the figures are derived rather than
    read from stock accounts; `is_partial` is always True and `limitations`
    lists what was assumed. `unreconciled` is whatever difference remains
    between both sides, shown instead of being plugged.
    """

    header: ReportHeader
    assets: ReportSection
    liabilities: ReportSection
    equity: ReportSection
    is_partial: bool = True
    limitations: List[str] = field(default_factory=lambda: list(BALANCE_SHEET_LIMITATIONS))

    @property
    def total_assets(self) -> Decimal:
        return self.assets.total

    @property
    def total_liabilities_and_equity(self) -> Decimal:
        return self.liabilities.total + self.equity.total

    @property
    def unreconciled(self) -> Decimal:
        return self.total_assets - self.total_liabilities_and_equity


def cash_flow_bucket(item: ProjectionItem) -> str:
    """
    Classify an item into the operating/investing/financing buckets.

    Asset purchases and capital expenditure are investing; liabilities,
    equity and loans are financing. A one-time CashFlow item can opt into a
    bucket through its sub-category. Everything else is operating.
    """
    if item.projection_type == ProjectionType.ASSET:
        return INVESTING
    if item.projection_type in (ProjectionType.LIABILITY, ProjectionType.EQUITY):
        return FINANCING
    category = item.canonical_category
    if category in _INVESTING_CATEGORIES:
        return INVESTING
    if category in _FINANCING_CATEGORIES:
        return FINANCING
    if item.projection_type == ProjectionType.CASH_FLOW and not item.is_recurring:
        tag = normalize_label(item.sub_category)
        if tag in (INVESTING, FINANCING):
            return tag
    return OPERATING


def _combine_lines(*parts: Dict[Hashable, Decimal]) -> Dict[Hashable, Decimal]:
    """Merge section lines; a label present in several parts is summed, never overwritten"""
    combined: Dict[Hashable, Decimal] = defaultdict(lambda: Decimal("0"))
    for part in parts:
        for label, amount in part.items():
            combined[label] += amount
    return dict(combined)


class ReportGenerator:
    """Builds report documents from a plan's normalized projections"""

    def __init__(self, source: ProjectionSource, cancel_check_interval: int = 100):
        self.source = source
        self.cancel_check_interval = max(1, cancel_check_interval)

    def _totals(
        self,
        items: Iterable[ProjectionItem],
        key: Callable[[ProjectionItem], Optional[Hashable]],
        value: Callable[[ProjectionItem], Decimal],
        token: Optional[CancellationToken],
        operation: str,
    ) -> Dict[Hashable, Decimal]:
        """Sum by an explicit key, polling the token every cancel_check_interval items"""
        totals: Dict[Hashable, Decimal] = defaultdict(lambda: Decimal("0"))
        for count, item in enumerate(unique_items(items)):
            if count % self.cancel_check_interval == 0:
                check_cancelled(token, operation)
            group = key(item)
            if group is not None:
                totals[group] += value(item)
        check_cancelled(token, operation)
        return totals

    def _load(self, plan_id: uuid.UUID, scenario: Scenario, currency_code: str) -> Tuple[List[ProjectionItem], ReportHeader]:
        items = self.source.list_by_plan_and_scenario(plan_id, scenario)
        periods = periods_of(items)
        header = ReportHeader(
            plan_id=plan_id,
            scenario=scenario,
            currency_code=currency_code,
            first_period=periods[0] if periods else None,
            last_period=periods[-1] if periods else None,
            generated_at=datetime.now(timezone.utc),
            item_count=len(unique_items(items)),
            duplicate_keys=find_duplicate_keys(items),
        )
        return items, header

    @staticmethod
    def _section(name: str, totals: Dict[Hashable, Decimal], decimal_places: int) -> ReportSection:
        lines = [ReportLine(str(label), round_money(amount, decimal_places)) for label, amount in sorted(totals.items())]
        return ReportSection(name, lines)

    def profit_loss(
        self,
        plan_id: uuid.UUID,
        scenario: Scenario = Scenario.REALISTIC,
        currency_code: str = "",
        decimal_places: int = 2,
        token: Optional[CancellationToken] = None,
    ) -> ProfitLossReport:
        items, header = self._load(plan_id, scenario, currency_code)

        def pl_key(item: ProjectionItem):
            if item.projection_type == ProjectionType.REVENUE:
                return ("revenue", item.category)
            if item.projection_type == ProjectionType.EXPENSE:
                return (_PL_SECTIONS.get(item.canonical_category, "operating_expenses"), item.category)
            return None

        totals = self._totals(items, pl_key, lambda item: item.base_amount, token, "Profit and loss report")
        by_section: Dict[str, Dict[Hashable, Decimal]] = defaultdict(dict)
        for (section, label), amount in totals.items():
            by_section[section][label] = amount

        return ProfitLossReport(
            header=header,
            revenue=self._section("Revenue", by_section["revenue"], decimal_places),
            cost_of_goods_sold=self._section("Cost of Goods Sold", by_section["cost_of_goods_sold"], decimal_places),
            operating_expenses=self._section("Operating Expenses", by_section["operating_expenses"], decimal_places),
            other_expenses=self._section("Other Expenses", by_section["other_expenses"], decimal_places),
        )

    def cash_flow(
        self,
        plan_id: uuid.UUID,
        scenario: Scenario = Scenario.REALISTIC,
        currency_code: str = "",
        decimal_places: int = 2,
        opening_cash: Decimal = Decimal("0"),
        token: Optional[CancellationToken] = None,
    ) -> CashFlowReport:
        items, header = self._load(plan_id, scenario, currency_code)
        totals = self._totals(
            items,
            lambda item: (cash_flow_bucket(item), item.category, item.period),
            cash_effect,
            token,
            "Cash flow report",
        )

        sections: Dict[str, Dict[Hashable, Decimal]] = {OPERATING: {}, INVESTING: {}, FINANCING: {}}
        per_period: Dict[Period, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(lambda: Decimal("0")))
        for (bucket, label, period), amount in totals.items():
            sections[bucket][label] = sections[bucket].get(label, Decimal("0")) + amount
            per_period[period][bucket] += amount

        return CashFlowReport(
            header=header,
            operating=self._section("Operating Activities", sections[OPERATING], decimal_places),
            investing=self._section("Investing Activities", sections[INVESTING], decimal_places),
            financing=self._section("Financing Activities", sections[FINANCING], decimal_places),
            periods=[
                CashFlowPeriod(
                    period=period,
                    operating=round_money(per_period[period][OPERATING], decimal_places),
                    investing=round_money(per_period[period][INVESTING], decimal_places),
                    financing=round_money(per_period[period][FINANCING], decimal_places),
                )
                for period in sorted(per_period)
            ],
            opening_cash=round_money(opening_cash, decimal_places),
        )

    def balance_sheet(
        self,
        plan_id: uuid.UUID,
        scenario: Scenario = Scenario.REALISTIC,
        currency_code: str = "",
        decimal_places: int = 2,
        opening_cash: Decimal = Decimal("0"),
        token: Optional[CancellationToken] = None,
    ) -> BalanceSheetReport:
        items, header = self._load(plan_id, scenario, currency_code)

        def bs_key(item: ProjectionItem):
            if item.projection_type in (ProjectionType.ASSET, ProjectionType.LIABILITY, ProjectionType.EQUITY):
                return (item.projection_type, item.category)
            if item.projection_type in (ProjectionType.REVENUE, ProjectionType.EXPENSE):
                return ("retained", "Retained Earnings")
            return None

        def bs_value(item: ProjectionItem) -> Decimal:
            if item.projection_type == ProjectionType.EXPENSE:
                return -item.base_amount
            return item.base_amount

        totals = self._totals(items, bs_key, bs_value, token, "Balance sheet report")
        cash = opening_cash + sum_money(cash_effect(item) for item in unique_items(items))

        grouped: Dict[Hashable, Dict[Hashable, Decimal]] = defaultdict(dict)
        for (group, label), amount in totals.items():
            grouped[group][label] = amount

        assets = _combine_lines({"Cash": cash}, grouped[ProjectionType.ASSET])
        equity = _combine_lines(grouped[ProjectionType.EQUITY], grouped["retained"])

        return BalanceSheetReport(
            header=header,
            assets=self._section("Assets", assets, decimal_places),
            liabilities=self._section("Liabilities", grouped[ProjectionType.LIABILITY], decimal_places),
            equity=self._section("Equity", equity, decimal_places),
        )

    def generate(
        self,
        plan_id: uuid.UUID,
        report_type: ReportType,
        scenario: Scenario = Scenario.REALISTIC,
        currency_code: str = "",
        decimal_places: int = 2,
        token: Optional[CancellationToken] = None,
    ):
        builders = {
            ReportType.CASH_FLOW: self.cash_flow,
            ReportType.PROFIT_LOSS: self.profit_loss,
            ReportType.BALANCE_SHEET: self.balance_sheet,
        }
        return builders[ReportType(report_type)](plan_id, scenario, currency_code, decimal_places, token=token)
