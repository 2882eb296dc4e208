"""Domain models - pure Python dataclasses representing financial planning entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class ProjectionType(str, Enum):
    REVENUE = "Revenue"
    EXPENSE = "Expense"
    CASH_FLOW = "CashFlow"
    ASSET = "Asset"
    LIABILITY = "Liability"
    EQUITY = "Equity"


class Scenario(str, Enum):
    OPTIMISTIC = "Optimistic"
    REALISTIC = "Realistic"
    PESSIMISTIC = "Pessimistic"


class Frequency(str, Enum):
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUALLY = "Annually"

    @property
    def months(self) -> int:
        return {"Monthly": 1, "Quarterly": 3, "Annually": 12}[self.value]


class FinancialCategory(str, Enum):
    """Canonical categories used for KPI and report grouping"""

    REVENUE = "Revenue"
    COST_OF_GOODS_SOLD = "CostOfGoodsSold"
    OPERATING_EXPENSES = "OperatingExpenses"
    MARKETING = "Marketing"
    INTEREST_EXPENSE = "InterestExpense"
    TAX_EXPENSE = "TaxExpense"
    DEPRECIATION = "Depreciation"
    AMORTIZATION = "Amortization"
    CAPITAL_EXPENDITURE = "CapitalExpenditure"
    LOAN = "Loan"
    EQUITY = "Equity"
    ASSETS = "Assets"
    LIABILITIES = "Liabilities"
    OTHER = "Other"


_CATEGORY_ALIASES = {
    "cogs": FinancialCategory.COST_OF_GOODS_SOLD,
    "costofsales": FinancialCategory.COST_OF_GOODS_SOLD,
    "opex": FinancialCategory.OPERATING_EXPENSES,
    "operating": FinancialCategory.OPERATING_EXPENSES,
    "sales": FinancialCategory.REVENUE,
    "capex": FinancialCategory.CAPITAL_EXPENDITURE,
    "debt": FinancialCategory.LOAN,
    "interest": FinancialCategory.INTEREST_EXPENSE,
    "tax": FinancialCategory.TAX_EXPENSE,
}


def normalize_label(label: Optional[str]) -> str:
    """Lowercase a free-form label and drop spaces, dashes and underscores"""
    if not label:
        return ""
    return "".join(ch for ch in label.lower() if ch not in " -_")


def canonical_category(label: Optional[str]) -> FinancialCategory:
    """Map a free-form category label onto the canonical catalogue (OTHER if unknown)"""
    key = normalize_label(label)
    for category in FinancialCategory:
        if normalize_label(category.value) == key:
            return category
    return _CATEGORY_ALIASES.get(key, FinancialCategory.OTHER)


class ReportType(str, Enum):
    CASH_FLOW = "cash_flow"
    PROFIT_LOSS = "profit_loss"
    BALANCE_SHEET = "balance_sheet"


@dataclass(frozen=True, order=True)
class Period:
    """Calendar month a projection belongs to"""

    year: int
    month: int

    @property
    def reference_date(self) -> date:
        """Date used for rate and rule lookups (first day of the month)"""
        return date(self.year, self.month, 1)

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class Currency:
    code: str
    name: str
    symbol: str
    decimal_places: int = 2
    country: str = ""
    is_active: bool = True


@dataclass
class ExchangeRate:
    """Rate converting one unit of from_code into to_code, effective from a date"""

    from_code: str
    to_code: str
    rate: Decimal
    effective_date: date
    source: str = ""
    id: Optional[uuid.UUID] = None


@dataclass
class ProjectionItem:
    """Single dated, categorized monetary line item of a business plan"""

    plan_id: uuid.UUID
    name: str
    projection_type: ProjectionType
    scenario: Scenario
    year: int
    month: int
    amount: Decimal
    currency_code: str
    base_amount: Decimal
    exchange_rate: Decimal
    category: str
    sub_category: str = ""
    description: str = ""
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    growth_rate: Decimal = Decimal("0")
    assumptions: str = ""
    notes: str = ""
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: str = ""
    updated_by: str = ""

    @property
    def period(self) -> Period:
        return Period(self.year, self.month)

    @property
    def canonical_category(self) -> FinancialCategory:
        return canonical_category(self.category)

    @property
    def grouping_key(self) -> tuple:
        """Logical identity used when checking aggregation duplicates"""
        return (
            self.plan_id,
            self.scenario,
            normalize_label(self.category),
            normalize_label(self.sub_category),
            self.year,
            self.month,
        )


@dataclass(frozen=True)
class Jurisdiction:
    country: str
    region: Optional[str] = None


@dataclass(frozen=True)
class TaxBracket:
    """Income above `threshold` (up to the next bracket) is taxed at `rate`"""

    threshold: Decimal
    rate: Decimal


@dataclass
class TaxRule:
    name: str
    country: str
    category: str
    currency_code: str
    effective_from: date
    rate: Decimal = Decimal("0")
    brackets: List[TaxBracket] = field(default_factory=list)
    region: Optional[str] = None
    effective_to: Optional[date] = None
    tax_type: str = ""
    description: str = ""
    legal_reference: str = ""
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def calculation_method(self) -> str:
        return "Progressive" if self.brackets else "Flat"

    @property
    def is_country_level(self) -> bool:
        return not self.region or self.region == "*"

    def is_effective_on(self, on_date: date) -> bool:
        if on_date < self.effective_from:
            return False
        return self.effective_to is None or on_date <= self.effective_to


@dataclass
class TaxCalculation:
    """Result of applying a tax rule to a projection item (or an ad-hoc amount)"""

    projection_item_id: Optional[uuid.UUID]
    tax_rule_id: uuid.UUID
    tax_name: str
    tax_type: str
    taxable_amount: Decimal
    tax_amount: Decimal
    effective_rate: Decimal
    currency_code: str
    base_tax_amount: Decimal
    base_currency_code: str
    calculation_method: str
    country: str
    region: Optional[str]
    tax_period: date
    computed_at: datetime


@dataclass
class FinancialKPI:
    """Derived metric; value is None when its denominator is zero"""

    plan_id: uuid.UUID
    name: str
    category: str
    scenario: Scenario
    value: Optional[Decimal]
    unit: str
    computed_at: datetime
    currency_code: str = ""
    description: str = ""


@dataclass
class InvestmentAnalysis:
    plan_id: uuid.UUID
    name: str
    analysis_type: str
    initial_investment: Decimal
    expected_return: Decimal
    discount_rate: Decimal
    analysis_period: int
    currency_code: str
    scenario: Scenario = Scenario.REALISTIC
    cash_flows: Optional[List[Decimal]] = None
    expected_return_derived: bool = False
    roi: Optional[Decimal] = None
    npv: Optional[Decimal] = None
    irr: Optional[Decimal] = None
    irr_status: str = "not_computed"
    payback_period: Optional[Decimal] = None
    risk_level: str = ""
    investment_type: str = ""
    investor_type: str = ""
    valuation: Optional[Decimal] = None
    equity_offering: Optional[Decimal] = None
    funding_required: Optional[Decimal] = None
    funding_stage: str = ""
    description: str = ""
    assumptions: str = ""
    notes: str = ""
    computed_at: Optional[datetime] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: str = ""
    updated_by: str = ""
