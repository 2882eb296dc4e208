"""Data access layer for financial planning entities"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session
from finplan_engine.infrastructure.database.models import (
    CurrencyRecord,
    ExchangeRateRecord,
    FinancialKPIRecord,
    InvestmentAnalysisRecord,
    ProjectionItemRecord,
    TaxCalculationRecord,
    TaxRuleRecord,
)
from finplan_engine.domain.models import (
    Currency,
    ExchangeRate,
    FinancialKPI,
    Frequency,
    InvestmentAnalysis,
    ProjectionItem,
    ProjectionType,
    Scenario,
    TaxBracket,
    TaxCalculation,
    TaxRule,
)


def _currency(record: CurrencyRecord) -> Currency:
    return Currency(
        code=record.code,
        name=record.name,
        symbol=record.symbol,
        decimal_places=record.decimal_places,
        country=record.country,
        is_active=record.is_active,
    )


def _exchange_rate(record: ExchangeRateRecord) -> ExchangeRate:
    return ExchangeRate(
        from_code=record.from_code,
        to_code=record.to_code,
        rate=record.rate,
        effective_date=record.effective_date,
        source=record.source,
        id=record.id,
    )


def _projection_item(record: ProjectionItemRecord) -> ProjectionItem:
    return ProjectionItem(
        id=record.id,
        plan_id=record.plan_id,
        name=record.name,
        description=record.description,
        projection_type=ProjectionType(record.projection_type),
        scenario=Scenario(record.scenario),
        year=record.year,
        month=record.month,
        amount=record.amount,
        currency_code=record.currency_code,
        exchange_rate=record.exchange_rate,
        base_amount=record.base_amount,
        category=record.category,
        sub_category=record.sub_category,
        is_recurring=record.is_recurring,
        frequency=Frequency(record.frequency) if record.frequency else None,
        growth_rate=record.growth_rate,
        assumptions=record.assumptions,
        notes=record.notes,
        created_at=record.created_at,
        updated_at=record.updated_at,
        created_by=record.created_by,
        updated_by=record.updated_by,
    )


def _tax_rule(record: TaxRuleRecord) -> TaxRule:
    return TaxRule(
        id=record.id,
        name=record.name,
        description=record.description,
        country=record.country,
        region=record.region,
        category=record.category,
        tax_type=record.tax_type,
        rate=record.rate,
        brackets=[TaxBracket(Decimal(b["threshold"]), Decimal(b["rate"])) for b in record.brackets or []],
        currency_code=record.currency_code,
        effective_from=record.effective_from,
        effective_to=record.effective_to,
        legal_reference=record.legal_reference,
    )


def _tax_calculation(record: TaxCalculationRecord) -> TaxCalculation:
    return TaxCalculation(
        projection_item_id=record.projection_item_id,
        tax_rule_id=record.tax_rule_id,
        tax_name=record.tax_name,
        tax_type=record.tax_type,
        taxable_amount=record.taxable_amount,
        tax_amount=record.tax_amount,
        effective_rate=record.effective_rate,
        currency_code=record.currency_code,
        base_tax_amount=record.base_tax_amount,
        base_currency_code=record.base_currency_code,
        calculation_method=record.calculation_method,
        country=record.country,
        region=record.region,
        tax_period=record.tax_period,
        computed_at=record.computed_at,
    )


def _kpi(record: FinancialKPIRecord) -> FinancialKPI:
    return FinancialKPI(
        plan_id=record.plan_id,
        name=record.name,
        description=record.description,
        category=record.category,
        scenario=Scenario(record.scenario),
        value=record.value,
        unit=record.unit,
        currency_code=record.currency_code,
        computed_at=record.computed_at,
    )


_ANALYSIS_FIELDS = (
    "plan_id", "name", "analysis_type", "description", "initial_investment", "expected_return",
    "discount_rate", "analysis_period", "currency_code", "expected_return_derived", "roi", "npv", "irr", "irr_status",
    "payback_period", "risk_level", "investment_type", "investor_type", "valuation",
    "equity_offering", "funding_required", "funding_stage", "assumptions", "notes", "computed_at",
    "created_at", "updated_at", "created_by", "updated_by",
)


def _analysis(record: InvestmentAnalysisRecord) -> InvestmentAnalysis:
    return InvestmentAnalysis(
        id=record.id,
        scenario=Scenario(record.scenario),
        cash_flows=[Decimal(flow) for flow in record.cash_flows] if record.cash_flows is not None else None,
        **{name: getattr(record, name) for name in _ANALYSIS_FIELDS},
    )


def _analysis_columns(analysis: InvestmentAnalysis) -> dict:
    columns = {name: getattr(analysis, name) for name in _ANALYSIS_FIELDS}
    columns["scenario"] = analysis.scenario.value
    columns["cash_flows"] = [str(flow) for flow in analysis.cash_flows] if analysis.cash_flows is not None else None
    return columns


class CurrencyRepository:
    """Repository for currencies"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, currency: Currency) -> Currency:
        self.db.add(
            CurrencyRecord(
                code=currency.code,
                name=currency.name,
                symbol=currency.symbol,
                decimal_places=currency.decimal_places,
                country=currency.country,
                is_active=currency.is_active,
            )
        )
        self.db.flush()
        return currency

    def get(self, code: str) -> Optional[Currency]:
        record = self.db.query(CurrencyRecord).filter(CurrencyRecord.code == code.upper()).first()
        return _currency(record) if record else None

    def list_all(self, active_only: bool = False) -> List[Currency]:
        query = self.db.query(CurrencyRecord)
        if active_only:
            query = query.filter(CurrencyRecord.is_active.is_(True))
        return [_currency(r) for r in query.order_by(CurrencyRecord.code).all()]


class ExchangeRateRepository:
    """
    Append-only store of effective-dated rates.

    Also serves as the converter's RateSource: lookups pick the latest
    effective_date on or before the requested date, and among rows with the
    same effective_date the most recently appended.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(self, rate: ExchangeRate, actor: str = "") -> ExchangeRate:
        record = ExchangeRateRecord(
            from_code=rate.from_code,
            to_code=rate.to_code,
            rate=rate.rate,
            effective_date=rate.effective_date,
            source=rate.source,
            created_at=datetime.now(timezone.utc),
            created_by=actor,
        )
        self.db.add(record)
        self.db.flush()
        return _exchange_rate(record)

    def find_rate(self, from_code: str, to_code: str, as_of: date) -> Optional[ExchangeRate]:
        record = (
            self.db.query(ExchangeRateRecord)
            .filter(
                ExchangeRateRecord.from_code == from_code,
                ExchangeRateRecord.to_code == to_code,
                ExchangeRateRecord.effective_date <= as_of,
            )
            .order_by(ExchangeRateRecord.effective_date.desc(), ExchangeRateRecord.created_at.desc())
            .first()
        )
        return _exchange_rate(record) if record else None

    def history(self, from_code: str, to_code: str) -> List[ExchangeRate]:
        records = (
            self.db.query(ExchangeRateRecord)
            .filter(ExchangeRateRecord.from_code == from_code, ExchangeRateRecord.to_code == to_code)
            .order_by(ExchangeRateRecord.effective_date, ExchangeRateRecord.created_at)
            .all()
        )
        return [_exchange_rate(r) for r in records]


class ProjectionRepository:
    """Repository for projection items; deleted rows stay in place, flagged"""

    def __init__(self, db: Session):
        self.db = db

    def _active(self):
        return self.db.query(ProjectionItemRecord).filter(ProjectionItemRecord.is_deleted.is_(False))

    def _record(self, item_id: uuid.UUID) -> Optional[ProjectionItemRecord]:
        return self._active().filter(ProjectionItemRecord.id == item_id).first()

    def add(self, item: ProjectionItem) -> ProjectionItem:
        record = ProjectionItemRecord(
            id=item.id,
            plan_id=item.plan_id,
            name=item.name,
            description=item.description,
            projection_type=item.projection_type.value,
            scenario=item.scenario.value,
            year=item.year,
            month=item.month,
            amount=item.amount,
            currency_code=item.currency_code,
            exchange_rate=item.exchange_rate,
            base_amount=item.base_amount,
            category=item.category,
            sub_category=item.sub_category,
            is_recurring=item.is_recurring,
            frequency=item.frequency.value if item.frequency else None,
            growth_rate=item.growth_rate,
            assumptions=item.assumptions,
            notes=item.notes,
            created_at=item.created_at,
            updated_at=item.updated_at,
            created_by=item.created_by,
            updated_by=item.updated_by,
        )
        self.db.add(record)
        self.db.flush()
        return _projection_item(record)

    def save(self, item: ProjectionItem) -> ProjectionItem:
        """Overwrite every mutable column of an existing item"""
        record = self._record(item.id)
        for name in (
            "name", "description", "year", "month", "amount", "currency_code", "exchange_rate",
            "base_amount", "category", "sub_category", "is_recurring", "growth_rate", "assumptions",
            "notes", "updated_at", "updated_by",
        ):
            setattr(record, name, getattr(item, name))
        record.projection_type = item.projection_type.value
        record.scenario = item.scenario.value
        record.frequency = item.frequency.value if item.frequency else None
        self.db.flush()
        return _projection_item(record)

    def get(self, item_id: uuid.UUID) -> Optional[ProjectionItem]:
        record = self._record(item_id)
        return _projection_item(record) if record else None

    def list_by_plan(
        self,
        plan_id: uuid.UUID,
        scenario: Optional[Scenario] = None,
        category: Optional[str] = None,
        start: Optional[tuple] = None,
        end: Optional[tuple] = None,
    ) -> List[ProjectionItem]:
        """
        Items of a plan ordered by period, optionally filtered by scenario,
        category and an inclusive (year, month) range.
        """
        query = self._active().filter(ProjectionItemRecord.plan_id == plan_id)
        if scenario is not None:
            query = query.filter(ProjectionItemRecord.scenario == Scenario(scenario).value)
        if category is not None:
            query = query.filter(ProjectionItemRecord.category == category)
        records = query.order_by(
            ProjectionItemRecord.year, ProjectionItemRecord.month, ProjectionItemRecord.category
        ).all()
        items = [_projection_item(r) for r in records]
        if start is not None:
            items = [i for i in items if (i.year, i.month) >= tuple(start)]
        if end is not None:
            items = [i for i in items if (i.year, i.month) <= tuple(end)]
        return items

    def list_by_plan_and_scenario(self, plan_id: uuid.UUID, scenario: Scenario) -> List[ProjectionItem]:
        return self.list_by_plan(plan_id, scenario=scenario)

    def soft_delete(self, item_id: uuid.UUID, actor: str) -> bool:
        record = self._record(item_id)
        if record is None:
            return False
        now = datetime.now(timezone.utc)
        record.is_deleted = True
        record.deleted_at = now
        record.deleted_by = actor
        record.updated_at = now
        record.updated_by = actor
        self.db.flush()
        return True


class TaxRuleRepository:
    """Repository for tax rules; also the tax engine's rule source"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, rule: TaxRule) -> TaxRule:
        self.db.add(
            TaxRuleRecord(
                id=rule.id,
                name=rule.name,
                description=rule.description,
                country=rule.country.upper(),
                region=rule.region,
                category=rule.category,
                tax_type=rule.tax_type,
                rate=rule.rate,
                brackets=[{"threshold": str(b.threshold), "rate": str(b.rate)} for b in rule.brackets],
                currency_code=rule.currency_code,
                effective_from=rule.effective_from,
                effective_to=rule.effective_to,
                legal_reference=rule.legal_reference,
            )
        )
        self.db.flush()
        return rule

    def rules_for_country(self, country: str) -> List[TaxRule]:
        records = self.db.query(TaxRuleRecord).filter(TaxRuleRecord.country == country.upper()).all()
        return [_tax_rule(r) for r in records]

    def list_rules(self, country: Optional[str] = None, region: Optional[str] = None) -> List[TaxRule]:
        query = self.db.query(TaxRuleRecord)
        if country is not None:
            query = query.filter(TaxRuleRecord.country == country.upper())
        if region is not None:
            query = query.filter(TaxRuleRecord.region == region)
        records = query.order_by(TaxRuleRecord.country, TaxRuleRecord.category, TaxRuleRecord.effective_from).all()
        return [_tax_rule(r) for r in records]


class TaxCalculationRepository:
    """Repository for computed taxes"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, calculation: TaxCalculation, actor: str) -> TaxCalculation:
        record = TaxCalculationRecord(
            projection_item_id=calculation.projection_item_id,
            tax_rule_id=calculation.tax_rule_id,
            tax_name=calculation.tax_name,
            tax_type=calculation.tax_type,
            taxable_amount=calculation.taxable_amount,
            tax_amount=calculation.tax_amount,
            effective_rate=calculation.effective_rate,
            currency_code=calculation.currency_code,
            base_tax_amount=calculation.base_tax_amount,
            base_currency_code=calculation.base_currency_code,
            calculation_method=calculation.calculation_method,
            country=calculation.country,
            region=calculation.region,
            tax_period=calculation.tax_period,
            computed_at=calculation.computed_at,
            created_by=actor,
        )
        self.db.add(record)
        self.db.flush()
        return calculation

    def list_for_item(self, projection_item_id: uuid.UUID) -> List[TaxCalculation]:
        records = (
            self.db.query(TaxCalculationRecord)
            .filter(TaxCalculationRecord.projection_item_id == projection_item_id)
            .order_by(TaxCalculationRecord.computed_at)
            .all()
        )
        return [_tax_calculation(r) for r in records]


class KPIRepository:
    """Repository for derived KPIs"""

    def __init__(self, db: Session):
        self.db = db

    def replace(self, plan_id: uuid.UUID, scenario: Scenario, kpis: List[FinancialKPI]) -> List[FinancialKPI]:
        """Overwrite the stored values of a plan/scenario with a fresh computation"""
        (
            self.db.query(FinancialKPIRecord)
            .filter(FinancialKPIRecord.plan_id == plan_id, FinancialKPIRecord.scenario == scenario.value)
            .delete(synchronize_session=False)
        )
        for kpi in kpis:
            self.db.add(
                FinancialKPIRecord(
                    plan_id=kpi.plan_id,
                    name=kpi.name,
                    description=kpi.description,
                    category=kpi.category,
                    scenario=kpi.scenario.value,
                    value=kpi.value,
                    unit=kpi.unit,
                    currency_code=kpi.currency_code,
                    computed_at=kpi.computed_at,
                )
            )
        self.db.flush()
        return kpis

    def list_for_plan(
        self,
        plan_id: uuid.UUID,
        scenario: Optional[Scenario] = None,
        category: Optional[str] = None,
    ) -> List[FinancialKPI]:
        query = self.db.query(FinancialKPIRecord).filter(FinancialKPIRecord.plan_id == plan_id)
        if scenario is not None:
            query = query.filter(FinancialKPIRecord.scenario == scenario.value)
        if category is not None:
            query = query.filter(FinancialKPIRecord.category == category)
        return [_kpi(r) for r in query.order_by(FinancialKPIRecord.scenario, FinancialKPIRecord.name).all()]


class InvestmentAnalysisRepository:
    """Repository for investment analyses"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, analysis: InvestmentAnalysis) -> InvestmentAnalysis:
        record = InvestmentAnalysisRecord(id=analysis.id, **_analysis_columns(analysis))
        self.db.add(record)
        self.db.flush()
        return _analysis(record)

    def save(self, analysis: InvestmentAnalysis) -> InvestmentAnalysis:
        """Write every field back in one flush"""
        record = self.db.query(InvestmentAnalysisRecord).filter(InvestmentAnalysisRecord.id == analysis.id).first()
        for name, value in _analysis_columns(analysis).items():
            setattr(record, name, value)
        self.db.flush()
        return _analysis(record)

    def get(self, analysis_id: uuid.UUID) -> Optional[InvestmentAnalysis]:
        record = self.db.query(InvestmentAnalysisRecord).filter(InvestmentAnalysisRecord.id == analysis_id).first()
        return _analysis(record) if record else None

    def latest_for_plan(self, plan_id: uuid.UUID) -> Optional[InvestmentAnalysis]:
        record = (
            self.db.query(InvestmentAnalysisRecord)
            .filter(InvestmentAnalysisRecord.plan_id == plan_id)
            .order_by(InvestmentAnalysisRecord.updated_at.desc())
            .first()
        )
        return _analysis(record) if record else None

    def list_for_plan(self, plan_id: uuid.UUID) -> List[InvestmentAnalysis]:
        records = (
            self.db.query(InvestmentAnalysisRecord)
            .filter(InvestmentAnalysisRecord.plan_id == plan_id)
            .order_by(InvestmentAnalysisRecord.created_at)
            .all()
        )
        return [_analysis(r) for r in records]
