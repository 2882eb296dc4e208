"""
Financial analysis service - the engine's public surface.

Outer layers (HTTP controllers, jobs) call this facade; it wires the pure
domain engines to the database repositories, owns the transaction boundary
for every write, and records metrics and structured logs.
"""

import logging
import time
import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from finplan_engine.config import Settings, settings as default_settings
from finplan_engine.domain.currency import CurrencyConverter
from finplan_engine.domain.exceptions import (
    FieldError,
    InvalidInputError,
    NoConvergenceError,
    NotFoundError,
    OperationCancelledError,
    TaxRuleNotFoundError,
    ValidationError,
)
from finplan_engine.domain.investment import (
    InvestmentAnalyzer,
    InvestmentInputs,
    InvestmentMetrics,
    IrrConverged,
    calculate_roi,
)
from finplan_engine.domain.kpis import KPIAssumptions, KPICalculator
from finplan_engine.domain.models import (
    Currency,
    ExchangeRate,
    FinancialKPI,
    InvestmentAnalysis,
    Jurisdiction,
    ProjectionItem,
    ReportType,
    Scenario,
    TaxCalculation,
    TaxRule,
    normalize_label,
)
from finplan_engine.domain.money import quantize
from finplan_engine.domain.projections import RecurringOccurrence
from finplan_engine.domain.reports import ReportGenerator
from finplan_engine.domain.scenarios import BreakEvenResult, ScenarioEngine, ScenarioResult, SensitivityResult
from finplan_engine.domain.tax import TaxEngine, TaxOutcome
from finplan_engine.infrastructure.database.repositories import (
    CurrencyRepository,
    ExchangeRateRepository,
    InvestmentAnalysisRepository,
    KPIRepository,
    TaxCalculationRepository,
    TaxRuleRepository,
)
from finplan_engine.infrastructure.database.session import transaction
from finplan_engine.infrastructure.observability.logging import log_analysis_computed, log_report_generated
from finplan_engine.infrastructure.observability.metrics import (
    record_cancellation,
    record_irr_outcome,
    record_kpi_recompute,
    record_report,
    record_tax_outcome,
)
from finplan_engine.services.plans import PlanGateway, PlanInfo, require_plan
from finplan_engine.services.projections import ProjectionStore
from finplan_engine.services.schemas import (
    CreateInvestmentAnalysisRequest,
    InvestmentParams,
    TaxCalculationRequest,
    parse_request,
)
from finplan_engine.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]


class FinancialService:
    """Facade over projections, currencies, tax, KPIs, investments, scenarios and reports"""

    def __init__(self, db: Session, plans: PlanGateway, config: Settings = default_settings):
        self.db = db
        self.plans = plans
        self.config = config

        self.currencies = CurrencyRepository(db)
        self.rates = ExchangeRateRepository(db)
        self.tax_rules = TaxRuleRepository(db)
        self.tax_calculations = TaxCalculationRepository(db)
        self.kpi_records = KPIRepository(db)
        self.analyses = InvestmentAnalysisRepository(db)

        self.converter = CurrencyConverter(self.rates, config.money_scale)
        self.projections = ProjectionStore(db, self.converter, plans)
        self.tax = TaxEngine(self.tax_rules, self.converter)
        self.kpis = KPICalculator(
            self.projections,
            KPIAssumptions(
                customer_lifetime_periods=config.default_customer_lifetime_periods,
                trailing_periods=config.burn_rate_trailing_periods,
            ),
        )
        self.analyzer = InvestmentAnalyzer(
            self.projections,
            lower=config.irr_lower_bound,
            upper=config.irr_upper_bound,
            tolerance=config.irr_tolerance,
            max_iterations=config.irr_max_iterations,
        )
        self.scenarios = ScenarioEngine(self.projections, self.kpis, self.analyzer)
        self.reports = ReportGenerator(self.projections, config.report_cancel_check_interval)

    def _decimal_places(self, currency_code: str) -> int:
        currency = self.currencies.get(currency_code)
        return currency.decimal_places if currency else 2

    # Projections

    def create_projection(self, payload: Payload, actor: str) -> ProjectionItem:
        return self.projections.create(payload, actor)

    def check_projection_payload(self, payload: Payload) -> List[FieldError]:
        return self.projections.check(payload)

    def get_projection(self, item_id: uuid.UUID) -> ProjectionItem:
        return self.projections.get(item_id)

    def list_projections(
        self,
        plan_id: uuid.UUID,
        scenario: Optional[Scenario] = None,
        category: Optional[str] = None,
        start: Optional[tuple] = None,
        end: Optional[tuple] = None,
    ) -> List[ProjectionItem]:
        return self.projections.list_by_plan(plan_id, scenario=scenario, category=category, start=start, end=end)

    def list_projections_by_scenario(self, plan_id: uuid.UUID, scenario: Scenario) -> List[ProjectionItem]:
        require_plan(self.plans, plan_id)
        return self.projections.list_by_plan_and_scenario(plan_id, Scenario(scenario))

    def update_projection(self, item_id: uuid.UUID, payload: Payload, actor: str) -> ProjectionItem:
        return self.projections.update(item_id, payload, actor)

    def delete_projection(self, item_id: uuid.UUID, actor: str) -> None:
        self.projections.delete(item_id, actor)

    def project_recurring_series(self, item_id: uuid.UUID, occurrences: int) -> List[RecurringOccurrence]:
        return self.projections.recurring_series(item_id, occurrences)

    def validate_plan_projections(self, plan_id: uuid.UUID, scenario: Scenario = Scenario.REALISTIC) -> List[str]:
        return self.projections.warnings(plan_id, scenario)

    # Currencies

    def add_currency(self, currency: Currency) -> Currency:
        with transaction(self.db):
            return self.currencies.add(replace(currency, code=currency.code.upper()))

    def get_currency(self, code: str) -> Currency:
        currency = self.currencies.get(code)
        if currency is None:
            raise NotFoundError("Currency", code)
        return currency

    def list_currencies(self, active_only: bool = True) -> List[Currency]:
        return self.currencies.list_all(active_only=active_only)

    def add_exchange_rate(self, rate: ExchangeRate, actor: str) -> ExchangeRate:
        """Append a rate; earlier rows are never changed, so past conversions stay reproducible"""
        errors = []
        for field_name in ("from_code", "to_code"):
            if self.currencies.get(getattr(rate, field_name)) is None:
                errors.append(FieldError(field_name, f"unknown currency '{getattr(rate, field_name)}'"))
        if rate.rate <= 0:
            errors.append(FieldError("rate", "must be positive"))
        if errors:
            raise ValidationError(errors)
        with transaction(self.db):
            return self.rates.append(rate, actor)

    def convert(self, amount: Decimal, from_code: str, to_code: str, as_of: Optional[date] = None) -> Decimal:
        return self.converter.convert(amount, from_code.upper(), to_code.upper(), as_of or date.today())

    def get_exchange_rate(self, from_code: str, to_code: str, as_of: Optional[date] = None) -> ExchangeRate:
        return self.converter.resolve(from_code.upper(), to_code.upper(), as_of or date.today())

    def exchange_rate_history(self, from_code: str, to_code: str) -> List[ExchangeRate]:
        """Every stored rate for the pair, oldest effective date first"""
        return self.rates.history(from_code.upper(), to_code.upper())

    # Tax

    def add_tax_rule(self, rule: TaxRule) -> TaxRule:
        with transaction(self.db):
            return self.tax_rules.add(rule)

    def list_tax_rules(self, country: Optional[str] = None, region: Optional[str] = None) -> List[TaxRule]:
        return self.tax_rules.list_rules(country, region)

    def calculate_tax(self, payload: Union[TaxCalculationRequest, Payload]) -> TaxCalculation:
        """Tax on an amount that is not (yet) a stored projection item"""
        request = payload if isinstance(payload, TaxCalculationRequest) else parse_request(TaxCalculationRequest, payload)
        plan = require_plan(self.plans, request.plan_id)

        amount = request.amount
        if request.currency_code and request.currency_code.upper() != plan.reporting_currency:
            amount = self.converter.convert(amount, request.currency_code.upper(), plan.reporting_currency, request.tax_date)

        try:
            calculation = self.tax.calculate_amount(
                request.projection_item_id,
                amount,
                plan.reporting_currency,
                request.category,
                Jurisdiction(request.country, request.region),
                request.tax_date,
            )
        except TaxRuleNotFoundError:
            record_tax_outcome("rule_not_found")
            raise
        record_tax_outcome("calculated")
        return calculation

    def calculate_taxes_for_projection(
        self,
        item_id: uuid.UUID,
        jurisdictions: Sequence[Jurisdiction],
        actor: str,
    ) -> List[TaxOutcome]:
        """
        Apply every jurisdiction to one item and store the successful results.

        A failing jurisdiction does not abort the others; its outcome carries
        the error instead.
        """
        item = self.projections.get(item_id)
        plan = require_plan(self.plans, item.plan_id)
        outcomes = self.tax.calculate_many([item], jurisdictions, plan.reporting_currency)

        with transaction(self.db):
            for outcome in outcomes:
                if outcome.succeeded:
                    self.tax_calculations.add(outcome.calculation, actor)

        for outcome in outcomes:
            if outcome.succeeded:
                record_tax_outcome("calculated")
                continue
            record_tax_outcome("rule_not_found" if isinstance(outcome.error, TaxRuleNotFoundError) else "failed")
            logger.warning(
                "Tax calculation failed for item",
                extra={
                    "item_id": str(item_id),
                    "country": outcome.jurisdiction.country,
                    "region": outcome.jurisdiction.region,
                    "error": str(outcome.error),
                },
            )
        return outcomes

    def list_tax_calculations(self, item_id: uuid.UUID) -> List[TaxCalculation]:
        return self.tax_calculations.list_for_item(item_id)

    # KPIs

    def calculate_kpis(
        self,
        plan_id: uuid.UUID,
        scenarios: Optional[Sequence[Scenario]] = None,
        assumptions: Optional[KPIAssumptions] = None,
    ) -> Dict[Scenario, List[FinancialKPI]]:
        """
        Recompute the KPI catalogue per scenario and overwrite the stored values.

        Results stay keyed by scenario. Undefined KPIs (zero denominator) are
        returned and stored with value None.
        """
        plan = require_plan(self.plans, plan_id)
        results: Dict[Scenario, List[FinancialKPI]] = {}
        with transaction(self.db):
            for scenario in scenarios or list(Scenario):
                kpis = self.kpis.calculate(plan_id, scenario, assumptions, plan.reporting_currency)
                self.kpi_records.replace(plan_id, scenario, kpis)
                results[scenario] = kpis

        for scenario in results:
            record_kpi_recompute(scenario.value)
        logger.info("KPIs recomputed", extra={"plan_id": str(plan_id), "scenarios": [s.value for s in results]})
        return results

    def get_kpi_by_name(
        self,
        plan_id: uuid.UUID,
        name: str,
        scenario: Scenario = Scenario.REALISTIC,
        assumptions: Optional[KPIAssumptions] = None,
    ) -> FinancialKPI:
        """
        Raises:
            NotFoundError: unknown KPI name
            ComputationFailureError: the KPI is undefined for this plan
        """
        plan = require_plan(self.plans, plan_id)
        return self.kpis.calculate_one(plan_id, scenario, name, assumptions, plan.reporting_currency)

    def list_kpis_by_category(
        self,
        plan_id: uuid.UUID,
        category: str,
        scenario: Scenario = Scenario.REALISTIC,
        assumptions: Optional[KPIAssumptions] = None,
    ) -> List[FinancialKPI]:
        plan = require_plan(self.plans, plan_id)
        wanted = normalize_label(category)
        return [
            kpi
            for kpi in self.kpis.calculate(plan_id, scenario, assumptions, plan.reporting_currency)
            if normalize_label(kpi.category) == wanted
        ]

    def list_stored_kpis(self, plan_id: uuid.UUID, scenario: Optional[Scenario] = None) -> List[FinancialKPI]:
        return self.kpi_records.list_for_plan(plan_id, scenario)

    # Investment analysis

    def _params(self, payload: Union[InvestmentParams, Payload]) -> InvestmentParams:
        if isinstance(payload, InvestmentParams):
            return payload
        return parse_request(InvestmentParams, payload)

    def _analyze(self, plan_id: uuid.UUID, params: InvestmentParams) -> InvestmentMetrics:
        metrics = self.analyzer.analyze(plan_id, params.to_inputs(), params.scenario)
        record_irr_outcome(isinstance(metrics.irr, IrrConverged))
        if not isinstance(metrics.irr, IrrConverged):
            logger.warning("IRR did not converge", extra={"plan_id": str(plan_id), "reason": metrics.irr.reason})
        return metrics

    def calculate_roi(self, plan_id: uuid.UUID, payload: Union[InvestmentParams, Payload]) -> Decimal:
        """
        Raises:
            InvalidInputError: zero initial investment
        """
        require_plan(self.plans, plan_id)
        params = self._params(payload)
        if params.initial_investment == 0:
            raise InvalidInputError("ROI is undefined for a zero initial investment")
        metrics = self.analyzer.analyze(plan_id, params.to_inputs(), params.scenario)
        return calculate_roi(params.initial_investment, metrics.expected_return)

    def calculate_npv(self, plan_id: uuid.UUID, payload: Union[InvestmentParams, Payload]) -> Decimal:
        require_plan(self.plans, plan_id)
        params = self._params(payload)
        return self.analyzer.analyze(plan_id, params.to_inputs(), params.scenario).npv

    def calculate_irr(self, plan_id: uuid.UUID, payload: Union[InvestmentParams, Payload]) -> Decimal:
        """
        Raises:
            NoConvergenceError: no sign change in the search interval or
                iteration budget exhausted
        """
        require_plan(self.plans, plan_id)
        params = self._params(payload)
        try:
            rate = self.analyzer.irr(plan_id, params.to_inputs(), params.scenario)
        except NoConvergenceError:
            record_irr_outcome(False)
            raise
        record_irr_outcome(True)
        return rate

    def _apply_metrics(self, analysis: InvestmentAnalysis, metrics: InvestmentMetrics, derived: bool) -> InvestmentAnalysis:
        """Replace every derived field at once"""
        return replace(
            analysis,
            expected_return=quantize(metrics.expected_return),
            expected_return_derived=derived,
            roi=quantize(metrics.roi) if metrics.roi is not None else None,
            npv=quantize(metrics.npv),
            irr=quantize(metrics.irr_rate) if metrics.irr_rate is not None else None,
            irr_status=metrics.irr_status,
            payback_period=quantize(metrics.payback_period) if metrics.payback_period is not None else None,
            computed_at=datetime.now(timezone.utc),
        )

    def create_analysis(self, payload: Union[CreateInvestmentAnalysisRequest, Payload], actor: str) -> InvestmentAnalysis:
        start_time = time.time()
        request = (
            payload
            if isinstance(payload, CreateInvestmentAnalysisRequest)
            else parse_request(CreateInvestmentAnalysisRequest, payload)
        )
        plan = require_plan(self.plans, request.plan_id)
        metrics = self._analyze(request.plan_id, request)

        now = datetime.now(timezone.utc)
        analysis = InvestmentAnalysis(
            plan_id=request.plan_id,
            name=request.name,
            analysis_type=request.analysis_type,
            description=request.description,
            initial_investment=request.initial_investment,
            expected_return=metrics.expected_return,
            discount_rate=request.discount_rate,
            analysis_period=request.analysis_period,
            currency_code=(request.currency_code or plan.reporting_currency).upper(),
            scenario=request.scenario,
            cash_flows=request.cash_flows,
            risk_level=request.risk_level,
            investment_type=request.investment_type,
            investor_type=request.investor_type,
            valuation=request.valuation,
            equity_offering=request.equity_offering,
            funding_required=request.funding_required,
            funding_stage=request.funding_stage,
            assumptions=request.assumptions,
            notes=request.notes,
            created_at=now,
            updated_at=now,
            created_by=actor,
            updated_by=actor,
        )
        analysis = self._apply_metrics(analysis, metrics, derived=request.expected_return is None)

        with transaction(self.db):
            stored = self.analyses.add(analysis)

        log_analysis_computed(
            str(stored.plan_id), str(stored.id), stored.npv, stored.irr_status, (time.time() - start_time) * 1000
        )
        return stored

    def get_analysis(self, analysis_id: uuid.UUID) -> InvestmentAnalysis:
        analysis = self.analyses.get(analysis_id)
        if analysis is None:
            raise NotFoundError("InvestmentAnalysis", analysis_id)
        return analysis

    def list_analyses(self, plan_id: uuid.UUID) -> List[InvestmentAnalysis]:
        return self.analyses.list_for_plan(plan_id)

    def recompute_analysis(self, analysis_id: uuid.UUID, changes: Payload, actor: str) -> InvestmentAnalysis:
        """
        Merge input changes into a stored analysis and recompute it.

        All derived fields are replaced together in one write; a derived
        expected return is derived again unless the change supplies one.
        """
        start_time = time.time()
        current = self.get_analysis(analysis_id)
        merged: Payload = {
            "plan_id": current.plan_id,
            "name": current.name,
            "analysis_type": current.analysis_type,
            "initial_investment": current.initial_investment,
            "discount_rate": current.discount_rate,
            "analysis_period": current.analysis_period,
            "expected_return": None if current.expected_return_derived else current.expected_return,
            "cash_flows": current.cash_flows,
            "scenario": current.scenario,
            "currency_code": current.currency_code,
            "risk_level": current.risk_level,
            "investment_type": current.investment_type,
            "investor_type": current.investor_type,
            "valuation": current.valuation,
            "equity_offering": current.equity_offering,
            "funding_required": current.funding_required,
            "funding_stage": current.funding_stage,
            "description": current.description,
            "assumptions": current.assumptions,
            "notes": current.notes,
        }
        frozen = sorted(name for name in changes if name not in merged or name == "plan_id")
        if frozen:
            raise ValidationError([FieldError(name, "cannot be changed") for name in frozen])
        merged.update(changes)
        request = parse_request(CreateInvestmentAnalysisRequest, merged)
        metrics = self._analyze(current.plan_id, request)

        updated = replace(
            current,
            **{name: getattr(request, name) for name in merged if name not in ("plan_id", "expected_return", "currency_code")},
            currency_code=(request.currency_code or current.currency_code).upper(),
            updated_at=datetime.now(timezone.utc),
            updated_by=actor,
        )
        updated = self._apply_metrics(updated, metrics, derived=request.expected_return is None)

        with transaction(self.db):
            stored = self.analyses.save(updated)

        log_analysis_computed(
            str(stored.plan_id), str(stored.id), stored.npv, stored.irr_status, (time.time() - start_time) * 1000
        )
        return stored

    # Scenarios

    def _default_inputs(self, plan_id: uuid.UUID) -> Optional[InvestmentInputs]:
        """Inputs of the plan's most recent stored analysis"""
        latest = self.analyses.latest_for_plan(plan_id)
        if latest is None:
            return None
        return InvestmentInputs(latest.initial_investment, latest.discount_rate, latest.analysis_period)

    def compare_scenarios(
        self,
        plan_id: uuid.UUID,
        params: Optional[Union[InvestmentParams, Payload]] = None,
        assumptions: Optional[KPIAssumptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> Dict[Scenario, ScenarioResult]:
        plan = require_plan(self.plans, plan_id)
        inputs = self._params(params).to_inputs() if params is not None else self._default_inputs(plan_id)
        try:
            return self.scenarios.compare(plan_id, inputs, assumptions, plan.reporting_currency, token)
        except OperationCancelledError:
            record_cancellation("compare_scenarios")
            logger.warning("Scenario comparison cancelled", extra={"plan_id": str(plan_id)})
            raise

    def sensitivity(
        self,
        plan_id: uuid.UUID,
        variable: str,
        deltas: Optional[Sequence[Decimal]] = None,
        params: Optional[Union[InvestmentParams, Payload]] = None,
        metric: str = "npv",
        assumptions: Optional[KPIAssumptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> SensitivityResult:
        require_plan(self.plans, plan_id)
        inputs = self._params(params).to_inputs() if params is not None else self._default_inputs(plan_id)
        deltas = list(deltas) if deltas is not None else list(self.config.default_sensitivity_deltas)
        try:
            return self.scenarios.sensitivity(plan_id, variable, deltas, inputs, metric, assumptions, token)
        except OperationCancelledError:
            record_cancellation("sensitivity")
            raise

    def break_even(self, plan_id: uuid.UUID) -> BreakEvenResult:
        require_plan(self.plans, plan_id)
        return self.scenarios.break_even(plan_id)

    # Reports

    def generate_report(
        self,
        plan_id: uuid.UUID,
        report_type: Union[ReportType, str],
        scenario: Scenario = Scenario.REALISTIC,
        token: Optional[CancellationToken] = None,
    ):
        """
        Build a report rounded to the reporting currency's minor units.

        Raises:
            ValidationError: unknown report type
            OperationCancelledError: the token fired; no partial report is returned
        """
        plan: PlanInfo = require_plan(self.plans, plan_id)
        try:
            report_type = ReportType(report_type)
        except ValueError as e:
            raise ValidationError(
                [FieldError("report_type", f"must be one of {', '.join(t.value for t in ReportType)}")]
            ) from e

        start_time = time.time()
        try:
            report = self.reports.generate(
                plan_id,
                report_type,
                Scenario(scenario),
                plan.reporting_currency,
                self._decimal_places(plan.reporting_currency),
                token=token,
            )
        except OperationCancelledError:
            record_cancellation(f"{report_type.value}_report")
            logger.warning("Report generation cancelled", extra={"plan_id": str(plan_id), "report_type": report_type.value})
            raise

        duration = time.time() - start_time
        record_report(report_type.value, duration)
        log_report_generated(str(plan_id), report_type.value, Scenario(scenario).value, report.header.item_count, duration * 1000)
        return report

    def cash_flow_report(self, plan_id: uuid.UUID, scenario: Scenario = Scenario.REALISTIC, token: Optional[CancellationToken] = None):
        return self.generate_report(plan_id, ReportType.CASH_FLOW, scenario, token)

    def profit_loss_report(self, plan_id: uuid.UUID, scenario: Scenario = Scenario.REALISTIC, token: Optional[CancellationToken] = None):
        return self.generate_report(plan_id, ReportType.PROFIT_LOSS, scenario, token)

    def balance_sheet_report(self, plan_id: uuid.UUID, scenario: Scenario = Scenario.REALISTIC, token: Optional[CancellationToken] = None):
        return self.generate_report(plan_id, ReportType.BALANCE_SHEET, scenario, token)
