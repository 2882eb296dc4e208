"""Tax engine - resolves jurisdictional tax rules and computes tax due"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Protocol, Sequence

from finplan_engine.domain.currency import CurrencyConverter
from finplan_engine.domain.exceptions import DomainException, TaxRuleNotFoundError
from finplan_engine.domain.models import (
    Jurisdiction,
    ProjectionItem,
    TaxBracket,
    TaxCalculation,
    TaxRule,
    normalize_label,
)
from finplan_engine.domain.money import guarded_arithmetic, quantize

logger = logging.getLogger(__name__)


class TaxRuleSource(Protocol):
    def rules_for_country(self, country: str) -> List[TaxRule]:
        ...


@dataclass
class TaxOutcome:
    """Per-item result of a batch tax run: either a calculation or the error"""

    projection_item_id: uuid.UUID
    jurisdiction: Jurisdiction
    calculation: Optional[TaxCalculation] = None
    error: Optional[DomainException] = None

    @property
    def succeeded(self) -> bool:
        return self.calculation is not None


def resolve_rule(rules: Iterable[TaxRule], jurisdiction: Jurisdiction, category: str, on_date: date) -> TaxRule:
    """
    Select the rule for a jurisdiction, category and date.

    Resolution order:
    1. rules for (country, region, category) effective on the date
    2. country-level rules (no region / "*") for (country, category)
    Within a level the rule with the latest effective_from wins.

    Raises:
        TaxRuleNotFoundError: neither level matches
    """
    wanted_category = normalize_label(category)
    country = jurisdiction.country.upper()
    candidates = [
        rule
        for rule in rules
        if rule.country.upper() == country
        and normalize_label(rule.category) == wanted_category
        and rule.is_effective_on(on_date)
    ]

    if jurisdiction.region:
        regional = [r for r in candidates if not r.is_country_level and normalize_label(r.region) == normalize_label(jurisdiction.region)]
        if regional:
            return max(regional, key=lambda r: r.effective_from)

    context = {
        "country": country,
        "region": jurisdiction.region,
        "category": category,
        "on_date": on_date.isoformat(),
    }
    national = [r for r in candidates if r.is_country_level]
    if national:
        rule = max(national, key=lambda r: r.effective_from)
        if jurisdiction.region:
            logger.info("No regional tax rule, using country rule", extra={**context, "rule": rule.name})
        return rule

    logger.info("No tax rule found", extra=context)
    raise TaxRuleNotFoundError(jurisdiction.country, jurisdiction.region, category, on_date)


def progressive_tax(amount: Decimal, brackets: Sequence[TaxBracket]) -> Decimal:
    """
    Standard progressive calculation: each bracket's slice of the amount,
    from its threshold up to the next threshold, is taxed at its own rate.

    Example with brackets [(0, 10%), (1000, 20%)] and amount 1500:
        1000 * 0.10 + 500 * 0.20 = 200
    """
    ordered = sorted(brackets, key=lambda b: b.threshold)
    tax = Decimal("0")
    for index, bracket in enumerate(ordered):
        if amount <= bracket.threshold:
            break
        upper = ordered[index + 1].threshold if index + 1 < len(ordered) else None
        top = amount if upper is None else min(amount, upper)
        tax += (top - bracket.threshold) * bracket.rate
    return tax


def compute_tax(amount: Decimal, rule: TaxRule) -> Decimal:
    """Tax due on a taxable amount; non-positive amounts owe nothing"""
    if amount <= 0:
        return Decimal("0")
    with guarded_arithmetic("Tax calculation"):
        if rule.brackets:
            return progressive_tax(amount, rule.brackets)
        return amount * rule.rate


class TaxEngine:
    """Applies tax rules to projection items"""

    def __init__(self, rules: TaxRuleSource, converter: CurrencyConverter):
        self.rules = rules
        self.converter = converter

    def calculate_amount(
        self,
        projection_item_id: Optional[uuid.UUID],
        taxable_base_amount: Decimal,
        base_currency: str,
        category: str,
        jurisdiction: Jurisdiction,
        on_date: date,
    ) -> TaxCalculation:
        """
        Compute tax on an amount expressed in the plan's reporting currency.

        The amount is converted into the rule's currency (bracket thresholds
        are denominated there), taxed, and the tax is also converted back
        into the reporting currency.
        """
        rule = resolve_rule(self.rules.rules_for_country(jurisdiction.country), jurisdiction, category, on_date)

        taxable = self.converter.convert(taxable_base_amount, base_currency, rule.currency_code, on_date)
        tax = quantize(compute_tax(taxable, rule))
        base_tax = self.converter.convert(tax, rule.currency_code, base_currency, on_date)

        with guarded_arithmetic("Effective tax rate"):
            effective_rate = quantize(tax / taxable) if taxable > 0 else Decimal("0")

        return TaxCalculation(
            projection_item_id=projection_item_id,
            tax_rule_id=rule.id,
            tax_name=rule.name,
            tax_type=rule.tax_type,
            taxable_amount=taxable,
            tax_amount=tax,
            effective_rate=effective_rate,
            currency_code=rule.currency_code,
            base_tax_amount=base_tax,
            base_currency_code=base_currency,
            calculation_method=rule.calculation_method,
            country=jurisdiction.country,
            region=rule.region if not rule.is_country_level else None,
            tax_period=on_date,
            computed_at=datetime.now(timezone.utc),
        )

    def calculate(self, item: ProjectionItem, jurisdiction: Jurisdiction, base_currency: str) -> TaxCalculation:
        """Tax for one item, using its base amount and its period's reference date"""
        return self.calculate_amount(
            item.id,
            item.base_amount,
            base_currency,
            item.category,
            jurisdiction,
            item.period.reference_date,
        )

    def calculate_many(
        self,
        items: Iterable[ProjectionItem],
        jurisdictions: Sequence[Jurisdiction],
        base_currency: str,
    ) -> List[TaxOutcome]:
        """
        Batch calculation that never aborts on a single failure: every
        (item, jurisdiction) pair gets an outcome carrying either the
        calculation or the domain error.
        """
        outcomes = []
        for item in items:
            for jurisdiction in jurisdictions:
                try:
                    calculation = self.calculate(item, jurisdiction, base_currency)
                    outcomes.append(TaxOutcome(item.id, jurisdiction, calculation=calculation))
                except DomainException as e:
                    outcomes.append(TaxOutcome(item.id, jurisdiction, error=e))
        return outcomes
