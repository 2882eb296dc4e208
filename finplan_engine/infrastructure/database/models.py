"""SQLAlchemy ORM models for the financial analysis engine"""

import uuid
from sqlalchemy import Column, String, Boolean, Date, DateTime, Integer, ForeignKey, Text, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from finplan_engine.infrastructure.database.columns import ExactDecimal

Base = declarative_base()


class CurrencyRecord(Base):
    """Currency with its minor-unit precision"""

    __tablename__ = "currency"

    code = Column(String(8), primary_key=True)
    name = Column(Text, nullable=False)
    symbol = Column(Text, nullable=False)
    decimal_places = Column(Integer, nullable=False, default=2)
    country = Column(Text, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)


class ExchangeRateRecord(Base):
    """Effective-dated rate; rows are appended, never updated"""

    __tablename__ = "exchange_rate"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    from_code = Column(String(8), ForeignKey("currency.code"), nullable=False, index=True)
    to_code = Column(String(8), ForeignKey("currency.code"), nullable=False, index=True)
    rate = Column(ExactDecimal(24, 10), nullable=False)
    effective_date = Column(Date, nullable=False, index=True)
    source = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_by = Column(Text, nullable=False, default="")


class ProjectionItemRecord(Base):
    """Projection line item with its base-currency amount"""

    __tablename__ = "projection_item"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid, nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    projection_type = Column(String(32), nullable=False)
    scenario = Column(String(32), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    amount = Column(ExactDecimal(), nullable=False)
    currency_code = Column(String(8), ForeignKey("currency.code"), nullable=False)
    exchange_rate = Column(ExactDecimal(24, 10), nullable=False)
    base_amount = Column(ExactDecimal(), nullable=False)
    category = Column(Text, nullable=False, index=True)
    sub_category = Column(Text, nullable=False, default="")
    is_recurring = Column(Boolean, nullable=False, default=False)
    frequency = Column(String(16), nullable=True)
    growth_rate = Column(ExactDecimal(), nullable=False, default=0)
    assumptions = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    created_by = Column(Text, nullable=False)
    updated_by = Column(Text, nullable=False)

    tax_calculations = relationship(
        "TaxCalculationRecord", back_populates="projection_item", cascade="all, delete-orphan"
    )


class TaxRuleRecord(Base):
    """Flat or bracketed tax rule for a jurisdiction and category"""

    __tablename__ = "tax_rule"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    country = Column(String(8), nullable=False, index=True)
    region = Column(Text, nullable=True)
    category = Column(Text, nullable=False)
    tax_type = Column(Text, nullable=False, default="")
    rate = Column(ExactDecimal(), nullable=False, default=0)
    brackets = Column(JSON, nullable=False, default=list)  # [{"threshold": "0", "rate": "0.1"}, ...]
    currency_code = Column(String(8), ForeignKey("currency.code"), nullable=False)
    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date, nullable=True)
    legal_reference = Column(Text, nullable=False, default="")


class TaxCalculationRecord(Base):
    """Tax computed for a projection item"""

    __tablename__ = "tax_calculation"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    projection_item_id = Column(
        Uuid, ForeignKey("projection_item.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tax_rule_id = Column(Uuid, ForeignKey("tax_rule.id"), nullable=False)
    tax_name = Column(Text, nullable=False)
    tax_type = Column(Text, nullable=False, default="")
    taxable_amount = Column(ExactDecimal(), nullable=False)
    tax_amount = Column(ExactDecimal(), nullable=False)
    effective_rate = Column(ExactDecimal(), nullable=False)
    currency_code = Column(String(8), nullable=False)
    base_tax_amount = Column(ExactDecimal(), nullable=False)
    base_currency_code = Column(String(8), nullable=False)
    calculation_method = Column(String(16), nullable=False)
    country = Column(String(8), nullable=False)
    region = Column(Text, nullable=True)
    tax_period = Column(Date, nullable=False)
    computed_at = Column(DateTime(timezone=True), nullable=False)
    created_by = Column(Text, nullable=False)

    projection_item = relationship("ProjectionItemRecord", back_populates="tax_calculations")


class FinancialKPIRecord(Base):
    """Latest value of a KPI for a plan and scenario"""

    __tablename__ = "financial_kpi"
    __table_args__ = (UniqueConstraint("plan_id", "name", "scenario", name="uq_kpi_plan_name_scenario"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid, nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(Text, nullable=False)
    scenario = Column(String(32), nullable=False)
    value = Column(ExactDecimal(), nullable=True)
    unit = Column(String(16), nullable=False)
    currency_code = Column(String(8), nullable=False, default="")
    computed_at = Column(DateTime(timezone=True), nullable=False)


class InvestmentAnalysisRecord(Base):
    """Named investment analysis with its derived ROI/NPV/IRR"""

    __tablename__ = "investment_analysis"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid, nullable=False, index=True)
    name = Column(Text, nullable=False)
    analysis_type = Column(String(32), nullable=False)
    description = Column(Text, nullable=False, default="")
    initial_investment = Column(ExactDecimal(), nullable=False)
    expected_return = Column(ExactDecimal(), nullable=False)
    discount_rate = Column(ExactDecimal(), nullable=False)
    analysis_period = Column(Integer, nullable=False)
    currency_code = Column(String(8), nullable=False)
    scenario = Column(String(32), nullable=False, default="Realistic")
    cash_flows = Column(JSON, nullable=True)  # explicit period flows as decimal strings
    expected_return_derived = Column(Boolean, nullable=False, default=False)
    roi = Column(ExactDecimal(), nullable=True)
    npv = Column(ExactDecimal(), nullable=True)
    irr = Column(ExactDecimal(), nullable=True)
    irr_status = Column(String(32), nullable=False, default="not_computed")
    payback_period = Column(ExactDecimal(), nullable=True)
    risk_level = Column(Text, nullable=False, default="")
    investment_type = Column(Text, nullable=False, default="")
    investor_type = Column(Text, nullable=False, default="")
    valuation = Column(ExactDecimal(), nullable=True)
    equity_offering = Column(ExactDecimal(), nullable=True)
    funding_required = Column(ExactDecimal(), nullable=True)
    funding_stage = Column(Text, nullable=False, default="")
    assumptions = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    computed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    created_by = Column(Text, nullable=False)
    updated_by = Column(Text, nullable=False)
