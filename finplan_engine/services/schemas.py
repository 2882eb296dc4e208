"""Pydantic schemas for request validation"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, BeforeValidator, Field, model_validator

from finplan_engine.domain.exceptions import FieldError, ValidationError
from finplan_engine.domain.investment import InvestmentInputs
from finplan_engine.domain.models import Frequency, ProjectionType, Scenario


def _reject_float(value: Any) -> Any:
    if isinstance(value, float):
        raise ValueError("money values must be given as decimal strings or integers, not floats")
    return value


Money = Annotated[Decimal, BeforeValidator(_reject_float)]


class CreateProjectionRequest(BaseModel):
    """Payload for creating a projection item"""

    plan_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=200)
    projection_type: ProjectionType
    scenario: Scenario = Scenario.REALISTIC
    year: int = Field(..., ge=1900, le=2200)
    month: int = Field(..., ge=1, le=12)
    amount: Money
    currency_code: str = Field(..., min_length=3, max_length=8)
    category: str = Field(..., min_length=1)
    sub_category: str = ""
    description: str = ""
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    growth_rate: Money = Decimal("0")
    assumptions: str = ""
    notes: str = ""

    @model_validator(mode="after")
    def recurring_needs_frequency(self):
        if self.is_recurring and self.frequency is None:
            raise ValueError("a recurring projection needs a frequency")
        return self


class UpdateProjectionRequest(BaseModel):
    """Partial update; omitted fields keep their stored value"""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    projection_type: Optional[ProjectionType] = None
    scenario: Optional[Scenario] = None
    year: Optional[int] = Field(None, ge=1900, le=2200)
    month: Optional[int] = Field(None, ge=1, le=12)
    amount: Optional[Money] = None
    currency_code: Optional[str] = Field(None, min_length=3, max_length=8)
    category: Optional[str] = Field(None, min_length=1)
    sub_category: Optional[str] = None
    description: Optional[str] = None
    is_recurring: Optional[bool] = None
    frequency: Optional[Frequency] = None
    growth_rate: Optional[Money] = None
    assumptions: Optional[str] = None
    notes: Optional[str] = None


class TaxCalculationRequest(BaseModel):
    """Tax on an ad-hoc amount, expressed in the plan's reporting currency unless currency_code is given"""

    plan_id: uuid.UUID
    amount: Money
    category: str = Field(..., min_length=1)
    country: str = Field(..., min_length=2, max_length=8)
    region: Optional[str] = None
    tax_date: date
    currency_code: Optional[str] = Field(None, min_length=3, max_length=8)
    projection_item_id: Optional[uuid.UUID] = None


class InvestmentParams(BaseModel):
    """Inputs to ROI/NPV/IRR calculations"""

    initial_investment: Money = Field(..., ge=0)
    discount_rate: Money = Field(..., gt=-1)
    analysis_period: int = Field(..., ge=1, le=600)
    expected_return: Optional[Money] = None
    cash_flows: Optional[List[Money]] = None
    scenario: Scenario = Scenario.REALISTIC

    def to_inputs(self) -> InvestmentInputs:
        return InvestmentInputs(
            initial_investment=self.initial_investment,
            discount_rate=self.discount_rate,
            analysis_period=self.analysis_period,
            expected_return=self.expected_return,
            cash_flows=list(self.cash_flows) if self.cash_flows is not None else None,
        )


class CreateInvestmentAnalysisRequest(InvestmentParams):
    """Named analysis with funding metadata"""

    plan_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=200)
    analysis_type: str = "Standard"
    currency_code: Optional[str] = Field(None, min_length=3, max_length=8)
    risk_level: str = ""
    investment_type: str = ""
    investor_type: str = ""
    valuation: Optional[Money] = Field(None, ge=0)
    equity_offering: Optional[Money] = Field(None, ge=0, le=1)
    funding_required: Optional[Money] = Field(None, ge=0)
    funding_stage: str = ""
    description: str = ""
    assumptions: str = ""
    notes: str = ""


M = TypeVar("M", bound=BaseModel)


def _field_errors(error: pydantic.ValidationError) -> List[FieldError]:
    return [FieldError(".".join(str(part) for part in e["loc"]) or "__root__", e["msg"]) for e in error.errors()]


def collect_errors(model: Type[BaseModel], payload: Dict[str, Any]) -> List[FieldError]:
    """Validate a payload and return every problem as a FieldError (empty when valid)"""
    try:
        model.model_validate(payload)
    except pydantic.ValidationError as e:
        return _field_errors(e)
    return []


def parse_request(model: Type[M], payload: Dict[str, Any]) -> M:
    """
    Build a request model from a raw payload.

    Raises:
        ValidationError: carrying the full list of field errors
    """
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(_field_errors(e)) from e
