"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import uuid
from datetime import date
from decimal import Decimal
from typing import Generator, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from finplan_engine.domain.models import Currency, ExchangeRate, ProjectionItem, ProjectionType, Scenario
from finplan_engine.infrastructure.database.models import Base
from finplan_engine.services.financial_service import FinancialService
from finplan_engine.services.plans import InMemoryPlanGateway


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def plan_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def plans(plan_id: uuid.UUID) -> InMemoryPlanGateway:
    """Plan registry with one USD-reporting plan"""
    gateway = InMemoryPlanGateway()
    gateway.register(plan_id, "USD")
    return gateway


@pytest.fixture
def service(db: Session, plans: InMemoryPlanGateway) -> FinancialService:
    """Service with USD, EUR and JPY plus EUR->USD rates for 2024"""
    svc = FinancialService(db, plans)
    svc.add_currency(Currency("USD", "US Dollar", "$", 2, "US"))
    svc.add_currency(Currency("EUR", "Euro", "€", 2, "DE"))
    svc.add_currency(Currency("JPY", "Japanese Yen", "¥", 0, "JP"))
    svc.add_exchange_rate(ExchangeRate("EUR", "USD", Decimal("1.10"), date(2024, 1, 1), source="ecb"), actor="seed")
    svc.add_exchange_rate(ExchangeRate("EUR", "USD", Decimal("1.20"), date(2024, 7, 1), source="ecb"), actor="seed")
    return svc


def _make_item(
    plan_id: uuid.UUID,
    projection_type: ProjectionType,
    category: str,
    amount: str,
    year: int = 2024,
    month: int = 1,
    scenario: Scenario = Scenario.REALISTIC,
    **kwargs,
) -> ProjectionItem:
    """Build an already-normalized USD item for pure domain tests"""
    value = Decimal(amount)
    return ProjectionItem(
        plan_id=plan_id,
        name=f"{category} {year}-{month:02d}",
        projection_type=projection_type,
        scenario=scenario,
        year=year,
        month=month,
        amount=value,
        currency_code="USD",
        base_amount=value,
        exchange_rate=Decimal("1"),
        category=category,
        **kwargs,
    )


class _ListSource:
    """In-memory ProjectionSource over a fixed item list"""

    def __init__(self, items: List[ProjectionItem]):
        self.items = items

    def list_by_plan_and_scenario(self, plan_id: uuid.UUID, scenario: Scenario) -> List[ProjectionItem]:
        return [i for i in self.items if i.plan_id == plan_id and i.scenario == scenario]


@pytest.fixture
def make_item():
    return _make_item


@pytest.fixture
def list_source():
    return _ListSource


@pytest.fixture
def startup_items(plan_id: uuid.UUID) -> List[ProjectionItem]:
    """
    Four months of a startup that burns cash, then turns profitable.

    Net cash per month: -1000, +300, +400, +500 (cumulative -1000, -700,
    -300, +200), so break-even falls at 2.6.
    """
    items = []
    for month, revenue, cogs, opex in [
        (1, "0", "0", "1000"),
        (2, "1000", "400", "300"),
        (3, "1200", "500", "300"),
        (4, "1400", "600", "300"),
    ]:
        items.append(_make_item(plan_id, ProjectionType.REVENUE, "Revenue", revenue, month=month))
        items.append(_make_item(plan_id, ProjectionType.EXPENSE, "CostOfGoodsSold", cogs, month=month))
        items.append(_make_item(plan_id, ProjectionType.EXPENSE, "OperatingExpenses", opex, month=month))
    return items
