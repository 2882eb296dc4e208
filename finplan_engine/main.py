"""Engine factory for embedding the financial analysis engine"""

from typing import Optional

from prometheus_client import generate_latest
from sqlalchemy.orm import Session

from finplan_engine.config import settings
from finplan_engine.infrastructure.database.models import Base
from finplan_engine.infrastructure.database.session import SessionLocal, engine
from finplan_engine.infrastructure.observability.logging import setup_logging
from finplan_engine.services.financial_service import FinancialService
from finplan_engine.services.plans import PlanGateway

# Setup structured logging
setup_logging(settings.log_level)


def create_schema() -> None:
    """Create any missing tables on the configured database"""
    Base.metadata.create_all(bind=engine)


def create_service(plans: PlanGateway, db: Optional[Session] = None) -> FinancialService:
    """
    Build a FinancialService bound to a session.

    Without an explicit session a new one is opened from the configured
    database; the caller closes it.
    """
    return FinancialService(db if db is not None else SessionLocal(), plans, settings)


def metrics_text() -> bytes:
    """Prometheus exposition of every engine metric"""
    return generate_latest()
