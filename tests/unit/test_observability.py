"""Unit tests for structured logging and metrics"""

import json
import logging
import pytest
from decimal import Decimal
from prometheus_client import REGISTRY
from finplan_engine.domain.models import Currency
from finplan_engine.infrastructure.observability.logging import CustomJsonFormatter, log_report_generated, setup_logging
from finplan_engine.infrastructure.observability.metrics import record_cancellation, record_irr_outcome
from finplan_engine.main import create_service, metrics_text


@pytest.fixture
def restore_root_handlers():
    """Drop the JSON handlers a test installs on the root logger"""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in [h for h in root.handlers if isinstance(h.formatter, CustomJsonFormatter)]:
        root.removeHandler(handler)
    root.setLevel(level)


def test_json_log_lines(capsys, restore_root_handlers):
    setup_logging("INFO")

    logging.getLogger("finplan_engine.test").info("Projection created", extra={"plan_id": "p-1", "amount": Decimal("1.5")})
    log_report_generated("p-1", "cash_flow", "Realistic", 12, 3.5)

    lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
    assert lines[0]["message"] == "Projection created"
    assert lines[0]["level"] == "INFO"
    assert lines[0]["service"] == "finplan-engine"
    assert lines[0]["amount"] == "1.5"
    assert lines[1]["report_type"] == "cash_flow"
    assert lines[1]["item_count"] == 12


def test_debug_suppressed_at_info(capsys, restore_root_handlers):
    setup_logging("INFO")
    logging.getLogger("finplan_engine.test").debug("noise")
    assert capsys.readouterr().out == ""


def test_metric_helpers_increment():
    before = REGISTRY.get_sample_value("finplan_irr_outcomes_total", {"outcome": "no_convergence"}) or 0
    record_irr_outcome(False)
    record_cancellation("cash_flow_report")

    assert REGISTRY.get_sample_value("finplan_irr_outcomes_total", {"outcome": "no_convergence"}) == before + 1
    assert b"finplan_cancelled_operations_total" in metrics_text()


def test_service_writes_are_counted(db, plans, plan_id):
    service = create_service(plans, db)
    labels = {"operation": "create"}
    before = REGISTRY.get_sample_value("finplan_projection_writes_total", labels) or 0

    service.add_currency(Currency("USD", "US Dollar", "$"))
    service.create_projection(
        {
            "plan_id": plan_id,
            "name": "Revenue",
            "projection_type": "Revenue",
            "year": 2024,
            "month": 1,
            "amount": "10",
            "currency_code": "USD",
            "category": "Revenue",
        },
        actor="cfo",
    )

    assert REGISTRY.get_sample_value("finplan_projection_writes_total", labels) == before + 1
