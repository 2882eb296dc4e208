"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from pythonjsonlogger.json import JsonFormatter

from finplan_engine.config import settings


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter adding timestamp, level and service name"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: Optional[str] = None) -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level or settings.log_level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        json_default=str,  # Decimal, UUID and date values
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_analysis_computed(
    plan_id: str,
    analysis_id: str,
    npv: Decimal,
    irr_status: str,
    duration_ms: float,
) -> None:
    """Log structured investment analysis outcome"""
    logging.info(
        "Investment analysis computed",
        extra={
            "plan_id": plan_id,
            "analysis_id": analysis_id,
            "step": "analysis_complete",
            "npv": str(npv),
            "irr_status": irr_status,
            "duration_ms": duration_ms,
        },
    )


def log_report_generated(
    plan_id: str,
    report_type: str,
    scenario: str,
    item_count: int,
    duration_ms: float,
) -> None:
    """Log structured report generation outcome"""
    logging.info(
        "Report generated",
        extra={
            "plan_id": plan_id,
            "step": "report_complete",
            "report_type": report_type,
            "scenario": scenario,
            "item_count": item_count,
            "duration_ms": duration_ms,
        },
    )
