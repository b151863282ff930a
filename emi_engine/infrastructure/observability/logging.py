"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from emi_engine.config import settings
from emi_engine.domain.models import BatchRunSummary


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_batch_run(summary: BatchRunSummary, duration_ms: float) -> None:
    """Completion log of a daily batch run"""
    failures = summary.entry_failures + summary.pass_failures
    logging.getLogger("emi_engine.batch").log(
        logging.WARNING if failures else logging.INFO,
        "Daily batch skipped" if summary.skipped else "Daily batch completed",
        extra={
            "step": "batch_complete",
            "duration_ms": duration_ms,
            **summary.as_dict(),
        },
    )


def log_installment_payment(
    application_id: str,
    installment_number: int,
    transaction_id: str,
    penalty_amount: int,
    application_status: str,
) -> None:
    """Log a settled installment for reconciliation"""
    logging.getLogger("emi_engine.payments").info(
        "Installment paid",
        extra={
            "application_id": application_id,
            "installment_number": installment_number,
            "transaction_id": transaction_id,
            "penalty_amount": penalty_amount,
            "application_status": application_status,
        },
    )
