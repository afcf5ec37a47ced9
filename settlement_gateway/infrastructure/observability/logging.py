"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from settlement_gateway.config import settings


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

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_settlement_run(
    settlement_id: str,
    run_type: str,
    status: str,
    lumps: int,
    failed: int,
    amount_settled_minor: int,
    duration_ms: float,
    error: Optional[str] = None,
) -> None:
    """Log structured run outcome for analysis"""
    logging.info(
        "Settlement run completed",
        extra={
            "settlement_id": settlement_id,
            "step": "settlement_run_complete",
            "run_type": run_type,
            "status": status,
            "lumps": lumps,
            "failed_lumps": failed,
            "amount_settled_minor": amount_settled_minor,
            "duration_ms": duration_ms,
            "error": error,
        },
    )


def log_lump_outcome(
    settlement_id: str,
    business_id: str,
    success: bool,
    amount_minor: int,
    failure_kind: Optional[str] = None,
    message: str = "",
) -> None:
    """Log a single lump payout; failures at warning level"""
    level = logging.INFO if success else logging.WARNING
    logging.log(
        level,
        "Settlement lump processed",
        extra={
            "settlement_id": settlement_id,
            "business_id": business_id,
            "step": "lump_payout",
            "outcome": "settled" if success else "failed",
            "amount_minor": amount_minor,
            "failure_kind": failure_kind,
            "detail": message,
        },
    )
