"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger
from microfin_metrics.config import settings


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


def log_ledger_write(count: int, dropped: int, duration_ms: float, source: Optional[str] = None) -> None:
    """Log the outcome of a ledger batch write"""
    logging.info(
        "Ledger write completed",
        extra={
            "step": "ledger_write",
            "recorded": count,
            "dropped": dropped,
            "source": source,
            "duration_ms": duration_ms,
        },
    )


def log_snapshot_failure(
    operation: str,
    branch_name: Optional[str],
    branch_code: Optional[str],
    currency: Optional[str],
    day_key: str,
    deltas: Dict[str, Any],
    error: Exception,
) -> None:
    """Log a snapshot update that was skipped after the ledger write succeeded"""
    logging.error(
        "Snapshot update failed",
        extra={
            "step": "snapshot_update",
            "operation": operation,
            "branch_name": branch_name,
            "branch_code": branch_code,
            "currency": currency,
            "day_key": day_key,
            "deltas": {name: str(value) for name, value in deltas.items()},
            "error": str(error),
            "error_type": type(error).__name__,
        },
    )


def log_data_quality_warning(message: str, **context: Any) -> None:
    """Log suspicious input that was accepted with a fallback value"""
    logging.warning(message, extra={"step": "data_quality", **context})
