"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from autopay_engine.config import settings


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
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_transition(subscription_id: str, attempt: int, from_state: str, to_state: str, reason: str = "") -> None:
    logging.info(
        "Execution state changed",
        extra={
            "subscription_id": subscription_id,
            "attempt": attempt,
            "from_state": from_state,
            "state": to_state,
            "reason": reason,
        },
    )


def log_execution(
    subscription_id: str,
    attempt: int,
    status: str,
    reason: Optional[str],
    fallback_used: bool,
    duration_ms: float,
) -> None:
    """Log structured execution outcome for analysis"""
    log = logging.info if status == "success" else logging.warning
    log(
        "Execution completed",
        extra={
            "subscription_id": subscription_id,
            "attempt": attempt,
            "step": "execution_complete",
            "status": status,
            "reason": reason,
            "fallback_used": fallback_used,
            "duration_ms": duration_ms,
        },
    )
