"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from thandal_ledger.config import settings


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


def log_payment(
    loan_id: str,
    repayment_id: str,
    status: str,
    applied_paise: int,
    pending_after_paise: int,
    request_id: Optional[str] = None,
) -> None:
    """Log structured payment classification for audit"""
    logging.info(
        "Payment recorded",
        extra={
            "request_id": request_id,
            "step": "payment_recorded",
            "loan_id": loan_id,
            "repayment_id": repayment_id,
            "repayment_status": status,
            "applied_paise": applied_paise,
            "pending_after_paise": pending_after_paise,
        },
    )


def log_day_close(
    user_id: str,
    business_date: str,
    missed_count: int,
    collected_paise: int,
    already_closed: bool,
    request_id: Optional[str] = None,
) -> None:
    """Log structured day-close outcome"""
    logging.info(
        "Day closed" if not already_closed else "Day already closed",
        extra={
            "request_id": request_id,
            "step": "day_close",
            "user_id": user_id,
            "business_date": business_date,
            "missed_count": missed_count,
            "collected_paise": collected_paise,
            "already_closed": already_closed,
        },
    )
