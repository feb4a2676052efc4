"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "paydesk"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = SERVICE_NAME


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


def log_ledger_operation(
    operation: str,
    installment_id: int,
    status: str,
    balance_cents: int,
    amount_cents: Optional[int] = None,
    transaction_id: Optional[int] = None,
) -> None:
    """Log structured outcome of a ledger mutation"""
    logging.info(
        "Ledger operation completed",
        extra={
            "step": "ledger_" + operation,
            "installment_id": installment_id,
            "installment_status": status,
            "balance_cents": balance_cents,
            "amount_cents": amount_cents,
            "transaction_id": transaction_id,
        },
    )


def log_notification_created(notification_id: int, message_key: Optional[str], notification_type: str) -> None:
    """Log a notification the scheduler (or manual emit) just persisted"""
    logging.info(
        "Notification created",
        extra={
            "step": "notification_created",
            "notification_id": notification_id,
            "message_key": message_key,
            "notification_type": notification_type,
        },
    )
