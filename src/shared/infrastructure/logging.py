"""
Structured Logging
==================

JSON-structured logging with correlation ID tracking.

Provides:
- Structured JSON logs (parseable by log aggregators)
- Correlation ID for request tracing
- Contextual loggers for modules
- Timing of long-running operations such as escalation sweeps

Usage:
    from src.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Ticket escalated", extra={"ticket_number": "SRN-2025-000001"})
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any
from contextlib import contextmanager

from pythonjsonlogger import jsonlogger

_REDACTED_KEYS = ("password", "api_key", "secret")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter with additional fields.

    Adds:
    - timestamp in ISO format
    - correlation_id when available
    - Environment info
    """

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        if hasattr(record, "correlation_id"):
            log_record["correlation_id"] = record.correlation_id

        log_record["environment"] = self.environment

        for key, value in list(log_record.items()):
            if not isinstance(value, str):
                continue
            lowered = key.lower()
            if any(marker in lowered for marker in _REDACTED_KEYS):
                log_record[key] = "***REDACTED***"
            elif "token" in lowered:
                log_record[key] = "***REDACTED***"


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: Environment name for log context
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(
        CustomJsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            environment=environment,
        )
    )
    root_logger.addHandler(handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


def get_context_logger(name: str, correlation_id: str | None = None) -> logging.Logger:
    """
    Get a logger with correlation ID for request tracing.

    Args:
        name: Logger name
        correlation_id: Request correlation ID

    Returns:
        logging.Logger: Logger with correlation_id in extra
    """
    logger = get_logger(name)
    if correlation_id:
        logger = logging.LoggerAdapter(logger, {"correlation_id": correlation_id})
    return logger


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Context manager for measuring and logging operation latency.

    Usage:
        with log_latency(logger, "escalation_sweep", interval_minutes=5):
            await service.run_sweep(now)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round(latency_ms, 2),
                **extra_context,
            },
        )
