# =============================================================================
# bills_core/logging/config.py
# Logging Configuration for the Bill Tracker sync core
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Any, Optional


# Log format
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log directory
LOG_DIR = Path("logs")

# Keys whose values never reach a log record
SENSITIVE_FIELDS = (
    "password", "senha", "token", "secret", "key", "credit_card",
    "cvv", "auth", "session",
)

REDACTED = "[REDACTED]"


def redact(value: Any) -> Any:
    """Return a copy of ``value`` with sensitive dict entries replaced."""
    if isinstance(value, dict):
        return {
            k: REDACTED
            if any(field in str(k).lower() for field in SENSITIVE_FIELDS)
            else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


class SensitiveDataFilter(logging.Filter):
    """Redacts credentials passed through ``extra={"details": {...}}``."""

    def filter(self, record: logging.LogRecord) -> bool:
        details = getattr(record, "details", None)
        if details is not None:
            record.details = redact(details)
        return True


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (default: INFO)
        log_to_file: Whether to also log to a file
        log_filename: Custom log filename (default: bills_YYYY-MM-DD.log)
    """
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        LOG_DIR.mkdir(exist_ok=True)
        if log_filename is None:
            log_filename = f"bills_{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = logging.FileHandler(LOG_DIR / log_filename)
        handlers.append(file_handler)

    sensitive_filter = SensitiveDataFilter()
    for handler in handlers:
        handler.addFilter(sensitive_filter)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("supabase").setLevel(logging.WARNING)
    logging.getLogger("postgrest").setLevel(logging.WARNING)

    logger = logging.getLogger("bills_core")
    logger.info("Logging initialized")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        Configured logger instance

    Usage:
        from bills_core.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Sync started")
        logger.error("An error occurred", exc_info=True)
    """
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for logging operation timing and status.

    Usage:
        with LogContext(logger, "Fetching accounts"):
            gateway.execute(op)
        # Logs: "Fetching accounts... started"
        # Logs: "Fetching accounts... completed (0.34s)"
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.info(f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.time() - self.start_time

        if exc_type is None:
            self.logger.info(f"{self.operation}... completed ({elapsed:.2f}s)")
        else:
            self.logger.error(
                f"{self.operation}... failed ({elapsed:.2f}s): {exc_val}",
                exc_info=True
            )

        return False  # Don't suppress exceptions
