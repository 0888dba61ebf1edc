"""
Structured JSON logging configuration.

Every record carries:
- timestamp (ISO 8601)
- level (INFO, WARNING, ERROR, etc.)
- service (service name)
- request_id (unique per HTTP request, "no-request" elsewhere)
- message (log message)

Usage:
    import logging

    logger = logging.getLogger(__name__)
    logger.info("Gateway connection opened", extra={"user_id": "alice"})
"""
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Any
from pythonjsonlogger import jsonlogger

# Set by RequestIDMiddleware for the lifetime of one HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="no-request")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with the mandatory observability fields.

    Ensures all log records include:
    - timestamp: ISO 8601 timestamp
    - level: Log level
    - service: Service name (e.g., "lunarus-api")
    - request_id: Per-request correlation ID (if available)
    - message: Log message
    - Additional context from 'extra' parameter
    """

    def __init__(self, service_name: str = "lunarus", *args, **kwargs):
        """
        Initialize JSON formatter.

        Args:
            service_name: Name of the service emitting logs
        """
        self.service_name = service_name
        super().__init__(*args, **kwargs)

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        """
        Add mandatory fields to log record.

        Args:
            log_record: Dictionary to be JSON-serialized
            record: Python logging.LogRecord
            message_dict: Message dictionary
        """
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['service'] = self.service_name
        log_record['message'] = record.getMessage()

        if hasattr(record, 'request_id'):
            log_record['request_id'] = record.request_id

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)

        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno


class LogContextFilter(logging.Filter):
    """
    Logging filter that injects the current request_id into log records.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'request_id'):
            record.request_id = request_id_var.get()
        return True


def configure_logging(
    service_name: str = "lunarus",
    level: str = "INFO",
    enable_json: bool = True
) -> None:
    """
    Configure structured logging for the application.

    Args:
        service_name: Name of the service (e.g., "lunarus-api")
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: Whether to use JSON formatting (True for production)

    Example:
        configure_logging(service_name="lunarus-api", level="INFO", enable_json=True)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(LogContextFilter())

    if enable_json:
        formatter = CustomJsonFormatter(
            service_name=service_name,
            fmt='%(timestamp)s %(level)s %(service)s %(request_id)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Suppress noisy third-party loggers
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
