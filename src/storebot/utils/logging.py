"""
Structured JSON logging utility for StoreBot.

Logs are emitted as one JSON object per line. A correlation ID set by the
HTTP middleware is carried through a context variable, so every log line
written while handling a webhook delivery can be traced back to it.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Any

# Correlation ID of the request currently being handled
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Attributes present on every LogRecord; anything else came from `extra`
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "correlation_id",
    }
)

# Keys never written by log_event: WhatsApp ids, names and message bodies
PII_FIELDS = frozenset(
    {
        "phone",
        "phone_number",
        "whatsapp_id",
        "sender_id",
        "customer_whatsapp",
        "customer_name",
        "contact_name",
        "display_name",
        "profile_name",
        "name",
        "text",
        "caption",
        "message",
        "body",
        "email",
    }
)

SENSITIVE_SUBSTRINGS = ("password", "token", "secret", "key", "credential")


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Formats log records as JSON objects with timestamp, level, logger name,
    message, correlation ID and any fields passed via `extra`.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = getattr(record, "correlation_id", None) or correlation_id_var.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Decimals, datetimes and enums fall back to str()
        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """
    Configure application logging with JSON formatting.

    Args:
        level: The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # httpx logs every request URL, which embeds phone number ids
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: The name for the logger, typically __name__ of the calling module

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)


def log_api_call(
    service: str,
    endpoint: str,
    method: str,
    status_code: int,
    duration_ms: float,
    error_type: str | None = None,
) -> None:
    """
    Log an outbound API call with metadata only (no bodies).

    Args:
        service: API service name (e.g., "whatsapp", "mercadopago")
        endpoint: API endpoint path
        method: HTTP method
        status_code: HTTP response status code (0 when no response)
        duration_ms: Request duration in milliseconds
        error_type: Exception type if the call failed

    Example:
        >>> log_api_call(
        ...     service="mercadopago",
        ...     endpoint="/v1/payments",
        ...     method="POST",
        ...     status_code=201,
        ...     duration_ms=245.5,
        ... )
    """
    extra_data: dict[str, Any] = {
        "service": service,
        "endpoint": endpoint,
        "method": method,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if error_type:
        extra_data["error_type"] = error_type

    get_logger(__name__).info(f"API call to {service}", extra=extra_data)


def filter_pii(metadata: dict[str, Any]) -> dict[str, Any]:
    """
    Drop PII and credential fields from a metadata dict.

    Args:
        metadata: Arbitrary key/value pairs

    Returns:
        A new dict without PII keys or keys that look like secrets
    """
    filtered = {}
    for key, value in metadata.items():
        lowered = key.lower()
        if lowered in PII_FIELDS:
            continue
        if any(substring in lowered for substring in SENSITIVE_SUBSTRINGS):
            continue
        filtered[key] = value
    return filtered


def log_event(event: str, level: str = "INFO", **metadata: Any) -> None:
    """
    Log an event with privacy-compliant metadata.

    Args:
        event: Event description
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        **metadata: Additional metadata (PII fields will be filtered)

    Example:
        >>> log_event("Purchase completed", owner_id=1, product_id=42)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    get_logger(__name__).log(log_level, event, extra=filter_pii(metadata))


def log_error(
    logger: logging.Logger,
    error: Exception,
    context: dict[str, Any],
) -> None:
    """
    Log an error with contextual information and stack trace.

    Args:
        logger: The logger instance to use
        error: The exception that occurred
        context: Additional context (PII fields will be filtered)
    """
    logger.error(
        f"Error occurred: {error}",
        extra={
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": filter_pii(context),
        },
        exc_info=True,
    )
