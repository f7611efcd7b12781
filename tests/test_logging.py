"""
Tests for privacy-compliant logging utilities.

Tests verify that:
1. PII is filtered from logs
2. Correlation IDs are propagated correctly
3. Log format is valid JSON
"""

import json
import logging
from decimal import Decimal

from src.storebot.utils.logging import (
    JSONFormatter,
    correlation_id_var,
    filter_pii,
    get_logger,
    log_api_call,
    log_error,
    log_event,
    setup_logging,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg="Test message",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test the JSON formatter for structured logging."""

    def test_json_formatter_basic(self):
        """Test that JSONFormatter produces valid JSON output."""
        log_data = json.loads(JSONFormatter().format(make_record()))

        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "test"
        assert log_data["message"] == "Test message"
        assert "timestamp" in log_data

    def test_json_formatter_with_extra_fields(self):
        """Extra fields are written, non-JSON values fall back to str()."""
        log_data = json.loads(JSONFormatter().format(make_record(owner_id=7, amount=Decimal("49.90"))))

        assert log_data["owner_id"] == 7
        assert log_data["amount"] == "49.90"

    def test_json_formatter_uses_context_correlation_id(self):
        """The correlation id set by the HTTP middleware reaches every record."""
        token = correlation_id_var.set("corr-123")
        try:
            log_data = json.loads(JSONFormatter().format(make_record()))
        finally:
            correlation_id_var.reset(token)

        assert log_data["correlation_id"] == "corr-123"

    def test_explicit_correlation_id_wins(self):
        token = correlation_id_var.set("from-context")
        try:
            log_data = json.loads(JSONFormatter().format(make_record(correlation_id="explicit")))
        finally:
            correlation_id_var.reset(token)

        assert log_data["correlation_id"] == "explicit"

    def test_json_formatter_with_exception(self):
        try:
            raise ValueError("Test error")
        except ValueError:
            import sys

            record = logging.LogRecord(
                name="test",
                level=logging.ERROR,
                pathname="test.py",
                lineno=1,
                msg="Error occurred",
                args=(),
                exc_info=sys.exc_info(),
            )

        log_data = json.loads(JSONFormatter().format(record))

        assert "ValueError: Test error" in log_data["exception"]


class TestLogEvent:
    """Test the log_event function for PII filtering."""

    def test_log_event_filters_pii_fields(self, caplog):
        caplog.set_level(logging.INFO)

        log_event(
            "Purchase completed",
            owner_id=1,
            whatsapp_id="5511988887777",
            customer_name="Maria",
            text="quero comprar",
            status="completed",
        )

        record = caplog.records[0]
        assert not hasattr(record, "whatsapp_id")
        assert not hasattr(record, "customer_name")
        assert not hasattr(record, "text")
        assert record.owner_id == 1
        assert record.status == "completed"

    def test_log_event_filters_sensitive_field_names(self, caplog):
        caplog.set_level(logging.INFO)

        log_event("Credentials loaded", access_token="abc", api_secret="def", smtp_password="ghi", owner_id=2)

        record = caplog.records[0]
        assert not hasattr(record, "access_token")
        assert not hasattr(record, "api_secret")
        assert not hasattr(record, "smtp_password")
        assert record.owner_id == 2

    def test_log_event_respects_log_level(self, caplog):
        caplog.set_level(logging.DEBUG)

        log_event("Debug message", level="DEBUG")
        log_event("Warning message", level="WARNING")

        assert [record.levelname for record in caplog.records] == ["DEBUG", "WARNING"]


class TestLogApiCall:
    """Test the log_api_call function."""

    def test_log_api_call_basic(self, caplog):
        caplog.set_level(logging.INFO)

        log_api_call(service="mercadopago", endpoint="/v1/payments", method="POST", status_code=201, duration_ms=245.567)

        record = caplog.records[0]
        assert record.service == "mercadopago"
        assert record.endpoint == "/v1/payments"
        assert record.status_code == 201
        assert record.duration_ms == 245.57
        assert not hasattr(record, "error_type")

    def test_log_api_call_with_error(self, caplog):
        caplog.set_level(logging.INFO)

        log_api_call(
            service="whatsapp", endpoint="/messages", method="POST", status_code=0, duration_ms=10.0,
            error_type="ConnectError",
        )

        assert caplog.records[0].error_type == "ConnectError"


class TestLogError:
    """Test the log_error helper."""

    def test_log_error_filters_context(self, caplog):
        caplog.set_level(logging.ERROR)
        logger = get_logger("test.errors")

        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            log_error(logger, e, {"owner_id": 3, "sender_id": "5511988887777"})

        record = caplog.records[0]
        assert record.error_type == "RuntimeError"
        assert record.context == {"owner_id": 3}
        assert record.exc_info is not None


class TestSetupLogging:
    """Test the setup_logging function."""

    def test_setup_logging_configures_root_logger(self):
        setup_logging(level="DEBUG")

        root_logger = logging.getLogger()
        assert root_logger.level == logging.DEBUG
        assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_get_logger_returns_logger(self):
        logger = get_logger("test")

        assert isinstance(logger, logging.Logger)
        assert logger.name == "test"


def test_filter_pii_returns_new_dict():
    metadata = {"owner_id": 1, "phone": "5511988887777"}

    filtered = filter_pii(metadata)

    assert filtered == {"owner_id": 1}
    assert metadata == {"owner_id": 1, "phone": "5511988887777"}
