"""Tests for structured logging configuration."""

import json
import logging
from unittest.mock import patch

import pytest

from cellrate.app.core.logging import (
    JSONFormatter,
    ContextFilter,
    MaxLevelFilter,
    get_logger,
    get_logging_config,
    get_log_context,
    setup_logging,
)
from cellrate.app.services.gcra import Limit


def _record(msg="Test", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def restore_logging():
    """Undo setup_logging so later tests see default propagation."""
    root = logging.getLogger()
    cellrate = logging.getLogger("cellrate")
    saved = (root.handlers[:], root.level, cellrate.handlers[:], cellrate.level, cellrate.propagate)
    yield
    root.handlers[:], root.level = saved[0], saved[1]
    cellrate.handlers[:], cellrate.level, cellrate.propagate = saved[2], saved[3], saved[4]


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        data = json.loads(JSONFormatter().format(_record("Test message")))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_decision_context(self):
        """Rate limit decision fields are lifted to the top level."""
        record = _record("Rate limited user:1")
        record.key = "user:1"
        record.limit = "10 req/s (burst 10)"
        record.allowed = 0
        record.remaining = 0
        record.retry_after = 0.1
        record.backend = "redis"

        data = json.loads(JSONFormatter().format(record))

        assert data["key"] == "user:1"
        assert data["limit"] == "10 req/s (burst 10)"
        assert data["allowed"] == 0
        assert data["retry_after"] == 0.1
        assert data["backend"] == "redis"
        assert "extra" not in data

    def test_none_context_fields_omitted(self):
        record = _record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "key" not in data
        assert "backend" not in data

    def test_json_format_with_extra_fields(self):
        record = _record("Custom event")
        record.path = "/ping"
        record.attempt = 2

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["path"] == "/ping"
        assert data["extra"]["attempt"] == 2

    def test_json_format_with_exception(self):
        import sys

        try:
            raise ValueError("Test error")
        except ValueError:
            record = _record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        exception_text = "".join(data["exception"])
        assert "ValueError" in exception_text
        assert "Test error" in exception_text


class TestContextFilter:
    """Test context filter for adding default fields."""

    def test_adds_default_fields(self):
        record = _record()

        assert ContextFilter().filter(record) is True
        for field in ("request_id", "key", "limit", "allowed", "remaining",
                      "retry_after", "reset_after", "backend", "duration_ms"):
            assert hasattr(record, field)

    def test_preserves_existing_values(self):
        record = _record()
        record.key = "existing-key"

        ContextFilter().filter(record)

        assert record.key == "existing-key"


class TestGetLoggingConfig:
    """Test logging configuration generation."""

    def test_default_text_format(self):
        with patch("cellrate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            config = get_logging_config()

        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"
        assert "cellrate" in config["loggers"]

    def test_structured_format(self):
        with patch("cellrate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "debug"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert "key=%(key)s" in config["formatters"]["structured"]["format"]

    def test_json_format(self):
        with patch("cellrate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "WARNING"

            config = get_logging_config()

        assert config["formatters"]["json"]["()"] == "cellrate.app.core.logging.JSONFormatter"
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["handlers"]["console"]["level"] == "WARNING"

    def test_context_filter_added(self):
        config = get_logging_config()

        assert "context" in config["filters"]
        assert "context" in config["handlers"]["console"]["filters"]

    def test_errors_go_to_stderr_only(self):
        config = get_logging_config()

        assert "below_error" in config["handlers"]["console"]["filters"]
        assert "below_error" not in config["handlers"]["error_console"]["filters"]
        assert config["filters"]["below_error"]["level"] == "ERROR"


class TestMaxLevelFilter:
    def test_blocks_at_and_above_level(self):
        filter_ = MaxLevelFilter("ERROR")

        assert filter_.filter(_record(level=logging.WARNING)) is True
        assert filter_.filter(_record(level=logging.ERROR)) is False
        assert filter_.filter(_record(level=logging.CRITICAL)) is False


class TestGetLogger:
    def test_get_logger_default_name(self):
        assert get_logger().name == "cellrate"

    def test_get_logger_custom_name(self):
        assert get_logger("custom.module").name == "custom.module"


class TestGetLogContext:
    """Test get_log_context helper function."""

    def test_limit_rendered_as_text(self):
        context = get_log_context(key="user:1", limit=Limit.per_second(5), backend="memory")

        assert context == {
            "key": "user:1",
            "limit": "5 req/s (burst 5)",
            "backend": "memory",
        }

    def test_context_filters_none(self):
        context = get_log_context(key="user:1", backend=None, retry_after=None)

        assert context == {"key": "user:1"}

    def test_context_with_extra(self):
        context = get_log_context(key="user:1", allowed=3, path="/ping")

        assert context["allowed"] == 3
        assert context["path"] == "/ping"


class TestIntegration:
    """Integration tests for logging system."""

    def test_json_logging_output(self, capsys, restore_logging):
        with patch("cellrate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "INFO"

            setup_logging()
            logger = get_logger("cellrate.test")
            logger.info(
                "Rate limited user:1",
                extra=get_log_context(key="user:1", allowed=0, backend="redis"),
            )

        data = json.loads(capsys.readouterr().out.strip())

        assert data["level"] == "INFO"
        assert data["logger"] == "cellrate.test"
        assert data["key"] == "user:1"
        assert data["allowed"] == 0
        assert data["backend"] == "redis"
        assert logging.getLogger("redis").level == logging.WARNING

    def test_error_printed_once(self, capsys, restore_logging):
        with patch("cellrate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            setup_logging()
            get_logger("cellrate.test").error("Rate limit check failed")

        captured = capsys.readouterr()
        assert "Rate limit check failed" not in captured.out
        assert captured.err.count("Rate limit check failed") == 1
