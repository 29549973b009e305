import json
import logging
import sys
from unittest.mock import Mock

import pytest

from core.logging_config import (
    ColoredConsoleFormatter,
    CorrelationFilter,
    StructuredFormatter,
    correlation_id,
    get_logger,
    get_logging_config,
    log_function_call,
    setup_logging,
)


def make_record(level=logging.INFO, msg="Test message", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="/path/to/file.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def corr_id():
    token = correlation_id.set("test-correlation-123")
    yield "test-correlation-123"
    correlation_id.reset(token)


class TestLoggingSetup:
    """Test logging configuration setup."""

    def test_development_uses_colored_console(self):
        """Test logging config for development environment."""
        config = get_logging_config("development", "debug")

        assert config["handlers"]["console"]["formatter"] == "colored_console"
        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert config["loggers"]["repository"]["level"] == "DEBUG"

    def test_production_uses_structured_output(self):
        """Test logging config for production environment."""
        config = get_logging_config("production", "INFO")

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert set(config["loggers"]) >= {"api", "services", "core", "providers", "repository"}

    def test_setup_logging_applies_levels(self):
        setup_logging("test", "WARNING")

        assert logging.getLogger("api").level == logging.WARNING
        handler = logging.getLogger("api").handlers[0]
        assert isinstance(handler.formatter, StructuredFormatter)

    def test_get_logger(self):
        """Test getting a logger instance."""
        logger = get_logger("api.videos")

        assert isinstance(logger, logging.Logger)
        assert logger.name == "api.videos"


class TestCorrelationFilter:
    """Test CorrelationFilter functionality."""

    def test_correlation_filter_adds_correlation_id(self, corr_id):
        """Test that correlation filter adds correlation ID to log records."""
        record = make_record()

        assert CorrelationFilter().filter(record) is True
        assert record.correlation_id == corr_id

    def test_correlation_filter_no_correlation_id(self):
        """Test correlation filter when no correlation ID is set."""
        record = make_record()

        assert CorrelationFilter().filter(record) is True
        assert not hasattr(record, "correlation_id")


class TestStructuredFormatter:
    """Test StructuredFormatter functionality."""

    def test_basic_formatting(self, corr_id):
        """Test basic JSON formatting of log records."""
        log_data = json.loads(StructuredFormatter().format(make_record()))

        assert log_data["timestamp"]
        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "test_logger"
        assert log_data["message"] == "Test message"
        assert log_data["correlation_id"] == corr_id
        assert log_data["module"] == "file"
        assert log_data["line"] == 42

    def test_extra_fields(self):
        """Test JSON formatter with extra fields."""
        record = make_record(level=logging.ERROR, msg="Error occurred")
        record.video_id = "v-1"
        record.operation = "create_video"

        log_data = json.loads(StructuredFormatter().format(record))

        assert log_data["level"] == "ERROR"
        assert "correlation_id" not in log_data
        assert log_data["extra"] == {"video_id": "v-1", "operation": "create_video"}

    def test_exception_formatting(self):
        """Test JSON formatter with exception information."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

        log_data = json.loads(StructuredFormatter().format(record))

        assert log_data["exception"]["type"] == "ValueError"
        assert log_data["exception"]["message"] == "Test exception"
        assert "ValueError: Test exception" in log_data["exception"]["traceback"]


class TestColoredConsoleFormatter:
    """Test ColoredConsoleFormatter functionality."""

    def test_colored_formatter_basic_formatting(self):
        """Test basic colored formatting of log records."""
        record = make_record()
        record.correlation_id = "test-correlation-123"

        formatted = ColoredConsoleFormatter().format(record)

        assert "INFO" in formatted
        assert "test_logger" in formatted
        assert "Test message" in formatted
        assert "[test-correlation-123]" in formatted

    @pytest.mark.parametrize(
        "level", [logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL]
    )
    def test_colored_formatter_different_levels(self, level):
        """Test colored formatter with different log levels."""
        name = logging.getLevelName(level)
        formatted = ColoredConsoleFormatter().format(make_record(level, f"Test {name} message"))

        assert formatted.startswith(ColoredConsoleFormatter.COLORS[name])
        assert f"Test {name} message" in formatted


class TestLogFunctionCallDecorator:
    """Test log_function_call decorator functionality."""

    def test_sync_function_logging(self, mock_logger):
        """Test logging of synchronous function calls."""

        @log_function_call(mock_logger)
        def add(x, y, z=None):
            return x + y

        assert add(1, 2, z="test") == 3
        assert mock_logger.debug.call_count == 2
        assert "Completed add" in mock_logger.debug.call_args[0][0]

    @pytest.mark.asyncio
    async def test_async_function_logging(self, mock_logger):
        """Test logging of asynchronous function calls."""

        @log_function_call(mock_logger)
        async def multiply(x, y):
            return x * y

        assert await multiply(3, 4) == 12
        assert mock_logger.debug.call_count == 2

    @pytest.mark.asyncio
    async def test_async_failure_logged_and_reraised(self, mock_logger):
        @log_function_call(mock_logger)
        async def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await broken()

        message = mock_logger.warning.call_args[0][0]
        assert message == "Failed broken: boom"
        assert mock_logger.warning.call_args[1]["extra"]["success"] is False

    def test_wrapper_preserves_signature(self):
        """Endpoints keep their signature so dependency injection still works."""
        logger = Mock()

        @log_function_call(logger)
        async def handler(video_id: str, limit: int = 10):
            return video_id

        assert handler.__name__ == "handler"
        assert handler.__wrapped__.__annotations__ == {"video_id": str, "limit": int}
