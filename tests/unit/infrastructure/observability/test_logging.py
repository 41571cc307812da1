"""Tests for structured logging."""

import json
import logging

import pytest

from tasteprint.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CorrelationIdFilter,
    CustomJsonFormatter,
    configure_logging,
    get_correlation_id,
    log_operation,
    set_correlation_id,
)


def _record(msg: str = "hello", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="tasteprint.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestCorrelationId:
    """Test correlation ID functionality."""

    def test_set_and_get_correlation_id(self):
        """Test setting and getting correlation ID."""
        result = set_correlation_id("sync-123")
        assert result == "sync-123"
        assert get_correlation_id() == "sync-123"

    def test_set_correlation_id_generates_uuid_when_none(self):
        """Test that setting None generates a UUID."""
        result = set_correlation_id(None)
        assert len(result) == 36
        assert get_correlation_id() == result

    def test_filter_attaches_correlation_id(self):
        """Every record passing the filter carries the current id."""
        set_correlation_id("abc")
        record = _record()

        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "abc"


class TestFormatters:
    """Test the JSON and compact formatters."""

    def test_json_formatter_includes_correlation_id(self):
        """JSON lines carry level, logger and correlation id."""
        record = _record("synced")
        record.correlation_id = "abc"
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

        data = json.loads(formatter.format(record))

        assert data["message"] == "synced"
        assert data["level"] == "INFO"
        assert data["logger"] == "tasteprint.test"
        assert data["correlation_id"] == "abc"

    def test_compact_formatter_shows_exception_chain_root_first(self):
        """Chained exceptions are listed from root cause to outermost."""
        try:
            try:
                raise ConnectionError("refused")
            except ConnectionError as e:
                raise RuntimeError("sync failed") from e
        except RuntimeError as e:
            exc_info = (type(e), e, e.__traceback__)

        text = CompactExceptionFormatter().formatException(exc_info)

        lines = [line for line in text.splitlines() if line.startswith("╰─►")]
        assert lines == ["╰─► ConnectionError: refused", "╰─► RuntimeError: sync failed"]


class TestLoggingConfiguration:
    """Test logging configuration."""

    def test_configure_logging_debug_level(self):
        """Test configuring logging with DEBUG level."""
        configure_logging(log_level="DEBUG", json_format=False, app_name="test-app")
        assert logging.getLogger("test").getEffectiveLevel() <= logging.DEBUG

    def test_configure_logging_replaces_handlers(self):
        """Calling twice leaves exactly one handler."""
        configure_logging(log_level="INFO", json_format=True)
        configure_logging(log_level="INFO", json_format=True)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CustomJsonFormatter)

    def test_http_loggers_are_quieted(self):
        """httpx request logs stay below WARNING."""
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING


class TestLogOperation:
    """Test the timed operation context manager."""

    async def test_logs_start_and_completion(self, caplog):
        """Successful operations log .started and .completed."""
        logger = logging.getLogger("tasteprint.test.op")
        with caplog.at_level(logging.INFO, logger="tasteprint.test.op"):
            async with log_operation(logger, "profile_sync", user_id="u1"):
                pass

        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["profile_sync.started", "profile_sync.completed"]
        assert caplog.records[1].duration_ms >= 0

    async def test_failure_is_logged_and_reraised(self, caplog):
        """Exceptions are logged as .failed and propagate."""
        logger = logging.getLogger("tasteprint.test.op")
        with caplog.at_level(logging.INFO, logger="tasteprint.test.op"):
            with pytest.raises(ValueError):
                async with log_operation(logger, "profile_sync", user_id="u1"):
                    raise ValueError("boom")

        failed = caplog.records[-1]
        assert failed.getMessage() == "profile_sync.failed"
        assert failed.error_type == "ValueError"
