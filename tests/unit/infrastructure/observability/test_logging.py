"""Tests for structured logging."""

import json
import logging
import sys

import pytest

from soundtrack.infrastructure.observability import (
    configure_logging,
    correlation_scope,
    get_correlation_id,
    log_operation,
    log_slow_operation,
    log_worker_health,
    set_correlation_id,
)
from soundtrack.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CustomJsonFormatter,
    SyncContextFilter,
)


def _record(msg: str = "history_sync.completed", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="soundtrack.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    """Test correlation ID functionality."""

    def test_set_and_get_correlation_id(self) -> None:
        """Test setting and getting correlation ID."""
        result = set_correlation_id("test-123-abc")
        assert result == "test-123-abc"
        assert get_correlation_id() == "test-123-abc"

    def test_set_correlation_id_generates_uuid_when_none(self) -> None:
        """Test that setting None generates a UUID."""
        result = set_correlation_id(None)
        assert len(result) == 36
        assert get_correlation_id() == result

    def test_scope_restores_previous_id(self) -> None:
        """correlation_scope() sets a fresh id and restores the outer one."""
        set_correlation_id("outer")
        with correlation_scope() as inner:
            assert inner != "outer"
            assert get_correlation_id() == inner
        assert get_correlation_id() == "outer"

    def test_scope_with_explicit_id(self) -> None:
        """An explicit id is used as-is."""
        with correlation_scope("cycle-7") as cid:
            assert cid == "cycle-7"

    def test_filter_tags_record_with_sync_ref(self) -> None:
        """SyncContextFilter copies the id, its 8-char ref and the app name onto records."""
        record = _record()
        with correlation_scope("abcdefgh-1234"):
            assert SyncContextFilter("test-app").filter(record) is True
        assert record.correlation_id == "abcdefgh-1234"
        assert record.sync_ref == "abcdefgh"
        assert record.app_name == "test-app"

    def test_filter_outside_a_run(self) -> None:
        """No correlation id -> sync_ref is a dash."""
        set_correlation_id("")
        record = _record()
        SyncContextFilter().filter(record)
        assert record.correlation_id == ""
        assert record.sync_ref == "-"
        assert record.app_name == "soundtrack"


class TestLoggingConfiguration:
    """Test logging configuration."""

    def test_configure_logging_level(self) -> None:
        """Root level follows log_level."""
        configure_logging(log_level="DEBUG", json_format=False, app_name="test-app")
        assert logging.getLogger("test").getEffectiveLevel() == logging.DEBUG
        configure_logging(log_level="INFO", json_format=False, app_name="test-app")
        assert logging.getLogger("test").getEffectiveLevel() == logging.INFO

    def test_configure_logging_replaces_handlers(self) -> None:
        """Calling twice leaves exactly one handler of ours."""
        configure_logging(log_level="INFO", json_format=True)
        configure_logging(log_level="INFO", json_format=True)
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, CustomJsonFormatter)

    def test_noisy_loggers_are_quieted(self) -> None:
        """httpx and friends are raised to WARNING."""
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING


class TestFormatters:
    """Tests for the JSON and compact formatters."""

    def test_json_formatter_fields(self) -> None:
        """JSON output carries level, logger and correlation id plus extras."""
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = _record(correlation_id="cid-1", user_id=42)

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "history_sync.completed"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "soundtrack.test"
        assert payload["correlation_id"] == "cid-1"
        assert payload["user_id"] == 42

    def test_json_formatter_masks_credentials(self) -> None:
        """Tokens passed as extras never reach the log line; text-only fields are dropped."""
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = _record(
            access_token="secret-access",
            refresh_token="secret-refresh",
            app_name="test-app",
            sync_ref="cid-1",
            user_id=7,
        )

        line = formatter.format(record)
        payload = json.loads(line)

        assert payload["access_token"] == "***"
        assert payload["refresh_token"] == "***"
        assert "secret" not in line
        assert payload["app"] == "test-app"
        assert "sync_ref" not in payload
        assert "app_name" not in payload
        assert payload["user_id"] == 7

    def test_compact_formatter_shows_chain_root_cause_first(self) -> None:
        """Cause is printed before the wrapping exception."""
        try:
            try:
                raise ConnectionError("socket closed")
            except ConnectionError as e:
                raise RuntimeError("sync failed") from e
        except RuntimeError:
            text = CompactExceptionFormatter().formatException(sys.exc_info())

        lines = [line for line in text.splitlines() if line.startswith("╰─►")]
        assert lines == [
            "╰─► ConnectionError: socket closed",
            "╰─► RuntimeError: sync failed",
        ]


class TestLoggerTemplate:
    """Tests for log_operation and friends."""

    async def test_log_operation_success(self, caplog: pytest.LogCaptureFixture) -> None:
        """started + completed with duration."""
        logger = logging.getLogger("soundtrack.test.ops")
        with caplog.at_level(logging.INFO, logger="soundtrack.test.ops"):
            async with log_operation(logger, "history_sync", user_id=1):
                pass

        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["history_sync.started", "history_sync.completed"]
        assert caplog.records[1].user_id == 1
        assert caplog.records[1].duration_ms >= 0

    async def test_log_operation_failure_reraises(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """failed is logged and the exception propagates."""
        logger = logging.getLogger("soundtrack.test.ops")
        with caplog.at_level(logging.INFO, logger="soundtrack.test.ops"):
            with pytest.raises(ValueError):
                async with log_operation(logger, "artist_backfill"):
                    raise ValueError("nope")

        failed = caplog.records[-1]
        assert failed.getMessage() == "artist_backfill.failed"
        assert failed.error_type == "ValueError"

    def test_slow_operation_threshold(self, caplog: pytest.LogCaptureFixture) -> None:
        """Only durations above the threshold warn."""
        logger = logging.getLogger("soundtrack.test.slow")
        with caplog.at_level(logging.INFO, logger="soundtrack.test.slow"):
            log_slow_operation(logger, "q", 100, threshold_ms=250)
            log_slow_operation(logger, "q", 300, threshold_ms=250)
        assert len(caplog.records) == 1
        assert caplog.records[0].duration_ms == 300

    def test_worker_health(self, caplog: pytest.LogCaptureFixture) -> None:
        """worker.health carries the counters and extra stats."""
        logger = logging.getLogger("soundtrack.test.health")
        with caplog.at_level(logging.INFO, logger="soundtrack.test.health"):
            log_worker_health(logger, "history_sync", 10, 2, 61.9, {"inserted": 5})
        record = caplog.records[0]
        assert record.worker == "history_sync"
        assert record.uptime_seconds == 61
        assert record.inserted == 5
