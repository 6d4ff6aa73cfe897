"""Tests for formatters, context propagation, audit sink and setup."""

import json
import logging
import sys
from datetime import UTC, datetime
from enum import Enum

import pytest

from cloudrelay.auth.models import AuditData, AuditEvent
from cloudrelay.logging import (
    SECURITY_LOGGER_NAME,
    ConsoleFormatter,
    JSONFormatter,
    LogContext,
    LoggingAuditSink,
    OperationContext,
    get_log_context,
    json_serializer,
    log_exception,
    log_with_context,
    parse_log_level,
    setup_logging,
)


def make_record(msg="hello", level=logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("cloudrelay.test", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def formatted(record: logging.LogRecord) -> dict:
    return json.loads(JSONFormatter().format(record))


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    security = logging.getLogger(SECURITY_LOGGER_NAME)
    saved = (root.handlers[:], root.level, security.handlers[:], security.level)
    yield
    for logger, handlers in ((root, saved[0]), (security, saved[2])):
        for handler in logger.handlers[:]:
            if handler not in handlers:
                logger.removeHandler(handler)
                handler.close()
        for handler in handlers:
            if handler not in logger.handlers:
                logger.addHandler(handler)
    root.setLevel(saved[1])
    security.setLevel(saved[3])


class TestJSONFormatter:
    def test_base_fields(self):
        entry = formatted(make_record())
        assert entry["level"] == "INFO"
        assert entry["logger"] == "cloudrelay.test"
        assert entry["message"] == "hello"
        assert entry["ts"].endswith("Z")
        assert "file" not in entry

    def test_error_records_carry_location(self):
        assert "file" in formatted(make_record(level=logging.ERROR))

    def test_tokens_are_redacted(self):
        entry = formatted(make_record(access_token="ya29.secret", refresh_token="1//secret"))
        assert entry["access_token"] == "[REDACTED]"
        assert entry["refresh_token"] == "[REDACTED]"
        assert "secret" not in json.dumps(entry)

    def test_url_query_secrets_are_redacted(self):
        entry = formatted(make_record(url="https://oauth2.example.com/token?code=abc&state=xyz&sig=123"))
        assert entry["url"] == "https://oauth2.example.com/token?code=[REDACTED]&state=xyz&sig=[REDACTED]"

    def test_numeric_fields_are_coerced(self):
        entry = formatted(make_record(attempt="3", delay_seconds="1.5", status_code="not-a-number"))
        assert entry["attempt"] == 3
        assert entry["delay_seconds"] == 1.5
        assert entry["status_code"] is None

    def test_context_is_injected(self):
        with LogContext(user_id="42", provider="google-drive"):
            entry = formatted(make_record())
        assert entry["user_id"] == "42"
        assert entry["provider"] == "google-drive"
        assert "user_id" not in formatted(make_record())

    def test_extras_override_context(self):
        with LogContext(user_id="42"):
            entry = formatted(make_record(user_id="7"))
        assert entry["user_id"] == "7"

    def test_exception_is_serialized(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()
        entry = formatted(record)
        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "boom"
        assert "Traceback" in entry["exception"]["stacktrace"]


class TestJsonSerializer:
    def test_datetime(self):
        assert json_serializer(datetime(2026, 1, 15, tzinfo=UTC)) == "2026-01-15T00:00:00+00:00"

    def test_enum(self):
        class Color(Enum):
            RED = "red"

        assert json_serializer(Color.RED) == "red"

    def test_pydantic_model(self):
        data = AuditData(user_id="42")
        assert json_serializer(data)["user_id"] == "42"


class TestConsoleFormatter:
    def test_tags_and_message(self):
        text = ConsoleFormatter(use_colors=False).format(make_record(provider="amazon-s3", user_id="42"))
        assert "[amazon-s3] [user:42] hello" in text
        assert "\033[" not in text

    def test_colors(self):
        text = ConsoleFormatter(use_colors=True).format(make_record(level=logging.WARNING))
        assert "\033[33mWARNING\033[0m" in text


class TestLogContext:
    def test_context_is_restored(self):
        with LogContext(user_id="1", operation="outer"):
            with LogContext(user_id="2"):
                assert get_log_context()["user_id"] == "2"
                assert get_log_context()["operation"] == "outer"
            assert get_log_context()["user_id"] == "1"
        assert get_log_context()["user_id"] == ""

    def test_operation_context_logs_completion(self, caplog):
        logger = logging.getLogger("cloudrelay.test")
        with caplog.at_level(logging.DEBUG, logger="cloudrelay.test"):
            with OperationContext(logger, "token_refresh", user_id="42") as op:
                op.add_context(records_processed=1)

        record = caplog.records[-1]
        assert record.getMessage() == "Completed: token_refresh"
        assert record.records_processed == 1
        assert record.duration_ms >= 0

    def test_operation_context_logs_failure(self, caplog):
        logger = logging.getLogger("cloudrelay.test")
        with caplog.at_level(logging.DEBUG, logger="cloudrelay.test"):
            with pytest.raises(RuntimeError):
                with OperationContext(logger, "upload"):
                    raise RuntimeError("disk gone")

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.error_type == "RuntimeError"
        assert record.error_message == "disk gone"


class TestUtilities:
    def test_log_with_context_drops_reserved_keys(self, caplog):
        logger = logging.getLogger("cloudrelay.test")
        with caplog.at_level(logging.INFO, logger="cloudrelay.test"):
            log_with_context(logger, logging.INFO, "refreshed", user_id="42", name="ignored")
        record = caplog.records[-1]
        assert record.user_id == "42"
        assert record.name == "cloudrelay.test"

    def test_log_exception_truncates(self, caplog):
        logger = logging.getLogger("cloudrelay.test")
        with caplog.at_level(logging.ERROR, logger="cloudrelay.test"):
            log_exception(logger, ValueError("x" * 600), "failed", include_traceback=False)
        record = caplog.records[-1]
        assert record.error_type == "ValueError"
        assert record.error_message.endswith("...")
        assert len(record.error_message) == 503
        assert record.exc_info is None

    def test_log_exception_keeps_explicit_error_type(self, caplog):
        logger = logging.getLogger("cloudrelay.test")
        with caplog.at_level(logging.ERROR, logger="cloudrelay.test"):
            log_exception(logger, ValueError("bad"), "failed", error_type="network_error")
        assert caplog.records[-1].error_type == "network_error"

    @pytest.mark.parametrize("raw,expected", [("info", logging.INFO), ("DEBUG", logging.DEBUG), (30, 30)])
    def test_parse_log_level(self, raw, expected):
        assert parse_log_level(raw) == expected

    def test_parse_log_level_rejects_unknown(self):
        with pytest.raises(ValueError):
            parse_log_level("loud")


class TestLoggingAuditSink:
    def test_emits_one_record_per_event(self, caplog):
        sink = LoggingAuditSink()
        event = AuditEvent(
            event="token_rotated",
            data=AuditData(user_id="42", ip_address="10.0.0.1"),
        )
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            sink.emit(event)

        [record] = [r for r in caplog.records if r.name == SECURITY_LOGGER_NAME]
        assert record.getMessage() == "token_rotated"
        assert record.event == "token_rotated"
        assert record.ip_address == "10.0.0.1"
        assert record.audit["data"]["user_id"] == "42"

    def test_level_is_configurable(self, caplog):
        sink = LoggingAuditSink(level="warning")
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            sink.emit({"event": "rate_limited", "data": {"user_id": "42"}})
        assert caplog.records[-1].levelno == logging.WARNING


class TestSetupLogging:
    def test_writes_main_and_security_files(self, tmp_path, restore_logging):
        logger = setup_logging(name="relay", log_dir=tmp_path, console_level="warning")
        logger.info("started", extra={"user_id": "42"})
        logging.getLogger(SECURITY_LOGGER_NAME).info("token_rotated", extra={"event": "token_rotated"})
        for handler in logging.getLogger().handlers + logging.getLogger(SECURITY_LOGGER_NAME).handlers:
            handler.flush()

        main_lines = (tmp_path / "relay.log").read_text().splitlines()
        assert any(json.loads(line)["message"] == "started" for line in main_lines)

        security_lines = (tmp_path / "relay_security.log").read_text().splitlines()
        assert [json.loads(line)["event"] for line in security_lines] == ["token_rotated"]

    def test_repeated_setup_does_not_duplicate_handlers(self, restore_logging):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger().handlers) == 1
