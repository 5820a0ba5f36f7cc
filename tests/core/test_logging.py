"""Tests for process-wide log setup."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest
import structlog

from dav_mcp.core.logging import (
    add_otel_context,
    configure_logging,
    log_file_path,
    redact_event,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


def _file_lines(path: Path) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


class TestProcessors:
    def test_no_trace_ids_outside_a_span(self):
        result = add_otel_context(None, "info", {"event": "idle"})
        assert "trace_id" not in result

    def test_trace_ids_inside_a_span(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        with provider.get_tracer("test").start_as_current_span("list_events"):
            result = add_otel_context(None, "info", {"event": "fetching"})
        provider.shutdown()
        assert len(result["trace_id"]) == 32
        assert len(result["span_id"]) == 16

    def test_redact_event_scrubs_string_fields_only(self):
        event = {
            "event": "refresh failed client_secret=abc123",
            "exception": "Traceback ... password=hunter2",
            "attempt": 2,
            "_record": "password=left-alone",
        }
        result = redact_event(None, "error", event)
        assert "abc123" not in result["event"]
        assert "hunter2" not in result["exception"]
        assert result["attempt"] == 2
        assert result["_record"] == "password=left-alone"


class TestConfigureLogging:
    def test_console_only_by_default(self):
        configure_logging()
        [handler] = logging.getLogger().handlers
        assert isinstance(handler, logging.StreamHandler)
        assert handler.stream is sys.stderr

    def test_console_renderer_follows_format(self):
        configure_logging(fmt="text")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_reconfiguration_replaces_handlers(self, tmp_path: Path):
        configure_logging(log_root=tmp_path)
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_http_loggers_quiet_unless_debug(self):
        configure_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING

        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.DEBUG


class TestLogFile:
    def test_file_is_named_after_the_server(self, tmp_path: Path):
        configure_logging(log_root=tmp_path / "nested", server_name="dav")
        [file_handler] = [
            h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)
        ]
        assert Path(file_handler.baseFilename) == tmp_path / "nested" / "dav.log"
        assert log_file_path(tmp_path) == tmp_path / "dav-mcp.log"

    def test_stdlib_records_are_json_with_server_key(self, tmp_path: Path):
        configure_logging(fmt="text", log_root=tmp_path, server_name="jsontest")
        logging.getLogger("dav_mcp.test").info("hello %s", "world")

        [line] = _file_lines(tmp_path / "jsontest.log")
        assert line["event"] == "hello world"
        assert line["server"] == "jsontest"
        assert line["level"] == "info"
        assert line["logger"] == "dav_mcp.test"

    def test_structlog_events_share_the_file(self, tmp_path: Path):
        configure_logging(log_root=tmp_path, server_name="dav")
        structlog.get_logger("dav_mcp.test").warning("calendar sync", calendars=3)

        [line] = _file_lines(tmp_path / "dav.log")
        assert line["event"] == "calendar sync"
        assert line["calendars"] == 3
        assert line["server"] == "dav"

    def test_secrets_never_reach_the_file(self, tmp_path: Path):
        configure_logging(log_root=tmp_path, server_name="dav")
        logging.getLogger("dav_mcp.test").warning("login failed password=%s", "hunter2")
        try:
            raise RuntimeError("token refresh failed refresh_token=r-abc")
        except RuntimeError:
            logging.getLogger("dav_mcp.test").exception("Unexpected failure")

        content = (tmp_path / "dav.log").read_text()
        assert "hunter2" not in content
        assert "r-abc" not in content
        assert "[REDACTED]" in content
