"""Process-wide log setup.

Every stdlib ``logging`` record and every structlog event is rendered through
the same processor chain. The console always writes to **stderr** because
stdout carries protocol messages. When ``log_root`` is given, the same events
are also appended as JSON lines to ``{log_root}/{server_name}.log``.

Secrets are scrubbed by a processor at the end of the shared chain, so no
handler can render a password, token or client secret.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from opentelemetry import trace

from dav_mcp.core.errors import redact_credentials

DEFAULT_LOG_NAME = "dav-mcp"

# Request lines from these include full URLs; only shown at DEBUG.
_HTTP_LOGGERS = ("httpx", "httpcore")


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Attach ``trace_id`` and ``span_id`` when a span is recording."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def redact_event(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Scrub credential values from every string field of the event."""
    for key, value in event_dict.items():
        if isinstance(value, str) and not key.startswith("_"):
            event_dict[key] = redact_credentials(value)
    return event_dict


def _shared_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt, utc=timestamp_fmt == "iso"),
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.format_exc_info,
        redact_event,
    ]


def _handler(
    handler: logging.Handler,
    renderer: structlog.types.Processor,
    timestamp_fmt: str,
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=_shared_chain(timestamp_fmt),
        )
    )
    return handler


def log_file_path(log_root: Path | str, server_name: str | None = None) -> Path:
    return Path(log_root) / f"{server_name or DEFAULT_LOG_NAME}.log"


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    server_name: str | None = None,
) -> None:
    """Route all logging to stderr, plus an optional JSON log file.

    ``fmt`` selects the console renderer: ``"text"`` (colored when stderr is
    a terminal) or ``"json"``. The file, when enabled, is always JSON.
    ``server_name`` is bound as the ``server`` key on every event and names
    the log file. Calling this again replaces the previous handlers.
    """
    root_level = getattr(logging, level.upper(), logging.INFO)

    if fmt == "json":
        timestamp_fmt = "iso"
        renderer = structlog.processors.JSONRenderer()
    else:
        timestamp_fmt = "%H:%M:%S"
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    console = _handler(logging.StreamHandler(sys.stderr), renderer, timestamp_fmt)

    root = logging.getLogger()
    for existing in root.handlers:
        existing.close()
    root.handlers = [console]
    root.setLevel(root_level)

    if log_root is not None:
        path = log_file_path(log_root, server_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(
            _handler(logging.FileHandler(path), structlog.processors.JSONRenderer(), "iso")
        )

    http_level = logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)

    structlog.contextvars.clear_contextvars()
    if server_name:
        structlog.contextvars.bind_contextvars(server=server_name)

    structlog.configure(
        processors=[
            *_shared_chain(timestamp_fmt),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
