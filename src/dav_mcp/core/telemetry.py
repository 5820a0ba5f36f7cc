"""OpenTelemetry initialization and the per-tool span wrapper."""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)

_TRACER_NAME = "dav_mcp"

# True once the global TracerProvider has been installed.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str) -> trace.Tracer:
    """Initialize OpenTelemetry tracing.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, installs a TracerProvider with
    an OTLP gRPC exporter (requires the ``otlp`` extra). Otherwise the
    default no-op provider stays in place.

    Args:
        service_name: Value for the ``service.name`` resource attribute.

    Returns:
        A Tracer instance (real or no-op depending on config)
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.debug("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(_TRACER_NAME)

    if _tracer_provider_installed:
        return trace.get_tracer(_TRACER_NAME)

    # Import exporter only when needed
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: endpoint=%s", endpoint)

    return trace.get_tracer(_TRACER_NAME)


def shutdown_telemetry() -> None:
    """Flush and shut down the installed TracerProvider, if any."""
    provider = trace.get_tracer_provider()
    if _tracer_provider_installed and isinstance(provider, TracerProvider):
        provider.shutdown()


class tool_span:
    """Context manager wrapping one tool invocation in a span.

    The span is named ``dav_mcp.tool.<tool_name>`` and carries
    ``dav_mcp.server`` and ``dav_mcp.tool`` attributes. Exceptions are
    recorded on the span and its status set to ERROR before re-raising.

    Usage::

        with tool_span("list_events", server_name="dav-mcp-stdio"):
            ...
    """

    def __init__(self, tool_name: str, *, server_name: str) -> None:
        self._tool_name = tool_name
        self._server_name = server_name
        self._span_name = f"dav_mcp.tool.{tool_name}"
        self._span: trace.Span | None = None
        self._token: object | None = None

    def __enter__(self) -> trace.Span:
        tracer = trace.get_tracer(_TRACER_NAME)
        self._span = tracer.start_span(self._span_name)
        self._span.set_attribute("dav_mcp.server", self._server_name)
        self._span.set_attribute("dav_mcp.tool", self._tool_name)
        self._token = trace.context_api.attach(trace.set_span_in_context(self._span))
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._span is None:
            return
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._span.end()
        if self._token is not None:
            trace.context_api.detach(self._token)
