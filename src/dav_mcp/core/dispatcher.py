"""Request dispatch: JSON-RPC method routing and tool invocation.

The Dispatcher owns the per-invocation lifecycle of a ``tools/call``:
resolve the tool, record the start event, run the handler inside a tool
span, and turn the outcome into exactly one terminal event and one
``ToolOutcome``. No exception escapes ``call_tool``.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

import structlog
from mcp import types
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS

from dav_mcp.core.errors import (
    ErrorCode,
    ToolFailure,
    ToolOutcome,
    ToolSuccess,
    method_not_found,
    translate_error,
)
from dav_mcp.core.registry import ToolRegistry
from dav_mcp.core.telemetry import tool_span
from dav_mcp.core.tool_call_log import ToolCallLogger
from dav_mcp.dav.client import RemoteSession

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"


@dataclass(frozen=True)
class InvocationContext:
    """Per-call metadata; ``request_id`` is generated, not the client's id."""

    request_id: str
    transport: str
    started_at: float

    @classmethod
    def new(cls, transport: str) -> InvocationContext:
        return cls(
            request_id=str(uuid.uuid4()),
            transport=transport,
            started_at=time.monotonic(),
        )

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000


class Dispatcher:
    """Routes inbound JSON-RPC messages to protocol handlers and tools."""

    def __init__(
        self,
        registry: ToolRegistry,
        session: RemoteSession,
        tool_call_logger: ToolCallLogger,
        *,
        server_name: str,
        server_version: str,
        transport_label: str = "stdio",
        development: bool = False,
    ) -> None:
        self._registry = registry
        self._session = session
        self._tool_call_logger = tool_call_logger
        self._server_name = server_name
        self._server_version = server_version
        self._transport_label = transport_label
        self._development = development
        self._tool_list: dict[str, Any] = {
            "tools": [
                tool.to_mcp().model_dump(by_alias=True, mode="json", exclude_none=True)
                for tool in registry.list()
            ]
        }

    # -- JSON-RPC routing ------------------------------------------------------

    async def handle_message(self, message: types.JSONRPCMessage) -> types.JSONRPCMessage | None:
        """Handle one inbound message; returns the response, or None for notifications."""
        root = message.root
        if isinstance(root, types.JSONRPCNotification):
            logger.debug("Notification received: %s", root.method)
            return None
        if isinstance(root, types.JSONRPCResponse | types.JSONRPCError):
            logger.debug("Ignoring inbound %s for id=%s", type(root).__name__, root.id)
            return None

        request: types.JSONRPCRequest = root
        params = request.params or {}

        if request.method == "tools/call":
            return await self._handle_tools_call(request.id, params)
        if request.method == "tools/list":
            return self._result(request.id, self.list_tools())
        if request.method == "initialize":
            return self._result(request.id, self.initialize(params))
        if request.method == "ping":
            return self._result(request.id, {})

        logger.warning("Method not found: %s", request.method)
        return self._error(
            request.id,
            types.ErrorData(
                code=types.METHOD_NOT_FOUND, message=f"Method not found: {request.method}"
            ),
        )

    async def _handle_tools_call(
        self, request_id: types.RequestId, params: dict[str, Any]
    ) -> types.JSONRPCMessage:
        name = params.get("name")
        arguments = params.get("arguments")
        if not isinstance(name, str) or not name:
            return self._invalid_params(request_id, "tools/call requires a string 'name'")
        if arguments is not None and not isinstance(arguments, dict):
            return self._invalid_params(request_id, "tools/call 'arguments' must be an object")

        outcome = await self.call_tool(name, arguments)
        if isinstance(outcome, ToolFailure):
            return self._error(request_id, outcome.to_error_data())
        return self._result(request_id, outcome.payload)

    # -- protocol operations ---------------------------------------------------

    def initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        version = (
            requested
            if requested in SUPPORTED_PROTOCOL_VERSIONS
            else types.LATEST_PROTOCOL_VERSION
        )
        client_info = params.get("clientInfo") or {}
        logger.info(
            "Client initialized: %s %s (protocol %s)",
            client_info.get("name", "unknown"),
            client_info.get("version", ""),
            version,
        )
        result = types.InitializeResult(
            protocolVersion=version,
            capabilities=types.ServerCapabilities(
                tools=types.ToolsCapability(listChanged=False)
            ),
            serverInfo=types.Implementation(name=self._server_name, version=self._server_version),
        )
        return result.model_dump(by_alias=True, mode="json", exclude_none=True)

    def list_tools(self) -> dict[str, Any]:
        """Return the tool catalogue (name, description, inputSchema), built once."""
        return self._tool_list

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolOutcome:
        """Invoke a registered tool and return its outcome. Never raises ``Exception``."""
        arguments = {} if arguments is None else arguments
        context = InvocationContext.new(self._transport_label)

        with structlog.contextvars.bound_contextvars(
            request_id=context.request_id, transport=context.transport
        ):
            tool = self._registry.resolve(name)
            if tool is None:
                logger.error("Unknown tool requested: %s", name)
                return method_not_found(name)

            self._tool_call_logger.log_start(
                name, arguments, request_id=context.request_id, transport=context.transport
            )

            if tool.requires_session and not self._session.initialized:
                logger.warning(
                    "Tool %s needs a remote session but none is initialized; executing anyway",
                    name,
                )

            try:
                with tool_span(name, server_name=self._server_name):
                    result = await tool.handler(arguments)
            except Exception as exc:
                failure = translate_error(exc, development=self._development)
                logger.debug("Tool %s raised %s", name, type(exc).__name__, exc_info=True)
                self._tool_call_logger.log_failure(
                    name,
                    arguments,
                    failure.to_log_dict(),
                    duration_ms=context.elapsed_ms(),
                    request_id=context.request_id,
                    transport=context.transport,
                )
                return failure

            self._tool_call_logger.log_success(
                name,
                arguments,
                result,
                duration_ms=context.elapsed_ms(),
                request_id=context.request_id,
                transport=context.transport,
            )
            return ToolSuccess(payload=result)

    # -- response builders -----------------------------------------------------

    @staticmethod
    def _result(request_id: types.RequestId, result: dict[str, Any]) -> types.JSONRPCMessage:
        return types.JSONRPCMessage(
            types.JSONRPCResponse(jsonrpc=JSONRPC_VERSION, id=request_id, result=result)
        )

    @staticmethod
    def _error(request_id: types.RequestId, error: types.ErrorData) -> types.JSONRPCMessage:
        return types.JSONRPCMessage(
            types.JSONRPCError(jsonrpc=JSONRPC_VERSION, id=request_id, error=error)
        )

    def _invalid_params(self, request_id: types.RequestId, message: str) -> types.JSONRPCMessage:
        logger.warning("Invalid tools/call params: %s", message)
        return self._error(
            request_id, types.ErrorData(code=int(ErrorCode.INVALID_PARAMS), message=message)
        )
