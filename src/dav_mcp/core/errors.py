"""Tool outcomes, protocol error codes, and failure translation.

``translate_error`` turns any exception raised by a tool handler into a
``ToolFailure`` carrying a protocol error code and a user-safe message.
Categorisation is by exception type: the DAV client raises explicit
variants for configuration and authentication problems.
"""

from __future__ import annotations

import enum
import re
import traceback
from dataclasses import dataclass
from typing import Any, Literal

from mcp import types
from pydantic import ValidationError

from dav_mcp.dav.errors import RemoteAuthError, RemoteNotConfiguredError, RemoteOriginError

REMOTE_NOT_CONFIGURED_MESSAGE = (
    "CalDAV connection not configured. Please set CALDAV_SERVER_URL, CALDAV_USERNAME, "
    "CALDAV_PASSWORD environment variables (or the GOOGLE_* variables with AUTH_METHOD=OAuth)."
)
AUTH_FAILED_MESSAGE = "Authentication failed. Please check your CalDAV credentials."

_MAX_MESSAGE_LENGTH = 500


class ErrorCode(enum.IntEnum):
    """JSON-RPC error codes returned to the client."""

    METHOD_NOT_FOUND = types.METHOD_NOT_FOUND
    INVALID_PARAMS = types.INVALID_PARAMS
    INTERNAL = types.INTERNAL_ERROR
    REMOTE_NOT_CONFIGURED = -32001
    AUTH_FAILED = -32002


@dataclass(frozen=True)
class ToolSuccess:
    payload: dict[str, Any]
    kind: Literal["success"] = "success"


@dataclass(frozen=True)
class ToolFailure:
    """A failed invocation: code, user-facing message, optional development detail."""

    code: ErrorCode
    message: str
    detail: dict[str, Any] | None = None
    kind: Literal["failure"] = "failure"

    def to_error_data(self) -> types.ErrorData:
        return types.ErrorData(code=int(self.code), message=self.message, data=self.detail)

    def to_log_dict(self) -> dict[str, Any]:
        return {"code": self.code.name, "message": self.message}


ToolOutcome = ToolSuccess | ToolFailure


def redact_credentials(message: str) -> str:
    """Redact password/token/secret values from a free-form message."""
    redacted = re.sub(
        r"(?i)\b(password|client_secret|refresh_token|access_token|token|secret)"
        r"\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        message,
    )
    redacted = re.sub(
        r"""(?i)(['"]?(?:password|client_secret|refresh_token|access_token|token|secret)"""
        r"""['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    redacted = re.sub(r"(?i)\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+", r"\1 [REDACTED]", redacted)
    # user:password@host in URLs
    redacted = re.sub(r"(://[^/\s:@]+):[^/\s@]+@", r"\1:[REDACTED]@", redacted)
    return redacted


def _sanitize(message: str) -> str:
    return " ".join(redact_credentials(message).split())[:_MAX_MESSAGE_LENGTH]


def _development_detail(exc: BaseException) -> dict[str, Any]:
    return {
        "type": type(exc).__name__,
        "message": _sanitize(str(exc)),
        "traceback": redact_credentials("".join(traceback.format_exception(exc))),
    }


def _validation_message(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors()[:5]:
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "Invalid arguments: " + "; ".join(problems)


def method_not_found(tool_name: str) -> ToolFailure:
    """Failure for a tool name that is not in the registry."""
    return ToolFailure(code=ErrorCode.METHOD_NOT_FOUND, message=f"Unknown tool: {tool_name}")


def translate_error(exc: BaseException, *, development: bool = False) -> ToolFailure:
    """Map a tool-handler exception to a ToolFailure.

    Priority order: remote not configured, remote auth failure, invalid
    arguments (including URLs outside the configured server), everything
    else (``INTERNAL``). Never raises.
    """
    try:
        if isinstance(exc, RemoteNotConfiguredError):
            code, message = ErrorCode.REMOTE_NOT_CONFIGURED, REMOTE_NOT_CONFIGURED_MESSAGE
        elif isinstance(exc, RemoteAuthError):
            code, message = ErrorCode.AUTH_FAILED, AUTH_FAILED_MESSAGE
        elif isinstance(exc, ValidationError):
            code, message = ErrorCode.INVALID_PARAMS, _validation_message(exc)
        elif isinstance(exc, RemoteOriginError):
            code, message = ErrorCode.INVALID_PARAMS, _sanitize(str(exc))
        else:
            code, message = ErrorCode.INTERNAL, _sanitize(str(exc)) or type(exc).__name__
        detail = _development_detail(exc) if development else None
        return ToolFailure(code=code, message=message, detail=detail)
    except Exception:
        try:
            message = _sanitize(_safe_str(exc))
        except Exception:
            message = ""
        return ToolFailure(code=ErrorCode.INTERNAL, message=message or type(exc).__name__)


def _safe_str(exc: BaseException) -> str:
    try:
        return str(exc)
    except Exception:
        return ""
