"""Lifecycle events for tool invocations.

Every invocation of a registered tool produces one ``tool_call.start`` record
and one terminal record (``tool_call.success`` or ``tool_call.error``).
Records go to the ``dav_mcp.tool_calls`` logger (console mode), to a JSON
lines file (file mode), or both.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dav_mcp.config import ToolCallLogConfig

logger = logging.getLogger(__name__)
tool_call_logger = logging.getLogger("dav_mcp.tool_calls")

EVENT_START = "tool_call.start"
EVENT_SUCCESS = "tool_call.success"
EVENT_ERROR = "tool_call.error"


def _json_safe(value: Any) -> Any:
    """Return a JSON-safe representation of a logged payload."""
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set):
        return [_json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if hasattr(value, "model_dump"):
        try:
            return _json_safe(value.model_dump(mode="json"))
        except Exception:
            return str(value)
    try:
        json.dumps(value)
        return value
    except TypeError:
        return str(value)


class ToolCallLogger:
    """Emits start/success/error records for each tool invocation."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        mode: str = "console",
        log_file: str | Path | None = None,
    ) -> None:
        self.enabled = enabled
        self.mode = mode
        self.log_file = Path(log_file) if log_file else None

    @classmethod
    def from_config(cls, config: ToolCallLogConfig) -> ToolCallLogger:
        return cls(enabled=config.enabled, mode=config.mode, log_file=config.log_file)

    def describe(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "mode": self.mode,
            "file": str(self.log_file) if self._writes_file else None,
        }

    @property
    def _writes_console(self) -> bool:
        return self.mode in ("console", "both")

    @property
    def _writes_file(self) -> bool:
        return self.mode in ("file", "both") and self.log_file is not None

    def log_start(
        self, tool_name: str, arguments: dict[str, Any], *, request_id: str, transport: str
    ) -> None:
        self._emit(
            EVENT_START,
            logging.INFO,
            tool=tool_name,
            arguments=arguments,
            request_id=request_id,
            transport=transport,
        )

    def log_success(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        result: Any,
        *,
        duration_ms: float,
        request_id: str,
        transport: str,
    ) -> None:
        self._emit(
            EVENT_SUCCESS,
            logging.INFO,
            tool=tool_name,
            arguments=arguments,
            result=result,
            duration_ms=round(duration_ms, 2),
            request_id=request_id,
            transport=transport,
        )

    def log_failure(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        error: dict[str, Any],
        *,
        duration_ms: float,
        request_id: str,
        transport: str,
    ) -> None:
        self._emit(
            EVENT_ERROR,
            logging.ERROR,
            tool=tool_name,
            arguments=arguments,
            error=error,
            duration_ms=round(duration_ms, 2),
            request_id=request_id,
            transport=transport,
        )

    def _emit(self, event: str, level: int, **fields: Any) -> None:
        if not self.enabled:
            return
        record = {
            "event": event,
            "timestamp": datetime.now(UTC).isoformat(),
            **{key: _json_safe(value) for key, value in fields.items()},
        }
        if self._writes_console:
            tool_call_logger.log(
                level,
                "%s tool=%s",
                event,
                record["tool"],
                extra={"tool_call": record},
            )
        if self._writes_file:
            self._append(record)

    def _append(self, record: dict[str, Any]) -> None:
        assert self.log_file is not None
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with self.log_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, default=str) + "\n")
        except OSError:
            logger.warning("Failed to write tool call log to %s", self.log_file, exc_info=True)
