"""Helpers shared by the calendar, contacts and todo tool groups."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from dav_mcp.dav.client import DavObject

ICALENDAR_CONTENT_TYPE = "text/calendar; charset=utf-8"
VCARD_CONTENT_TYPE = "text/vcard; charset=utf-8"


class ToolArgs(BaseModel):
    """Base for tool argument models; unknown arguments are rejected.

    Datetimes without an offset are read as UTC so that ranges mixing
    aware and naive values still compare.
    """

    model_config = ConfigDict(extra="forbid")

    @field_validator("*")
    @classmethod
    def _naive_datetimes_are_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


def tool_result(payload: Any) -> dict[str, Any]:
    """Wrap a JSON-serializable payload as MCP text content."""
    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    return {"content": [{"type": "text", "text": text}]}


def object_filename(uid: str, suffix: str) -> str:
    """Resource name for a new object: the UID's local part plus ``suffix``."""
    return f"{uid.partition('@')[0]}{suffix}"


def object_ref(obj: DavObject) -> dict[str, str | None]:
    return {"url": obj.url, "etag": obj.etag}


def require_updates(fields: dict[str, Any], kind: str) -> None:
    if not fields:
        raise ValueError(f"No {kind} fields to update were provided")
