"""Tool catalogue: calendar, contacts and todo groups."""

from __future__ import annotations

from dav_mcp.core.registry import ToolRegistry
from dav_mcp.dav.client import DavClient
from dav_mcp.tools._common import tool_result
from dav_mcp.tools.calendar import calendar_tools
from dav_mcp.tools.contacts import contacts_tools
from dav_mcp.tools.todos import todo_tools


def build_registry(client: DavClient) -> ToolRegistry:
    """Register every tool group against ``client`` in catalogue order."""
    return ToolRegistry(
        [
            calendar_tools(client).descriptors(),
            contacts_tools(client).descriptors(),
            todo_tools(client).descriptors(),
        ]
    )


__all__ = ["build_registry", "tool_result"]
