"""dav-mcp: CalDAV/CardDAV tools served to a local MCP client over stdio."""

__version__ = "0.1.0"
