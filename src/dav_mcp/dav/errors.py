"""Error variants raised by the CalDAV/CardDAV client.

The dispatcher's error translator categorises failures by these types
rather than by inspecting message text.
"""

from __future__ import annotations

import httpx


class RemoteError(RuntimeError):
    """Base error raised by the remote DAV client."""


class RemoteNotConfiguredError(RemoteError):
    """Raised when a domain operation is used before the session is initialized."""


class RemoteAuthError(RemoteError):
    """Raised when the remote server rejects the configured credentials."""


class RemoteTokenRefreshError(RemoteAuthError):
    """Raised when the OAuth refresh-token exchange fails."""


class RemoteCapabilityError(RemoteError):
    """Raised when the server does not offer the requested DAV capability."""


class RemoteConnectionError(RemoteError):
    """Raised when the server cannot be reached at all."""


class RemoteRequestError(RemoteError):
    """Raised when a DAV request fails with a non-auth HTTP status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"DAV request failed ({status_code}): {message}")


class RemoteOriginError(RemoteError):
    """Raised when a URL points outside the configured DAV server.

    Credentials are only ever attached to requests for the server's own origins.
    """


def response_error_text(response: httpx.Response, *, limit: int = 200) -> str:
    """One-line description of a failed response: its JSON error field or body text."""
    text = response.text
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        detail = payload.get("error_description") or payload.get("error")
        if isinstance(detail, dict):
            detail = detail.get("message")
        if isinstance(detail, str) and detail.strip():
            text = detail
    return " ".join(text.split())[:limit] or f"HTTP {response.status_code} with an empty body"
