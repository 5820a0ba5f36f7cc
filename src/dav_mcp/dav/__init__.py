"""Remote calendar/contacts access over CalDAV and CardDAV."""

from dav_mcp.dav.client import DavAddressBook, DavCalendar, DavClient, DavObject, RemoteSession
from dav_mcp.dav.errors import (
    RemoteAuthError,
    RemoteCapabilityError,
    RemoteConnectionError,
    RemoteError,
    RemoteNotConfiguredError,
    RemoteOriginError,
    RemoteRequestError,
    RemoteTokenRefreshError,
)

__all__ = [
    "DavAddressBook",
    "DavCalendar",
    "DavClient",
    "DavObject",
    "RemoteAuthError",
    "RemoteCapabilityError",
    "RemoteConnectionError",
    "RemoteError",
    "RemoteNotConfiguredError",
    "RemoteOriginError",
    "RemoteRequestError",
    "RemoteSession",
    "RemoteTokenRefreshError",
]
