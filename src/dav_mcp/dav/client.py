"""CalDAV/CardDAV client facade.

``DavClient`` wraps one authenticated HTTP session to a calendar/contacts
server. It must be initialized with exactly one credential mode (password
or token) before any domain operation; until then every accessor raises
``RemoteNotConfiguredError``.

Credentials are attached only to requests whose origin is the configured
server or one it advertised during discovery (principal, homes and
collections). Any other URL raises ``RemoteOriginError`` before a request
is made.

The session state it owns (``RemoteSession``) is handed by reference to the
dispatcher so the advisory precondition check reads the same object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urljoin, urlsplit

import httpx
from pydantic import BaseModel

from dav_mcp.config import (
    DEFAULT_REQUEST_TIMEOUT_S,
    CredentialMode,
    RemoteCredentials,
    TokenCredentials,
)
from dav_mcp.dav import xml
from dav_mcp.dav.auth import auth_for
from dav_mcp.dav.errors import (
    RemoteAuthError,
    RemoteCapabilityError,
    RemoteConnectionError,
    RemoteNotConfiguredError,
    RemoteOriginError,
    RemoteRequestError,
    response_error_text,
)

logger = logging.getLogger(__name__)

NOT_INITIALIZED_MESSAGE = "CalDAV client not initialized. Call initialize() first."

_DEFAULT_PORTS = {"http": 80, "https": 443}

Origin = tuple[str, str, int | None]


def url_origin(url: str) -> Origin:
    """``(scheme, host, port)`` of ``url`` with the scheme's default port filled in."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    try:
        port = parts.port
    except ValueError as exc:
        raise RemoteOriginError(f"Invalid port in URL {url!r}") from exc
    return scheme, (parts.hostname or "").lower(), port or _DEFAULT_PORTS.get(scheme)


@dataclass
class RemoteSession:
    """Whether a remote session exists and which credential mode created it."""

    initialized: bool = False
    credential_mode: CredentialMode = CredentialMode.NONE


class DavCalendar(BaseModel):
    url: str
    display_name: str | None = None
    description: str | None = None
    color: str | None = None
    ctag: str | None = None
    components: list[str] = []


class DavAddressBook(BaseModel):
    url: str
    display_name: str | None = None
    description: str | None = None
    ctag: str | None = None


class DavObject(BaseModel):
    """A calendar object resource or vCard: its URL, ETag and raw text."""

    url: str
    etag: str | None = None
    data: str = ""


_CALENDAR_PROPS = [
    xml.dav("displayname"),
    xml.dav("resourcetype"),
    xml.caldav("calendar-description"),
    xml.caldav("supported-calendar-component-set"),
    xml.calserver("getctag"),
    xml.apple_ical("calendar-color"),
]

_ADDRESSBOOK_PROPS = [
    xml.dav("displayname"),
    xml.dav("resourcetype"),
    xml.carddav("addressbook-description"),
    xml.calserver("getctag"),
]


class DavClient:
    """Authenticated access to CalDAV calendars/todos and CardDAV address books."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
    ) -> None:
        self.session = RemoteSession()
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._timeout = timeout
        self._credentials: RemoteCredentials | None = None
        self._auth: httpx.Auth | None = None
        self._trusted_origins: set[Origin] = set()
        self._principal_url: str | None = None
        self._calendar_home_url: str | None = None
        self._addressbook_home_url: str | None = None

    # -- lifecycle -----------------------------------------------------------

    async def initialize(self, credentials: RemoteCredentials) -> None:
        """Authenticate and discover the principal's calendar and address-book homes.

        Raises
        ------
        RemoteAuthError
            If the server rejects the credentials or the token refresh fails.
        RemoteRequestError, RemoteConnectionError
            If discovery requests fail.
        """
        if self.session.initialized:
            raise RuntimeError("DavClient is already initialized")

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)

        self._credentials = credentials
        self._auth = auth_for(credentials)
        self._trusted_origins = {url_origin(credentials.server_url)}
        try:
            self._principal_url = await self._discover_principal(credentials.server_url)
            await self._discover_homes(self._principal_url)
        except Exception:
            self._credentials = None
            self._auth = None
            self._trusted_origins = set()
            self._principal_url = None
            self._calendar_home_url = None
            self._addressbook_home_url = None
            raise

        mode = CredentialMode.PASSWORD
        if isinstance(credentials, TokenCredentials):
            mode = CredentialMode.TOKEN
        self.session.initialized = True
        self.session.credential_mode = mode
        logger.info(
            "DAV session initialized (mode=%s, calendars=%s, contacts=%s)",
            mode,
            self.supports_calendars,
            self.supports_contacts,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client when this facade created it."""
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    def describe(self) -> dict[str, Any]:
        """Session summary for health snapshots."""
        return {
            "initialized": self.session.initialized,
            "credential_mode": str(self.session.credential_mode),
            "calendars": self.supports_calendars,
            "contacts": self.supports_contacts,
        }

    # -- capability checks -----------------------------------------------------

    @property
    def supports_calendars(self) -> bool:
        return self._calendar_home_url is not None

    @property
    def supports_contacts(self) -> bool:
        return self._addressbook_home_url is not None

    def _require_session(self) -> None:
        if not self.session.initialized or self._credentials is None:
            raise RemoteNotConfiguredError(NOT_INITIALIZED_MESSAGE)

    def _require_calendar_home(self) -> str:
        self._require_session()
        if self._calendar_home_url is None:
            raise RemoteCapabilityError("Server does not expose a CalDAV calendar home")
        return self._calendar_home_url

    def _require_addressbook_home(self) -> str:
        self._require_session()
        if self._addressbook_home_url is None:
            raise RemoteCapabilityError("Server does not expose a CardDAV address book home")
        return self._addressbook_home_url

    # -- HTTP plumbing ---------------------------------------------------------

    def _absolute(self, href: str) -> str:
        assert self._credentials is not None
        return urljoin(self._credentials.server_url, href)

    def _trusted(self, href: str) -> str:
        """Absolute URL for ``href``, remembered as an origin of the DAV server."""
        url = self._absolute(href)
        self._trusted_origins.add(url_origin(url))
        return url

    def _checked_url(self, url: str) -> str:
        absolute = self._absolute(url)
        if url_origin(absolute) not in self._trusted_origins:
            scheme, host, port = url_origin(absolute)
            raise RemoteOriginError(
                f"Refusing to send credentials to {scheme}://{host}:{port}; "
                "URLs must point at the configured DAV server"
            )
        return absolute

    async def _request(
        self,
        method: str,
        url: str,
        *,
        body: str | None = None,
        content_type: str = "application/xml; charset=utf-8",
        depth: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = self._checked_url(url)
        request_headers = dict(headers or {})
        if body is not None:
            request_headers["Content-Type"] = content_type
        if depth is not None:
            request_headers["Depth"] = depth

        response = await self._send(method, url, body, request_headers)
        if response.status_code == 401:
            raise RemoteAuthError(f"Unauthorized (401) for {method} {url}")
        if response.status_code >= 400:
            raise RemoteRequestError(
                status_code=response.status_code,
                message=response_error_text(response),
            )
        return response

    async def _send(
        self, method: str, url: str, body: str | None, headers: dict[str, str]
    ) -> httpx.Response:
        assert self._http_client is not None
        try:
            return await self._http_client.request(
                method,
                url,
                content=body.encode("utf-8") if body is not None else None,
                headers=headers,
                auth=self._auth,
            )
        except httpx.HTTPError as exc:
            raise RemoteConnectionError(
                f"Could not reach DAV server for {method} {url}: {exc}"
            ) from exc

    @staticmethod
    def _parse(response: httpx.Response) -> list[xml.DavResponse]:
        try:
            return xml.parse_multistatus(response.content)
        except ValueError as exc:
            raise RemoteRequestError(status_code=response.status_code, message=str(exc)) from exc

    async def _multistatus(
        self, method: str, url: str, body: str, *, depth: str
    ) -> list[xml.DavResponse]:
        return self._parse(await self._request(method, url, body=body, depth=depth))

    def _objects(self, entries: list[xml.DavResponse], data_tag: str) -> list[DavObject]:
        return [
            DavObject(
                url=self._absolute(entry.href),
                etag=entry.text(xml.dav("getetag")),
                data=entry.text(data_tag) or "",
            )
            for entry in entries
            if entry.text(data_tag)
        ]

    # -- discovery -------------------------------------------------------------

    async def _discover_principal(self, server_url: str) -> str:
        entries = await self._multistatus(
            "PROPFIND",
            server_url,
            xml.propfind_body([xml.dav("current-user-principal")]),
            depth="0",
        )
        for entry in entries:
            hrefs = entry.hrefs(xml.dav("current-user-principal"))
            if hrefs:
                return self._trusted(hrefs[0])
        logger.debug("No current-user-principal advertised; using server URL as principal")
        return server_url

    async def _discover_homes(self, principal_url: str) -> None:
        entries = await self._multistatus(
            "PROPFIND",
            principal_url,
            xml.propfind_body(
                [xml.caldav("calendar-home-set"), xml.carddav("addressbook-home-set")]
            ),
            depth="0",
        )
        for entry in entries:
            calendar_homes = entry.hrefs(xml.caldav("calendar-home-set"))
            if calendar_homes and self._calendar_home_url is None:
                self._calendar_home_url = self._trusted(calendar_homes[0])
            addressbook_homes = entry.hrefs(xml.carddav("addressbook-home-set"))
            if addressbook_homes and self._addressbook_home_url is None:
                self._addressbook_home_url = self._trusted(addressbook_homes[0])

        if self._calendar_home_url is None and self._addressbook_home_url is None:
            raise RemoteCapabilityError(
                "Server advertises neither a calendar home nor an address book home"
            )

    # -- calendars and todos ---------------------------------------------------

    async def fetch_calendars(self) -> list[DavCalendar]:
        """List calendar collections under the calendar home."""
        home = self._require_calendar_home()
        entries = await self._multistatus(
            "PROPFIND", home, xml.propfind_body(_CALENDAR_PROPS), depth="1"
        )
        calendars: list[DavCalendar] = []
        for entry in entries:
            if xml.caldav("calendar") not in entry.resource_types():
                continue
            calendars.append(
                DavCalendar(
                    url=self._trusted(entry.href),
                    display_name=entry.text(xml.dav("displayname")),
                    description=entry.text(xml.caldav("calendar-description")),
                    color=entry.text(xml.apple_ical("calendar-color")),
                    ctag=entry.text(xml.calserver("getctag")),
                    components=entry.components(),
                )
            )
        return calendars

    async def make_calendar(
        self,
        name: str,
        *,
        display_name: str,
        description: str | None = None,
        color: str | None = None,
        components: list[str] | None = None,
    ) -> DavCalendar:
        """Create a calendar collection called ``name`` under the calendar home."""
        home = self._require_calendar_home()
        url = urljoin(home.rstrip("/") + "/", name.strip("/") + "/")
        body = xml.mkcalendar_body(
            display_name=display_name,
            description=description,
            color=color,
            components=components,
        )
        await self._request("MKCALENDAR", url, body=body)
        return DavCalendar(
            url=url,
            display_name=display_name,
            description=description,
            color=color,
            components=components or [],
        )

    async def update_calendar(
        self,
        calendar_url: str,
        *,
        display_name: str | None = None,
        description: str | None = None,
        color: str | None = None,
    ) -> None:
        """PROPPATCH calendar properties.

        Raises
        ------
        RemoteRequestError
            If the server answers 207 but did not apply every property.
        """
        self._require_calendar_home()
        requested = {
            tag
            for tag, value in (
                (xml.dav("displayname"), display_name),
                (xml.caldav("calendar-description"), description),
                (xml.apple_ical("calendar-color"), color),
            )
            if value is not None
        }
        body = xml.proppatch_body(display_name=display_name, description=description, color=color)
        response = await self._request("PROPPATCH", calendar_url, body=body)
        if response.status_code != 207:
            return
        applied = {tag for entry in self._parse(response) for tag in entry.props}
        rejected = sorted(tag.rpartition("}")[2] for tag in requested - applied)
        if rejected:
            raise RemoteRequestError(
                status_code=response.status_code,
                message=f"Server did not apply: {', '.join(rejected)}",
            )

    async def delete_calendar(self, calendar_url: str) -> None:
        home = self._require_calendar_home()
        if self._absolute(calendar_url).rstrip("/") == home.rstrip("/"):
            raise ValueError("Refusing to delete the calendar home collection")
        await self._request("DELETE", calendar_url)

    async def fetch_calendar_objects(
        self,
        calendar_url: str,
        *,
        component: str = "VEVENT",
        start: datetime | None = None,
        end: datetime | None = None,
        prop_filters: dict[str, str] | None = None,
    ) -> list[DavObject]:
        """Run a calendar-query REPORT and return matching calendar objects."""
        self._require_calendar_home()
        body = xml.calendar_query_body(
            component, start=start, end=end, prop_filters=prop_filters
        )
        entries = await self._multistatus("REPORT", calendar_url, body, depth="1")
        return self._objects(entries, xml.caldav("calendar-data"))

    async def multiget_calendar_objects(
        self, calendar_url: str, object_urls: list[str]
    ) -> list[DavObject]:
        """Fetch several calendar objects in one calendar-multiget REPORT."""
        self._require_calendar_home()
        body = xml.calendar_multiget_body(self._hrefs(object_urls))
        entries = await self._multistatus("REPORT", calendar_url, body, depth="1")
        return self._objects(entries, xml.caldav("calendar-data"))

    def _hrefs(self, urls: list[str]) -> list[str]:
        return [urlsplit(self._checked_url(url)).path for url in urls]

    # -- address books ---------------------------------------------------------

    async def fetch_address_books(self) -> list[DavAddressBook]:
        """List address book collections under the address book home."""
        home = self._require_addressbook_home()
        entries = await self._multistatus(
            "PROPFIND", home, xml.propfind_body(_ADDRESSBOOK_PROPS), depth="1"
        )
        return [
            DavAddressBook(
                url=self._trusted(entry.href),
                display_name=entry.text(xml.dav("displayname")),
                description=entry.text(xml.carddav("addressbook-description")),
                ctag=entry.text(xml.calserver("getctag")),
            )
            for entry in entries
            if xml.carddav("addressbook") in entry.resource_types()
        ]

    async def fetch_vcards(
        self, addressbook_url: str, *, prop_filters: dict[str, str] | None = None
    ) -> list[DavObject]:
        """Run an addressbook-query REPORT and return matching vCards."""
        self._require_addressbook_home()
        body = xml.addressbook_query_body(prop_filters)
        entries = await self._multistatus("REPORT", addressbook_url, body, depth="1")
        return self._objects(entries, xml.carddav("address-data"))

    async def multiget_vcards(self, addressbook_url: str, card_urls: list[str]) -> list[DavObject]:
        """Fetch several vCards in one addressbook-multiget REPORT."""
        self._require_addressbook_home()
        body = xml.addressbook_multiget_body(self._hrefs(card_urls))
        entries = await self._multistatus("REPORT", addressbook_url, body, depth="1")
        return self._objects(entries, xml.carddav("address-data"))

    # -- individual objects ----------------------------------------------------

    async def fetch_object(self, url: str) -> DavObject:
        self._require_session()
        response = await self._request("GET", url)
        return DavObject(url=url, etag=response.headers.get("ETag"), data=response.text)

    async def create_object(
        self, collection_url: str, filename: str, data: str, *, content_type: str
    ) -> DavObject:
        """PUT a new resource; fails with 412 if the name is already taken."""
        self._require_session()
        url = urljoin(collection_url.rstrip("/") + "/", filename)
        response = await self._request(
            "PUT",
            url,
            body=data,
            content_type=content_type,
            headers={"If-None-Match": "*"},
        )
        return DavObject(url=url, etag=response.headers.get("ETag"), data=data)

    async def update_object(
        self, url: str, data: str, *, content_type: str, etag: str | None = None
    ) -> DavObject:
        self._require_session()
        headers = {"If-Match": etag} if etag else {}
        response = await self._request(
            "PUT", url, body=data, content_type=content_type, headers=headers
        )
        return DavObject(url=url, etag=response.headers.get("ETag"), data=data)

    async def delete_object(self, url: str, *, etag: str | None = None) -> None:
        self._require_session()
        headers = {"If-Match": etag} if etag else {}
        await self._request("DELETE", url, headers=headers)
