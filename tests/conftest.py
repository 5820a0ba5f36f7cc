"""Shared fixtures: an in-memory CalDAV/CardDAV server behind httpx.MockTransport."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from xml.sax.saxutils import escape

import httpx
import pytest

from dav_mcp.config import (
    CredentialMode,
    LoggingConfig,
    PasswordCredentials,
    ServerConfig,
    ToolCallLogConfig,
)
from dav_mcp.dav.client import DavClient

BASE_URL = "https://dav.example.com/"
PRINCIPAL_PATH = "/principals/alice/"
CALENDAR_HOME = "/calendars/alice/"
CALENDAR_PATH = "/calendars/alice/work/"
ADDRESSBOOK_HOME = "/addressbooks/alice/"
ADDRESSBOOK_PATH = "/addressbooks/alice/contacts/"

_NAMESPACES = (
    'xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav" '
    'xmlns:card="urn:ietf:params:xml:ns:carddav" xmlns:cs="http://calendarserver.org/ns/" '
    'xmlns:ical="http://apple.com/ns/ical/"'
)
_PROP_PREFIXES = {"displayname": "d", "calendar-description": "c", "calendar-color": "ical"}

EVENT_ICS = (
    "BEGIN:VCALENDAR\r\n"
    "VERSION:2.0\r\n"
    "PRODID:-//test//EN\r\n"
    "BEGIN:VEVENT\r\n"
    "UID:standup@example.com\r\n"
    "DTSTAMP:20260101T080000Z\r\n"
    "DTSTART:20260105T090000Z\r\n"
    "DTEND:20260105T091500Z\r\n"
    "SUMMARY:Daily standup\r\n"
    "LOCATION:Room 4\r\n"
    "BEGIN:VALARM\r\n"
    "ACTION:DISPLAY\r\n"
    "SUMMARY:Alarm text\r\n"
    "TRIGGER:-PT5M\r\n"
    "END:VALARM\r\n"
    "END:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)

TODO_ICS = (
    "BEGIN:VCALENDAR\r\n"
    "VERSION:2.0\r\n"
    "PRODID:-//test//EN\r\n"
    "BEGIN:VTODO\r\n"
    "UID:taxes@example.com\r\n"
    "DTSTAMP:20260101T080000Z\r\n"
    "SUMMARY:File taxes\r\n"
    "DUE:20260415T170000Z\r\n"
    "STATUS:NEEDS-ACTION\r\n"
    "PRIORITY:1\r\n"
    "END:VTODO\r\n"
    "END:VCALENDAR\r\n"
)

DONE_TODO_ICS = TODO_ICS.replace("taxes@example.com", "groceries@example.com").replace(
    "SUMMARY:File taxes", "SUMMARY:Buy groceries"
).replace("STATUS:NEEDS-ACTION", "STATUS:COMPLETED")

VCARD = (
    "BEGIN:VCARD\r\n"
    "VERSION:3.0\r\n"
    "UID:ada@example.com\r\n"
    "FN:Ada Lovelace\r\n"
    "N:Lovelace;Ada;;;\r\n"
    "EMAIL;TYPE=INTERNET:ada@example.com\r\n"
    "TEL;TYPE=CELL:+44 20 0000 0000\r\n"
    "ORG:Analytical Engines\r\n"
    "END:VCARD\r\n"
)


def _response(href: str, props: str) -> str:
    return (
        f"<d:response><d:href>{href}</d:href><d:propstat><d:prop>{props}</d:prop>"
        "<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
    )


def multistatus(*responses: str) -> str:
    body = "".join(responses)
    return (
        f'<?xml version="1.0" encoding="utf-8"?><d:multistatus {_NAMESPACES}>'
        f"{body}</d:multistatus>"
    )


@dataclass
class FakeDavServer:
    """Minimal DAV server: discovery, collections, query and multiget REPORTs, GET/PUT/DELETE."""

    objects: dict[str, tuple[str, str]] = field(default_factory=dict)
    extra_calendars: dict[str, str] = field(default_factory=dict)
    rejected_props: set[str] = field(default_factory=set)
    requests: list[httpx.Request] = field(default_factory=list)
    fail_status: int | None = None
    supports_contacts: bool = True
    _etag_counter: int = 0

    def add_object(self, path: str, data: str) -> str:
        etag = self._next_etag()
        self.objects[path] = (etag, data)
        return etag

    def _next_etag(self) -> str:
        self._etag_counter += 1
        return f'"etag-{self._etag_counter}"'

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "server says no"})

        path = request.url.path
        if request.method == "PROPFIND":
            return self._propfind(path)
        if request.method == "REPORT":
            return self._report(path, request.content)
        if request.method == "GET":
            if path not in self.objects:
                return httpx.Response(404)
            etag, data = self.objects[path]
            return httpx.Response(200, text=data, headers={"ETag": etag})
        if request.method == "PUT":
            return self._put(path, request)
        if request.method == "DELETE":
            return self._delete(path)
        if request.method == "MKCALENDAR":
            return self._mkcalendar(path, request.content)
        if request.method == "PROPPATCH":
            return self._proppatch(path, request.content)
        return httpx.Response(405)

    def _propfind(self, path: str) -> httpx.Response:
        if path == "/":
            body = multistatus(
                _response(
                    "/",
                    f"<d:current-user-principal><d:href>{PRINCIPAL_PATH}</d:href>"
                    "</d:current-user-principal>",
                )
            )
        elif path == PRINCIPAL_PATH:
            props = f"<c:calendar-home-set><d:href>{CALENDAR_HOME}</d:href></c:calendar-home-set>"
            if self.supports_contacts:
                props += (
                    f"<card:addressbook-home-set><d:href>{ADDRESSBOOK_HOME}</d:href>"
                    "</card:addressbook-home-set>"
                )
            body = multistatus(_response(PRINCIPAL_PATH, props))
        elif path == CALENDAR_HOME:
            body = multistatus(
                _response(CALENDAR_HOME, "<d:resourcetype><d:collection/></d:resourcetype>"),
                _response(
                    CALENDAR_PATH,
                    "<d:displayname>Work</d:displayname>"
                    "<d:resourcetype><d:collection/><c:calendar/></d:resourcetype>"
                    "<c:supported-calendar-component-set>"
                    '<c:comp name="VEVENT"/><c:comp name="VTODO"/>'
                    "</c:supported-calendar-component-set>"
                    "<cs:getctag>ctag-1</cs:getctag>",
                ),
                *(
                    _response(
                        extra_path,
                        f"<d:displayname>{escape(name)}</d:displayname>"
                        "<d:resourcetype><d:collection/><c:calendar/></d:resourcetype>",
                    )
                    for extra_path, name in self.extra_calendars.items()
                ),
            )
        elif path == ADDRESSBOOK_HOME:
            body = multistatus(
                _response(ADDRESSBOOK_HOME, "<d:resourcetype><d:collection/></d:resourcetype>"),
                _response(
                    ADDRESSBOOK_PATH,
                    "<d:displayname>Contacts</d:displayname>"
                    "<d:resourcetype><d:collection/><card:addressbook/></d:resourcetype>",
                ),
            )
        else:
            return httpx.Response(404)
        return httpx.Response(207, text=body)

    def _report(self, path: str, content: bytes) -> httpx.Response:
        root = ET.fromstring(content)
        if root.tag.endswith("multiget"):
            return self._multiget(root)
        matches = [
            element.text.lower()
            for element in root.iter()
            if element.tag.endswith("text-match") and element.text
        ]
        if root.tag.endswith("addressbook-query"):
            marker, data_tag = "BEGIN:VCARD", "card:address-data"
        else:
            component = "VTODO" if b'name="VTODO"' in content else "VEVENT"
            marker, data_tag = f"BEGIN:{component}", "c:calendar-data"

        responses = []
        for href, (etag, data) in sorted(self.objects.items()):
            if not href.startswith(path) or marker not in data:
                continue
            if matches and not any(match in data.lower() for match in matches):
                continue
            responses.append(
                _response(
                    href,
                    f"<d:getetag>{escape(etag)}</d:getetag>"
                    f"<{data_tag}>{escape(data)}</{data_tag}>",
                )
            )
        return httpx.Response(207, text=multistatus(*responses))

    def _multiget(self, root: ET.Element) -> httpx.Response:
        if root.tag.endswith("addressbook-multiget"):
            data_tag = "card:address-data"
        else:
            data_tag = "c:calendar-data"
        responses = []
        for href_el in root.findall("{DAV:}href"):
            href = href_el.text or ""
            if href not in self.objects:
                responses.append(
                    f"<d:response><d:href>{href}</d:href>"
                    "<d:status>HTTP/1.1 404 Not Found</d:status></d:response>"
                )
                continue
            etag, data = self.objects[href]
            responses.append(
                _response(
                    href,
                    f"<d:getetag>{escape(etag)}</d:getetag>"
                    f"<{data_tag}>{escape(data)}</{data_tag}>",
                )
            )
        return httpx.Response(207, text=multistatus(*responses))

    def _mkcalendar(self, path: str, content: bytes) -> httpx.Response:
        if not path.startswith(CALENDAR_HOME) or path in self.extra_calendars:
            return httpx.Response(405)
        display_name = ET.fromstring(content).find(".//{DAV:}displayname")
        self.extra_calendars[path] = display_name.text if display_name is not None else ""
        return httpx.Response(201)

    def _proppatch(self, path: str, content: bytes) -> httpx.Response:
        if path != CALENDAR_PATH and path not in self.extra_calendars:
            return httpx.Response(404)
        prop = ET.fromstring(content).find(".//{DAV:}prop")
        children = list(prop) if prop is not None else []
        ok, rejected = [], []
        for child in children:
            local = child.tag.rpartition("}")[2]
            if local in self.rejected_props:
                rejected.append(local)
                continue
            ok.append(local)
            if local == "displayname" and path in self.extra_calendars:
                self.extra_calendars[path] = child.text or ""
        body = (
            f"<d:response><d:href>{path}</d:href>"
            "<d:propstat><d:prop>"
            + "".join(f"<{_PROP_PREFIXES[name]}:{name}/>" for name in ok)
            + "</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat>"
            "<d:propstat><d:prop>"
            + "".join(f"<{_PROP_PREFIXES[name]}:{name}/>" for name in rejected)
            + "</d:prop><d:status>HTTP/1.1 403 Forbidden</d:status></d:propstat>"
            "</d:response>"
        )
        return httpx.Response(207, text=multistatus(body))

    def _delete(self, path: str) -> httpx.Response:
        if path.endswith("/"):
            if path != CALENDAR_PATH and path not in self.extra_calendars:
                return httpx.Response(404)
            self.extra_calendars.pop(path, None)
            for href in [href for href in self.objects if href.startswith(path)]:
                del self.objects[href]
            return httpx.Response(204)
        if path not in self.objects:
            return httpx.Response(404)
        del self.objects[path]
        return httpx.Response(204)

    def _put(self, path: str, request: httpx.Request) -> httpx.Response:
        existing = self.objects.get(path)
        if request.headers.get("If-None-Match") == "*" and existing is not None:
            return httpx.Response(412)
        if_match = request.headers.get("If-Match")
        if if_match is not None and (existing is None or existing[0] != if_match):
            return httpx.Response(412)
        etag = self._next_etag()
        self.objects[path] = (etag, request.content.decode("utf-8"))
        return httpx.Response(204 if existing else 201, headers={"ETag": etag})


@pytest.fixture
def fake_dav() -> FakeDavServer:
    server = FakeDavServer()
    server.add_object(f"{CALENDAR_PATH}standup.ics", EVENT_ICS)
    server.add_object(f"{CALENDAR_PATH}taxes.ics", TODO_ICS)
    server.add_object(f"{CALENDAR_PATH}groceries.ics", DONE_TODO_ICS)
    server.add_object(f"{ADDRESSBOOK_PATH}ada.vcf", VCARD)
    return server


@pytest.fixture
def password_credentials() -> PasswordCredentials:
    return PasswordCredentials(server_url=BASE_URL, username="alice", password="s3cret-pw")


@pytest.fixture
async def dav_client(
    fake_dav: FakeDavServer, password_credentials: PasswordCredentials
) -> AsyncIterator[DavClient]:
    http_client = fake_dav.http_client()
    client = DavClient(http_client=http_client)
    await client.initialize(password_credentials)
    yield client
    await client.close()
    await http_client.aclose()


@pytest.fixture
def server_config(tmp_path) -> ServerConfig:
    """Config with no credentials, console-only tool-call logging and no health task."""
    return ServerConfig(
        name="dav-mcp-test",
        version="9.9.9",
        credential_mode=CredentialMode.NONE,
        missing_credentials=["CALDAV_SERVER_URL", "CALDAV_USERNAME", "CALDAV_PASSWORD"],
        logging=LoggingConfig(),
        tool_call_log=ToolCallLogConfig(log_file=str(tmp_path / "tool-calls.jsonl")),
        health_interval_s=0,
        shutdown_grace_s=2,
    )
