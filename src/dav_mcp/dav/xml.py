"""WebDAV request bodies and multistatus parsing.

Only the subset of RFC 4918 / 4791 / 6352 needed by the client is covered:
PROPFIND, PROPPATCH and MKCALENDAR bodies, query and multiget REPORTs,
and ``207 Multi-Status`` responses.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import UTC, datetime

DAV_NS = "DAV:"
CALDAV_NS = "urn:ietf:params:xml:ns:caldav"
CARDDAV_NS = "urn:ietf:params:xml:ns:carddav"
CALSERVER_NS = "http://calendarserver.org/ns/"
APPLE_ICAL_NS = "http://apple.com/ns/ical/"

ET.register_namespace("d", DAV_NS)
ET.register_namespace("c", CALDAV_NS)
ET.register_namespace("card", CARDDAV_NS)
ET.register_namespace("cs", CALSERVER_NS)
ET.register_namespace("ical", APPLE_ICAL_NS)


def dav(name: str) -> str:
    return f"{{{DAV_NS}}}{name}"


def caldav(name: str) -> str:
    return f"{{{CALDAV_NS}}}{name}"


def carddav(name: str) -> str:
    return f"{{{CARDDAV_NS}}}{name}"


def calserver(name: str) -> str:
    return f"{{{CALSERVER_NS}}}{name}"


def apple_ical(name: str) -> str:
    return f"{{{APPLE_ICAL_NS}}}{name}"


@dataclass
class DavResponse:
    """One ``<d:response>`` entry: its href and the properties found with 200."""

    href: str
    props: dict[str, ET.Element] = field(default_factory=dict)

    def text(self, tag: str) -> str | None:
        element = self.props.get(tag)
        if element is None or element.text is None:
            return None
        value = element.text.strip()
        return value or None

    def hrefs(self, tag: str) -> list[str]:
        element = self.props.get(tag)
        if element is None:
            return []
        return [
            child.text.strip()
            for child in element.iter(dav("href"))
            if child.text and child.text.strip()
        ]

    def resource_types(self) -> set[str]:
        element = self.props.get(dav("resourcetype"))
        if element is None:
            return set()
        return {child.tag for child in element}

    def components(self) -> list[str]:
        element = self.props.get(caldav("supported-calendar-component-set"))
        if element is None:
            return []
        return [comp.get("name", "") for comp in element if comp.get("name")]


def format_utc(value: datetime) -> str:
    """Render a datetime as a CalDAV UTC timestamp (``YYYYMMDDTHHMMSSZ``)."""
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def _serialize(root: ET.Element) -> str:
    return '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(root, encoding="unicode")


def propfind_body(props: list[str]) -> str:
    root = ET.Element(dav("propfind"))
    prop = ET.SubElement(root, dav("prop"))
    for tag in props:
        ET.SubElement(prop, tag)
    return _serialize(root)


def calendar_query_body(
    component: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    prop_filters: dict[str, str] | None = None,
) -> str:
    """Build a ``calendar-query`` REPORT for one component type.

    ``prop_filters`` maps iCalendar property names (e.g. ``SUMMARY``) to a
    case-insensitive substring the property must contain.
    """
    root = ET.Element(caldav("calendar-query"))
    prop = ET.SubElement(root, dav("prop"))
    ET.SubElement(prop, dav("getetag"))
    ET.SubElement(prop, caldav("calendar-data"))

    filter_el = ET.SubElement(root, caldav("filter"))
    calendar_filter = ET.SubElement(filter_el, caldav("comp-filter"), {"name": "VCALENDAR"})
    component_filter = ET.SubElement(calendar_filter, caldav("comp-filter"), {"name": component})

    if start is not None or end is not None:
        attrs = {}
        if start is not None:
            attrs["start"] = format_utc(start)
        if end is not None:
            attrs["end"] = format_utc(end)
        ET.SubElement(component_filter, caldav("time-range"), attrs)

    for name, text in (prop_filters or {}).items():
        prop_filter = ET.SubElement(component_filter, caldav("prop-filter"), {"name": name})
        match = ET.SubElement(
            prop_filter,
            caldav("text-match"),
            {"collation": "i;unicode-casemap", "match-type": "contains"},
        )
        match.text = text

    return _serialize(root)


def addressbook_query_body(prop_filters: dict[str, str] | None = None) -> str:
    """Build an ``addressbook-query`` REPORT, optionally filtered (any-of) by vCard props."""
    root = ET.Element(carddav("addressbook-query"))
    prop = ET.SubElement(root, dav("prop"))
    ET.SubElement(prop, dav("getetag"))
    ET.SubElement(prop, carddav("address-data"))

    filter_el = ET.SubElement(root, carddav("filter"), {"test": "anyof"})
    for name, text in (prop_filters or {}).items():
        prop_filter = ET.SubElement(filter_el, carddav("prop-filter"), {"name": name})
        match = ET.SubElement(
            prop_filter,
            carddav("text-match"),
            {"collation": "i;unicode-casemap", "match-type": "contains"},
        )
        match.text = text

    return _serialize(root)


def _collection_props(
    parent: ET.Element,
    *,
    display_name: str | None,
    description: str | None,
    color: str | None,
    components: list[str] | None = None,
) -> None:
    prop = ET.SubElement(ET.SubElement(parent, dav("set")), dav("prop"))
    for tag, value in (
        (dav("displayname"), display_name),
        (caldav("calendar-description"), description),
        (apple_ical("calendar-color"), color),
    ):
        if value is not None:
            ET.SubElement(prop, tag).text = value
    if components:
        component_set = ET.SubElement(prop, caldav("supported-calendar-component-set"))
        for name in components:
            ET.SubElement(component_set, caldav("comp"), {"name": name})


def mkcalendar_body(
    *,
    display_name: str,
    description: str | None = None,
    color: str | None = None,
    components: list[str] | None = None,
) -> str:
    root = ET.Element(caldav("mkcalendar"))
    _collection_props(
        root,
        display_name=display_name,
        description=description,
        color=color,
        components=components,
    )
    return _serialize(root)


def proppatch_body(
    *,
    display_name: str | None = None,
    description: str | None = None,
    color: str | None = None,
) -> str:
    """Build a PROPPATCH ``propertyupdate`` that sets the given collection properties."""
    root = ET.Element(dav("propertyupdate"))
    _collection_props(root, display_name=display_name, description=description, color=color)
    return _serialize(root)


def _multiget_body(root: ET.Element, data_tag: str, hrefs: list[str]) -> str:
    prop = ET.SubElement(root, dav("prop"))
    ET.SubElement(prop, dav("getetag"))
    ET.SubElement(prop, data_tag)
    for href in hrefs:
        ET.SubElement(root, dav("href")).text = href
    return _serialize(root)


def calendar_multiget_body(hrefs: list[str]) -> str:
    return _multiget_body(ET.Element(caldav("calendar-multiget")), caldav("calendar-data"), hrefs)


def addressbook_multiget_body(hrefs: list[str]) -> str:
    return _multiget_body(
        ET.Element(carddav("addressbook-multiget")), carddav("address-data"), hrefs
    )


def parse_multistatus(body: str | bytes) -> list[DavResponse]:
    """Parse a ``207 Multi-Status`` body into DavResponse entries.

    Properties are only collected from propstat blocks whose status is 200.

    Raises
    ------
    ValueError
        If the body is not well-formed XML.
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise ValueError(f"Invalid multistatus XML: {exc}") from exc

    responses: list[DavResponse] = []
    for response_el in root.iter(dav("response")):
        href_el = response_el.find(dav("href"))
        if href_el is None or not href_el.text:
            continue
        entry = DavResponse(href=href_el.text.strip())
        for propstat in response_el.findall(dav("propstat")):
            status_el = propstat.find(dav("status"))
            status = status_el.text if status_el is not None and status_el.text else ""
            if " 200 " not in f"{status} ":
                continue
            prop_el = propstat.find(dav("prop"))
            if prop_el is None:
                continue
            for child in prop_el:
                entry.props[child.tag] = child
        responses.append(entry)
    return responses
