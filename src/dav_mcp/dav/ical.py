"""iCalendar (RFC 5545) and vCard (RFC 6350) objects for the tools.

Parsing, text escaping and line folding are done by vobject. This module
maps tool fields onto component properties, writes new objects, and
replaces properties in fetched objects while leaving the rest untouched.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Any

import vobject
from vobject.icalendar import utc

logger = logging.getLogger(__name__)

PRODID = "-//dav-mcp//EN"

# TYPE parameter written with properties the tools set.
_TYPE_PARAMS = {"email": "INTERNET", "tel": "CELL"}

Fields = dict[str, Any]


def new_uid() -> str:
    return f"{uuid.uuid4()}@dav-mcp"


def _present(**values: Any) -> Fields:
    return {name: value for name, value in values.items() if value is not None}


def event_fields(
    *,
    summary: str | None = None,
    start: datetime | date | None = None,
    end: datetime | date | None = None,
    description: str | None = None,
    location: str | None = None,
) -> Fields:
    """VEVENT properties for the fields that are set."""
    return _present(
        summary=summary, dtstart=start, dtend=end, description=description, location=location
    )


def todo_fields(
    *,
    summary: str | None = None,
    due: datetime | date | None = None,
    description: str | None = None,
    priority: int | None = None,
    status: str | None = None,
) -> Fields:
    """VTODO properties for the fields that are set."""
    return _present(
        summary=summary,
        due=due,
        description=description,
        priority=str(priority) if priority is not None else None,
        status=status.upper() if status is not None else None,
    )


def vcard_fields(
    *,
    full_name: str | None = None,
    given_name: str | None = None,
    family_name: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    organization: str | None = None,
    note: str | None = None,
) -> Fields:
    """vCard properties for the fields that are set.

    ``n`` carries only the name parts that were given; the others are kept
    from the existing card when the fields are applied as an update.
    """
    name_parts = _present(family=family_name, given=given_name)
    return _present(
        fn=full_name,
        n=name_parts or None,
        email=email,
        tel=phone,
        org=[organization] if organization is not None else None,
        note=note,
    )


def _merge_name(current: Any, parts: dict[str, str]) -> vobject.vcard.Name:
    if not isinstance(current, vobject.vcard.Name):
        current = vobject.vcard.Name()
    return vobject.vcard.Name(
        family=parts.get("family", current.family),
        given=parts.get("given", current.given),
        additional=current.additional,
        prefix=current.prefix,
        suffix=current.suffix,
    )


def _apply(component: vobject.base.Component, fields: Fields) -> None:
    """Replace every occurrence of each property; ``None`` removes it."""
    for name, value in fields.items():
        key = name.lower().replace("-", "_")
        existing = component.contents.pop(key, [])
        if value is None:
            continue
        if key == "n":
            value = _merge_name(existing[0].value if existing else None, value)
        elif isinstance(value, datetime):
            value = value.replace(tzinfo=utc) if value.tzinfo is None else value.astimezone(utc)
        line = component.add(key)
        line.value = value
        if key in _TYPE_PARAMS:
            line.type_param = _TYPE_PARAMS[key]


def build_calendar_object(component: str, uid: str, fields: Fields) -> str:
    """Serialize a VCALENDAR holding one ``component`` (VEVENT or VTODO)."""
    calendar = vobject.iCalendar()
    calendar.add("prodid").value = PRODID
    item = calendar.add(component.lower())
    item.add("uid").value = uid
    item.add("dtstamp").value = datetime.now(utc)
    _apply(item, fields)
    return calendar.serialize()


def build_vcard(uid: str, fields: Fields) -> str:
    """Serialize a vCard 3.0. N is written empty when no name parts are given."""
    card = vobject.vCard()
    card.add("uid").value = uid
    _apply(card, {"n": {}, **fields})
    return card.serialize()


def _parse(data: str) -> vobject.base.Component:
    try:
        return vobject.readOne(data)
    except (vobject.base.VObjectError, StopIteration) as exc:
        raise ValueError(f"Could not parse calendar or vCard data: {exc}") from exc


def _find(parsed: vobject.base.Component, component: str) -> vobject.base.Component | None:
    if parsed.name.upper() == component:
        return parsed
    children = parsed.contents.get(component.lower())
    return children[0] if children else None


def update_object(data: str, component: str, fields: Fields) -> str:
    """Apply ``fields`` to the first ``component`` in ``data`` and reserialize.

    Raises
    ------
    ValueError
        If ``data`` does not parse or holds no ``component``.
    """
    parsed = _parse(data)
    item = _find(parsed, component)
    if item is None:
        raise ValueError(f"Object does not contain a {component} component")
    _apply(item, fields)
    return parsed.serialize(validate=False)


def _lenient_find(data: str, component: str) -> vobject.base.Component | None:
    try:
        return _find(_parse(data), component)
    except ValueError as exc:
        logger.warning("Skipping unparseable %s data: %s", component, exc)
        return None


def _value(item: vobject.base.Component | None, name: str) -> Any:
    if item is None:
        return None
    return item.getChildValue(name)


def _timestamp(item: vobject.base.Component | None, name: str) -> str | None:
    value = _value(item, name)
    if isinstance(value, date):
        return value.isoformat()
    return value


def summarize_event(data: str) -> dict[str, str | None]:
    event = _lenient_find(data, "VEVENT")
    return {
        "uid": _value(event, "uid"),
        "summary": _value(event, "summary"),
        "start": _timestamp(event, "dtstart"),
        "end": _timestamp(event, "dtend"),
        "location": _value(event, "location"),
        "description": _value(event, "description"),
    }


def summarize_todo(data: str) -> dict[str, str | int | None]:
    todo = _lenient_find(data, "VTODO")
    priority = _value(todo, "priority")
    return {
        "uid": _value(todo, "uid"),
        "summary": _value(todo, "summary"),
        "due": _timestamp(todo, "due"),
        "status": _value(todo, "status"),
        "priority": int(priority) if isinstance(priority, str) and priority.isdigit() else None,
        "description": _value(todo, "description"),
    }


def summarize_vcard(data: str) -> dict[str, str | list[str] | None]:
    card = _lenient_find(data, "VCARD")
    contents = card.contents if card is not None else {}
    org = _value(card, "org")
    if isinstance(org, list):
        org = "; ".join(part for part in org if part) or None
    return {
        "uid": _value(card, "uid"),
        "full_name": _value(card, "fn"),
        "emails": [line.value for line in contents.get("email", [])],
        "phones": [line.value for line in contents.get("tel", [])],
        "organization": org,
        "note": _value(card, "note"),
    }
