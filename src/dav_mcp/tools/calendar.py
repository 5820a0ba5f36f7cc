"""Calendar tools: calendars and VEVENT objects."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Literal

from pydantic import Field

from dav_mcp.core.registry import ToolCategory, ToolGroup
from dav_mcp.dav import ical
from dav_mcp.dav.client import DavClient
from dav_mcp.tools._common import (
    ICALENDAR_CONTENT_TYPE,
    ToolArgs,
    object_filename,
    object_ref,
    require_updates,
    tool_result,
)


CalendarComponent = Literal["VEVENT", "VTODO", "VJOURNAL"]


class ListCalendarsArgs(ToolArgs):
    pass


class MakeCalendarArgs(ToolArgs):
    display_name: str = Field(min_length=1)
    description: str | None = None
    color: str | None = Field(default=None, description="Hex colour such as #3a87ad")
    components: list[CalendarComponent] = Field(
        default_factory=lambda: ["VEVENT", "VTODO"],
        min_length=1,
        description="Component types the calendar accepts",
    )


class UpdateCalendarArgs(ToolArgs):
    calendar_url: str = Field(description="URL of the calendar collection")
    display_name: str | None = None
    description: str | None = None
    color: str | None = None


class DeleteCalendarArgs(ToolArgs):
    calendar_url: str = Field(description="URL of the calendar collection")


class CalendarMultiGetArgs(ToolArgs):
    calendar_url: str = Field(description="URL of the calendar collection")
    event_urls: list[str] = Field(min_length=1, description="URLs of the event resources")


class ListEventsArgs(ToolArgs):
    calendar_url: str = Field(description="URL of the calendar collection")
    start: datetime | None = Field(default=None, description="Only events ending after this")
    end: datetime | None = Field(default=None, description="Only events starting before this")


class CreateEventArgs(ToolArgs):
    calendar_url: str = Field(description="URL of the calendar collection")
    summary: str = Field(min_length=1)
    start: datetime
    end: datetime | None = Field(
        default=None, description="Defaults to one hour (or one day when all_day) after start"
    )
    all_day: bool = False
    description: str | None = None
    location: str | None = None


class UpdateEventArgs(ToolArgs):
    event_url: str = Field(description="URL of the event resource")
    summary: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False
    description: str | None = None
    location: str | None = None
    etag: str | None = Field(default=None, description="Only update if the ETag still matches")


class DeleteEventArgs(ToolArgs):
    event_url: str = Field(description="URL of the event resource")
    etag: str | None = None


class CalendarQueryArgs(ToolArgs):
    calendar_url: str = Field(description="URL of the calendar collection")
    summary: str | None = Field(default=None, description="Substring of the event title")
    location: str | None = None
    description: str | None = None
    start: datetime | None = None
    end: datetime | None = None


def _as_day(value: datetime | None, all_day: bool) -> datetime | date | None:
    if value is None or not all_day:
        return value
    return value.date()


def _summarize(objects) -> list[dict]:  # noqa: ANN001
    return [{**object_ref(obj), **ical.summarize_event(obj.data)} for obj in objects]


def calendar_tools(client: DavClient) -> ToolGroup:
    """Build the calendar tool group bound to ``client``."""
    group = ToolGroup(ToolCategory.CALENDAR)

    @group.tool("list_calendars", ListCalendarsArgs, requires_session=False)
    async def list_calendars(args: ListCalendarsArgs) -> dict:
        """List the calendars available to the configured account."""
        calendars = await client.fetch_calendars()
        return tool_result([calendar.model_dump() for calendar in calendars])

    @group.tool("list_events", ListEventsArgs)
    async def list_events(args: ListEventsArgs) -> dict:
        """List events in a calendar, optionally limited to a time range."""
        objects = await client.fetch_calendar_objects(
            args.calendar_url, component="VEVENT", start=args.start, end=args.end
        )
        return tool_result(_summarize(objects))

    @group.tool("create_event", CreateEventArgs)
    async def create_event(args: CreateEventArgs) -> dict:
        """Create an event in a calendar."""
        end = args.end
        if end is None:
            end = args.start + (timedelta(days=1) if args.all_day else timedelta(hours=1))
        if end < args.start:
            raise ValueError("Event end must not be before its start")

        uid = ical.new_uid()
        fields = ical.event_fields(
            summary=args.summary,
            start=_as_day(args.start, args.all_day),
            end=_as_day(end, args.all_day),
            description=args.description,
            location=args.location,
        )
        data = ical.build_calendar_object("VEVENT", uid, fields)
        created = await client.create_object(
            args.calendar_url,
            object_filename(uid, ".ics"),
            data,
            content_type=ICALENDAR_CONTENT_TYPE,
        )
        return tool_result({**object_ref(created), "uid": uid})

    @group.tool("update_event", UpdateEventArgs)
    async def update_event(args: UpdateEventArgs) -> dict:
        """Update fields of an existing event. Fields that are not given stay unchanged."""
        fields = ical.event_fields(
            summary=args.summary,
            start=_as_day(args.start, args.all_day),
            end=_as_day(args.end, args.all_day),
            description=args.description,
            location=args.location,
        )
        require_updates(fields, "event")

        current = await client.fetch_object(args.event_url)
        data = ical.update_object(
            current.data, "VEVENT", {**fields, "last-modified": datetime.now(UTC)}
        )
        updated = await client.update_object(
            args.event_url,
            data,
            content_type=ICALENDAR_CONTENT_TYPE,
            etag=args.etag or current.etag,
        )
        return tool_result({**object_ref(updated), **ical.summarize_event(data)})

    @group.tool("delete_event", DeleteEventArgs)
    async def delete_event(args: DeleteEventArgs) -> dict:
        """Delete an event."""
        await client.delete_object(args.event_url, etag=args.etag)
        return tool_result({"deleted": True, "url": args.event_url})

    @group.tool("calendar_query", CalendarQueryArgs)
    async def calendar_query(args: CalendarQueryArgs) -> dict:
        """Search events by title, location or description text and time range."""
        prop_filters = {
            name: value
            for name, value in (
                ("SUMMARY", args.summary),
                ("LOCATION", args.location),
                ("DESCRIPTION", args.description),
            )
            if value
        }
        objects = await client.fetch_calendar_objects(
            args.calendar_url,
            component="VEVENT",
            start=args.start,
            end=args.end,
            prop_filters=prop_filters,
        )
        return tool_result(_summarize(objects))

    @group.tool("make_calendar", MakeCalendarArgs)
    async def make_calendar(args: MakeCalendarArgs) -> dict:
        """Create a new calendar collection in the account's calendar home."""
        calendar = await client.make_calendar(
            object_filename(ical.new_uid(), ""),
            display_name=args.display_name,
            description=args.description,
            color=args.color,
            components=list(args.components),
        )
        return tool_result(calendar.model_dump())

    @group.tool("update_calendar", UpdateCalendarArgs)
    async def update_calendar(args: UpdateCalendarArgs) -> dict:
        """Rename a calendar or change its description or colour."""
        changes = {
            name: value
            for name, value in (
                ("display_name", args.display_name),
                ("description", args.description),
                ("color", args.color),
            )
            if value is not None
        }
        require_updates(changes, "calendar")
        await client.update_calendar(args.calendar_url, **changes)
        return tool_result({"updated": True, "url": args.calendar_url, **changes})

    @group.tool("delete_calendar", DeleteCalendarArgs)
    async def delete_calendar(args: DeleteCalendarArgs) -> dict:
        """Delete a calendar collection together with every event and todo in it."""
        await client.delete_calendar(args.calendar_url)
        return tool_result({"deleted": True, "url": args.calendar_url})

    @group.tool("calendar_multi_get", CalendarMultiGetArgs)
    async def calendar_multi_get(args: CalendarMultiGetArgs) -> dict:
        """Fetch several events by URL in one request. Unknown URLs are left out."""
        objects = await client.multiget_calendar_objects(args.calendar_url, args.event_urls)
        return tool_result(_summarize(objects))

    return group
