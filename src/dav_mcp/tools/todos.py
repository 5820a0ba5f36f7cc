"""Todo tools: VTODO objects stored in task-capable calendars."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import Field, field_validator, model_validator

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

TodoStatus = Literal["NEEDS-ACTION", "IN-PROCESS", "COMPLETED", "CANCELLED"]


class _StatusArgs(ToolArgs):
    @field_validator("status", mode="before", check_fields=False)
    @classmethod
    def _upper_status(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value


class ListTodosArgs(ToolArgs):
    calendar_url: str = Field(description="URL of a calendar that supports VTODO")
    include_completed: bool = False


class CreateTodoArgs(_StatusArgs):
    calendar_url: str = Field(description="URL of a calendar that supports VTODO")
    summary: str = Field(min_length=1)
    due: datetime | None = None
    description: str | None = None
    priority: int | None = Field(default=None, ge=0, le=9, description="1 highest, 9 lowest")
    status: TodoStatus | None = None


class UpdateTodoArgs(_StatusArgs):
    todo_url: str = Field(description="URL of the todo resource")
    summary: str | None = None
    due: datetime | None = None
    description: str | None = None
    priority: int | None = Field(default=None, ge=0, le=9)
    status: TodoStatus | None = None
    etag: str | None = Field(default=None, description="Only update if the ETag still matches")


class DeleteTodoArgs(ToolArgs):
    todo_url: str = Field(description="URL of the todo resource")
    etag: str | None = None


class TodoQueryArgs(_StatusArgs):
    calendar_url: str = Field(description="URL of a calendar that supports VTODO")
    summary: str | None = Field(default=None, description="Substring of the todo title")
    status: TodoStatus | None = None
    due_after: datetime | None = None
    due_before: datetime | None = None

    @model_validator(mode="after")
    def _ordered_range(self) -> TodoQueryArgs:
        if self.due_after and self.due_before and self.due_before < self.due_after:
            raise ValueError("due_before must not be earlier than due_after")
        return self


class TodoMultiGetArgs(ToolArgs):
    calendar_url: str = Field(description="URL of a calendar that supports VTODO")
    todo_urls: list[str] = Field(min_length=1, description="URLs of the todo resources")


def _summaries(objects) -> list[dict]:  # noqa: ANN001
    return [{**object_ref(obj), **ical.summarize_todo(obj.data)} for obj in objects]


def todo_tools(client: DavClient) -> ToolGroup:
    """Build the todo tool group bound to ``client``."""
    group = ToolGroup(ToolCategory.TODOS)

    @group.tool("list_todos", ListTodosArgs, requires_session=False)
    async def list_todos(args: ListTodosArgs) -> dict:
        """List todos in a calendar. Completed todos are hidden unless include_completed is set."""
        objects = await client.fetch_calendar_objects(args.calendar_url, component="VTODO")
        todos = _summaries(objects)
        if not args.include_completed:
            todos = [todo for todo in todos if todo.get("status") != "COMPLETED"]
        return tool_result(todos)

    @group.tool("create_todo", CreateTodoArgs)
    async def create_todo(args: CreateTodoArgs) -> dict:
        """Create a todo in a calendar."""
        uid = ical.new_uid()
        fields = ical.todo_fields(
            summary=args.summary,
            due=args.due,
            description=args.description,
            priority=args.priority,
            status=args.status,
        )
        data = ical.build_calendar_object("VTODO", uid, fields)
        created = await client.create_object(
            args.calendar_url,
            object_filename(uid, ".ics"),
            data,
            content_type=ICALENDAR_CONTENT_TYPE,
        )
        return tool_result({**object_ref(created), "uid": uid})

    @group.tool("update_todo", UpdateTodoArgs)
    async def update_todo(args: UpdateTodoArgs) -> dict:
        """Update fields of an existing todo, e.g. mark it COMPLETED."""
        fields = ical.todo_fields(
            summary=args.summary,
            due=args.due,
            description=args.description,
            priority=args.priority,
            status=args.status,
        )
        require_updates(fields, "todo")

        now = datetime.now(UTC)
        updates: ical.Fields = {**fields, "last-modified": now}
        if args.status == "COMPLETED":
            updates["completed"] = now
        elif args.status is not None:
            updates["completed"] = None

        current = await client.fetch_object(args.todo_url)
        data = ical.update_object(current.data, "VTODO", updates)
        updated = await client.update_object(
            args.todo_url,
            data,
            content_type=ICALENDAR_CONTENT_TYPE,
            etag=args.etag or current.etag,
        )
        return tool_result({**object_ref(updated), **ical.summarize_todo(data)})

    @group.tool("delete_todo", DeleteTodoArgs)
    async def delete_todo(args: DeleteTodoArgs) -> dict:
        """Delete a todo."""
        await client.delete_object(args.todo_url, etag=args.etag)
        return tool_result({"deleted": True, "url": args.todo_url})

    @group.tool("todo_query", TodoQueryArgs)
    async def todo_query(args: TodoQueryArgs) -> dict:
        """Search todos by title text, status and due-date range."""
        prop_filters = {
            name: value
            for name, value in (("SUMMARY", args.summary), ("STATUS", args.status))
            if value
        }
        objects = await client.fetch_calendar_objects(
            args.calendar_url,
            component="VTODO",
            start=args.due_after,
            end=args.due_before,
            prop_filters=prop_filters,
        )
        return tool_result(_summaries(objects))

    @group.tool("todo_multi_get", TodoMultiGetArgs)
    async def todo_multi_get(args: TodoMultiGetArgs) -> dict:
        """Fetch several todos by URL in one request. Unknown URLs are left out."""
        objects = await client.multiget_calendar_objects(args.calendar_url, args.todo_urls)
        return tool_result(_summaries(objects))

    return group
