"""Tool descriptors, tool groups, and the immutable tool registry.

Each domain (calendar, contacts, todos) contributes a ``ToolGroup``. The
registry concatenates the groups once at startup; duplicate names are a
startup defect and raise immediately.
"""

from __future__ import annotations

import enum
import inspect
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from mcp import types
from pydantic import BaseModel

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class ToolCategory(enum.StrEnum):
    CALENDAR = "calendar"
    CONTACTS = "contacts"
    TODOS = "todos"


class DuplicateToolError(ValueError):
    """Raised when two tool groups register the same tool name."""


@dataclass(frozen=True)
class ToolDescriptor:
    """A named, independently invocable operation.

    Attributes:
        input_model: Pydantic model describing the accepted arguments; the
            protocol-visible ``inputSchema`` is derived from it once.
        requires_session: Whether the tool needs an initialized remote
            session. Only used for the advisory precondition warning.
    """

    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler
    category: ToolCategory
    requires_session: bool = True
    input_schema: dict[str, Any] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "input_schema", self.input_model.model_json_schema())

    def to_mcp(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema,
        )


class ToolGroup:
    """Collects the tools of one domain via the ``tool()`` decorator.

    Usage::

        group = ToolGroup(ToolCategory.CALENDAR)

        @group.tool("list_calendars", ListCalendarsArgs, requires_session=False)
        async def list_calendars(args: ListCalendarsArgs) -> dict:
            \"\"\"List calendars.\"\"\"

    The decorated function receives the validated argument model; its
    docstring becomes the tool description.
    """

    def __init__(self, category: ToolCategory) -> None:
        self.category = category
        self._descriptors: list[ToolDescriptor] = []

    def tool(
        self,
        name: str,
        input_model: type[BaseModel],
        *,
        requires_session: bool = True,
        description: str | None = None,
    ) -> Callable[[Callable[[Any], Awaitable[dict[str, Any]]]], ToolHandler]:
        def decorator(fn: Callable[[Any], Awaitable[dict[str, Any]]]) -> ToolHandler:
            async def handler(arguments: dict[str, Any]) -> dict[str, Any]:
                args = input_model.model_validate(arguments)
                return await fn(args)

            handler.__name__ = fn.__name__
            handler.__doc__ = fn.__doc__
            self._descriptors.append(
                ToolDescriptor(
                    name=name,
                    description=description or inspect.getdoc(fn) or name,
                    input_model=input_model,
                    handler=handler,
                    category=self.category,
                    requires_session=requires_session,
                )
            )
            return handler

        return decorator

    def descriptors(self) -> list[ToolDescriptor]:
        return list(self._descriptors)


class ToolRegistry:
    """Ordered, immutable set of tool descriptors looked up by exact name."""

    def __init__(self, groups: Iterable[Iterable[ToolDescriptor]]) -> None:
        tools: list[ToolDescriptor] = []
        by_name: dict[str, ToolDescriptor] = {}
        for group in groups:
            for tool in group:
                if tool.name in by_name:
                    raise DuplicateToolError(f"Tool {tool.name!r} is registered more than once")
                by_name[tool.name] = tool
                tools.append(tool)
        self._tools = tuple(tools)
        self._by_name = by_name

    def list(self) -> tuple[ToolDescriptor, ...]:
        return self._tools

    def resolve(self, name: str) -> ToolDescriptor | None:
        return self._by_name.get(name)

    def category_counts(self) -> dict[str, int]:
        counts = Counter(str(tool.category) for tool in self._tools)
        return {str(category): counts.get(str(category), 0) for category in ToolCategory}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name
