"""Tool registry and dispatcher.

Handlers are async callables taking the tool's JSON arguments as keyword
arguments and returning the text that is fed back to the model.  A
handler signals failure by raising ToolError; anything else it raises is
logged and wrapped so a misbehaving tool never takes the loop down.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from miniclaw.types import ToolDefinition

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[str]]


class ToolError(Exception):
    """A tool call failed; the message is shown to the model."""


class UnknownToolError(ToolError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidArgumentsError(ToolError):
    """Arguments are not a JSON object or do not fit the handler."""


@dataclass
class Tool:
    name: str
    handler: ToolHandler
    schema: dict[str, Any]

    @property
    def description(self) -> str:
        return self.schema.get("description", "")

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, input_schema=self.schema)


class ToolRouter:
    """Name-keyed registry; registration order is the order shown to the model."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, name: str, handler: ToolHandler, schema: dict[str, Any]) -> None:
        """Register a tool handler with its JSON schema (description included)."""
        if name in self._tools:
            logger.warning("Tool %s registered twice, replacing previous handler", name)
        self._tools[name] = Tool(name=name, handler=handler, schema=schema)

    def definitions(self, allowed: list[str] | None = None) -> list[ToolDefinition]:
        """Model-visible definitions, optionally limited to an allow-list.

        An empty or missing allow-list means every registered tool.
        """
        return [
            tool.to_definition()
            for tool in self._tools.values()
            if not allowed or tool.name in allowed
        ]

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, name: str, arguments: str) -> str:
        """Run ``name`` with JSON ``arguments``; raises ToolError on failure."""
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)

        try:
            args = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise InvalidArgumentsError(
                f"Invalid JSON arguments for tool '{name}': {arguments}"
            ) from e
        if not isinstance(args, dict):
            raise InvalidArgumentsError(f"Arguments for tool '{name}' must be a JSON object")

        try:
            inspect.signature(tool.handler).bind(**args)
        except TypeError as e:
            raise InvalidArgumentsError(f"Invalid arguments for tool '{name}': {e}") from e

        try:
            return await tool.handler(**args)
        except ToolError:
            raise
        except Exception as e:
            logger.exception("Tool %s crashed", name)
            raise ToolError(f"{type(e).__name__}: {e}") from e
