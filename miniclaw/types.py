"""Core data types shared by the agent loop, providers and tools.

Message/ToolCall are plain dataclasses so they can be embedded directly in
the pydantic session schema (storage/sessions.py) without a parallel model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is the raw JSON text exactly as the provider produced it;
    it is only parsed by the tool router.
    """

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ToolDefinition:
    """Model-visible projection of a registered tool."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class Message:
    """A single transcript entry."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None  # only set for Role.TOOL

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> Message:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ChatRequest:
    """One model call: a transcript snapshot plus the active model's settings."""

    model: str
    messages: list[Message]
    tools: list[ToolDefinition] = field(default_factory=list)
    max_tokens: int = 4096
    enable_search: bool | None = None


@dataclass
class ChatResponse:
    """Result of one model call, blocking or accumulated from a stream."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class SessionStats:
    """Cumulative usage for one Agent; updated once per completed model call."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    request_count: int = 0

    def record_usage(self, usage: TokenUsage | None) -> None:
        if usage is not None:
            self.total_input_tokens += usage.input_tokens
            self.total_output_tokens += usage.output_tokens
        self.request_count += 1

    def snapshot(self) -> SessionStats:
        return SessionStats(self.total_input_tokens, self.total_output_tokens, self.request_count)
