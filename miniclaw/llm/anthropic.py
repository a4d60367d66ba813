"""Anthropic Messages API provider (wire format A).

The system prompt travels as a top-level ``system`` field, tool results are
``tool_result`` blocks inside a *user* message, and streamed tool arguments
arrive as ``partial_json`` fragments tagged with a content-block index.
"""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from miniclaw.llm.base import DeltaSink, LlmError, LlmProvider, ResponseFormatError
from miniclaw.llm.sse import SSERecord
from miniclaw.types import ChatRequest, ChatResponse, Message, Role, TokenUsage, ToolCall

logger = logging.getLogger(__name__)

_API_VERSION = "2023-06-01"


def _tool_input(arguments: str) -> dict[str, Any]:
    """Arguments as a JSON object; tool_use.input must be an object."""
    try:
        value = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def format_messages(messages: list[Message]) -> tuple[str | None, list[dict[str, Any]]]:
    """Split a transcript into (system, messages) in Anthropic format.

    Consecutive Tool messages are folded into a single user message so all
    results for one assistant turn travel together.
    """
    system_parts: list[str] = []
    api_messages: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == Role.SYSTEM:
            system_parts.append(msg.content)
        elif msg.role == Role.USER:
            api_messages.append({"role": "user", "content": msg.content})
        elif msg.role == Role.ASSISTANT:
            if not msg.tool_calls:
                if msg.content:
                    api_messages.append({"role": "assistant", "content": msg.content})
                continue
            blocks: list[dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": tc.id,
                    "name": tc.name,
                    "input": _tool_input(tc.arguments),
                })
            api_messages.append({"role": "assistant", "content": blocks})
        elif msg.role == Role.TOOL:
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "",
                "content": msg.content,
            }
            previous = api_messages[-1] if api_messages else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and previous["content"]
                and previous["content"][-1].get("type") == "tool_result"
            ):
                previous["content"].append(block)
            else:
                api_messages.append({"role": "user", "content": [block]})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, api_messages


@dataclass
class _ToolBlock:
    id: str
    name: str
    parts: list[str] = field(default_factory=list)


class AnthropicStreamParser:
    """Accumulates an Anthropic event stream into a ChatResponse.

    Text deltas are forwarded to ``on_delta`` as soon as they are decoded.
    Tool argument fragments are concatenated per block index in arrival
    order and only become a ToolCall in ``finish()``.
    """

    def __init__(self, on_delta: DeltaSink | None = None) -> None:
        self._on_delta = on_delta
        self._text: list[str] = []
        self._blocks: dict[int, _ToolBlock] = {}
        self._input_tokens = 0
        self._output_tokens = 0
        self.stopped = False

    def handle(self, record: SSERecord) -> None:
        try:
            data = json.loads(record.data)
        except json.JSONDecodeError:
            logger.warning("Skipping unparseable stream line: %.200s", record.data)
            return
        if not isinstance(data, dict):
            return

        event_type = record.event or data.get("type", "")

        if event_type == "message_start":
            usage = (data.get("message") or {}).get("usage") or {}
            self._input_tokens = usage.get("input_tokens") or self._input_tokens
            self._output_tokens = usage.get("output_tokens") or self._output_tokens

        elif event_type == "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                index = data.get("index", len(self._blocks))
                self._blocks[index] = _ToolBlock(id=block.get("id", ""), name=block.get("name", ""))

        elif event_type == "content_block_delta":
            delta = data.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                text = delta.get("text", "")
                if text:
                    self._text.append(text)
                    if self._on_delta is not None:
                        self._on_delta(text)
            elif delta_type == "input_json_delta":
                fragment = delta.get("partial_json", "")
                block = self._blocks.get(data.get("index", -1))
                if block is None and self._blocks:
                    block = self._blocks[next(reversed(self._blocks))]
                if block is not None:
                    block.parts.append(fragment)

        elif event_type == "message_delta":
            usage = data.get("usage") or {}
            self._input_tokens = usage.get("input_tokens") or self._input_tokens
            self._output_tokens = usage.get("output_tokens") or self._output_tokens

        elif event_type == "message_stop":
            self.stopped = True

        elif event_type == "error":
            error = data.get("error") or {}
            raise LlmError(
                f"Anthropic stream error: {error.get('type', 'unknown')}: {error.get('message', '')}"
            )

    def finish(self) -> ChatResponse:
        tool_calls = [
            ToolCall(id=block.id, name=block.name, arguments="".join(block.parts))
            for block in self._blocks.values()
        ]
        usage = None
        if self._input_tokens or self._output_tokens:
            usage = TokenUsage(input_tokens=self._input_tokens, output_tokens=self._output_tokens)
        return ChatResponse(content="".join(self._text), tool_calls=tool_calls, usage=usage)


class AnthropicProvider(LlmProvider):
    name = "Anthropic"
    default_api_base = "https://api.anthropic.com"

    def endpoint(self) -> str:
        return f"{self._api_base}/v1/messages"

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }

    def build_payload(self, request: ChatRequest, stream: bool = False) -> dict[str, Any]:
        system, messages = format_messages(request.messages)
        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": messages,
        }
        if system is not None:
            payload["system"] = system
        if request.tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in request.tools
            ]
        if stream:
            payload["stream"] = True
        return payload

    def parse_response(self, data: Any) -> ChatResponse:
        if not isinstance(data, dict) or not isinstance(data.get("content"), list):
            raise ResponseFormatError("Anthropic response has no content blocks")

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in data["content"]:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.get("id", ""),
                    name=block.get("name", ""),
                    arguments=json.dumps(block.get("input") or {}),
                ))

        usage = None
        if data.get("usage"):
            usage = TokenUsage(
                input_tokens=data["usage"].get("input_tokens") or 0,
                output_tokens=data["usage"].get("output_tokens") or 0,
            )
        return ChatResponse(content="".join(text_parts), tool_calls=tool_calls, usage=usage)

    async def stream(self, request: ChatRequest, on_delta: DeltaSink | None = None) -> ChatResponse:
        parser = AnthropicStreamParser(on_delta)
        async with aclosing(self._stream_records(self.build_payload(request, stream=True))) as records:
            async for record in records:
                parser.handle(record)
        return parser.finish()
