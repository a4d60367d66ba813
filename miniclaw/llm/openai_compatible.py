"""OpenAI-compatible chat completions provider (wire format B).

Works with any ``/chat/completions`` endpoint (OpenAI, DashScope, vLLM,
Ollama...).  The system prompt is an ordinary message; streamed tool calls
arrive as positional fragments that may extend the name or the arguments of
an existing index, and ``data: [DONE]`` terminates the stream.
"""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from miniclaw.llm.base import DeltaSink, LlmProvider, ResponseFormatError
from miniclaw.llm.sse import SSERecord
from miniclaw.types import ChatRequest, ChatResponse, Message, Role, TokenUsage, ToolCall

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def format_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Translate the transcript into chat-completions messages."""
    api_messages: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == Role.ASSISTANT:
            entry: dict[str, Any] = {
                "role": "assistant",
                "content": msg.content or None,
            }
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments},
                    }
                    for tc in msg.tool_calls
                ]
            api_messages.append(entry)
        elif msg.role == Role.TOOL:
            api_messages.append({
                "role": "tool",
                "content": msg.content,
                "tool_call_id": msg.tool_call_id,
            })
        else:
            api_messages.append({"role": str(msg.role), "content": msg.content})
    return api_messages


def _usage(data: Any) -> TokenUsage | None:
    if not isinstance(data, dict):
        return None
    return TokenUsage(
        input_tokens=data.get("prompt_tokens") or 0,
        output_tokens=data.get("completion_tokens") or 0,
    )


@dataclass
class _ToolAccumulator:
    id: str = ""
    name: str = ""
    arguments: str = ""


class OpenAIStreamParser:
    """Accumulates chat-completion chunks into a ChatResponse."""

    def __init__(self, on_delta: DeltaSink | None = None) -> None:
        self._on_delta = on_delta
        self._text: list[str] = []
        self._calls: dict[int, _ToolAccumulator] = {}
        self._usage: TokenUsage | None = None
        self.done = False

    def handle(self, record: SSERecord) -> None:
        payload = record.data.strip()
        if not payload:
            return
        if payload == DONE_SENTINEL:
            self.done = True
            return
        try:
            chunk = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Skipping unparseable stream line: %.200s", payload)
            return
        if not isinstance(chunk, dict):
            return

        choices = chunk.get("choices") or []
        if choices and isinstance(choices[0], dict):
            delta = choices[0].get("delta") or {}
            text = delta.get("content")
            if text:
                self._text.append(text)
                if self._on_delta is not None:
                    self._on_delta(text)
            for fragment in delta.get("tool_calls") or []:
                if not isinstance(fragment, dict):
                    continue
                index = fragment.get("index", 0)
                acc = self._calls.setdefault(index, _ToolAccumulator())
                if fragment.get("id"):
                    acc.id = fragment["id"]
                function = fragment.get("function") or {}
                if function.get("name"):
                    acc.name += function["name"]
                if function.get("arguments"):
                    acc.arguments += function["arguments"]

        usage = _usage(chunk.get("usage"))
        if usage is not None:
            self._usage = usage

    def finish(self) -> ChatResponse:
        tool_calls = [
            ToolCall(id=acc.id, name=acc.name, arguments=acc.arguments)
            for _, acc in sorted(self._calls.items())
        ]
        return ChatResponse(content="".join(self._text), tool_calls=tool_calls, usage=self._usage)


class OpenAICompatibleProvider(LlmProvider):
    name = "OpenAI-compatible"
    default_api_base = "https://api.openai.com/v1"

    def endpoint(self) -> str:
        return f"{self._api_base}/chat/completions"

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, request: ChatRequest, stream: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": format_messages(request.messages),
            "max_tokens": request.max_tokens,
        }
        if request.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
                }
                for t in request.tools
            ]
        if request.enable_search:
            payload["enable_search"] = True
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def parse_response(self, data: Any) -> ChatResponse:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise ResponseFormatError("Empty response from API: no choices returned")

        message = choices[0].get("message") or {}
        tool_calls = [
            ToolCall(
                id=tc.get("id", ""),
                name=(tc.get("function") or {}).get("name", ""),
                arguments=(tc.get("function") or {}).get("arguments", ""),
            )
            for tc in message.get("tool_calls") or []
        ]
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            usage=_usage(data.get("usage")),
        )

    async def stream(self, request: ChatRequest, on_delta: DeltaSink | None = None) -> ChatResponse:
        parser = OpenAIStreamParser(on_delta)
        async with aclosing(self._stream_records(self.build_payload(request, stream=True))) as records:
            async for record in records:
                parser.handle(record)
                if parser.done:
                    break
        return parser.finish()
