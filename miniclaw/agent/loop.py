"""Agent loop -- the multi-turn tool-calling state machine.

Per iteration: compact the transcript, call the model (streaming deltas out
as they arrive), then either finish with the text answer or run each
requested tool in order and go round again.  Dangerous tool calls wait on a
ConfirmationGate; with no gate they are denied.

Only LlmError escapes a turn.  Tool failures, denials and the iteration cap
are recorded in the transcript as ordinary data.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from pathlib import Path

from miniclaw.agent.compaction import compact, estimate_context_tokens
from miniclaw.agent.events import (
    CONFIRM,
    DELTA,
    DONE,
    ERROR,
    TOOL_END,
    TOOL_START,
    AgentEvent,
    ConfirmationGate,
)
from miniclaw.config import ConfigError, ModelEntry, Settings
from miniclaw.llm import LlmError, LlmProvider, create_provider
from miniclaw.rules import build_system_prompt
from miniclaw.storage.usage import UsageLedger
from miniclaw.tools.builtin import create_default_router
from miniclaw.tools.risk import RiskLevel, classify, describe_tool_call
from miniclaw.tools.router import ToolError, ToolRouter
from miniclaw.types import ChatRequest, ChatResponse, Message, Role, SessionStats, ToolCall

logger = logging.getLogger(__name__)

CANCELLED_RESULT = "Tool call was cancelled before it could run."


def _denied(call: ToolCall) -> str:
    return f"Tool call '{call.name}' was denied by the user."


class Agent:
    """Owns one conversation: transcript, tool router and active provider.

    Not safe for concurrent turns; callers serialize access per agent
    (see AgentRunner).
    """

    def __init__(
        self,
        provider: LlmProvider,
        router: ToolRouter,
        model: ModelEntry,
        *,
        system_prompt: str,
        max_iterations: int = 20,
        confirm_timeout: float | None = None,
        usage: UsageLedger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._provider = provider
        self._router = router
        self._model = model
        self._max_iterations = max_iterations
        self._confirm_timeout = confirm_timeout
        self._usage = usage
        self._settings = settings
        self._messages: list[Message] = [Message.system(system_prompt)]
        self._stats = SessionStats()

    @classmethod
    def create(
        cls,
        settings: Settings,
        model_id: str | None = None,
        *,
        router: ToolRouter | None = None,
        usage: UsageLedger | None = None,
    ) -> Agent:
        """Build an agent from settings.  Raises ConfigError for a bad model or key."""
        model_id = model_id or settings.default_model_id()
        entry, provider = _resolve_provider(settings, model_id)
        system_prompt = build_system_prompt(
            settings.system_prompt, Path(settings.project_root).expanduser()
        )
        logger.info("Agent created with model %s (%s)", entry.id, entry.provider)
        return cls(
            provider,
            router or create_default_router(settings),
            entry,
            system_prompt=system_prompt,
            max_iterations=settings.max_iterations,
            confirm_timeout=settings.confirm_timeout,
            usage=usage,
            settings=settings,
        )

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------

    @property
    def model(self) -> ModelEntry:
        return self._model

    @property
    def model_id(self) -> str:
        return self._model.id

    @property
    def context_window(self) -> int:
        return self._model.context_window

    async def switch_model(self, model_id: str) -> None:
        """Replace the provider; transcript and tools are kept."""
        if self._settings is None:
            raise ConfigError("Agent has no settings to resolve models from")
        entry, provider = _resolve_provider(self._settings, model_id)
        await self.set_provider(provider, entry)

    async def set_provider(self, provider: LlmProvider, model: ModelEntry) -> None:
        old = self._provider
        self._provider = provider
        self._model = model
        if old is not provider:
            await old.close()
        logger.info("Switched model to %s", model.id)

    async def close(self) -> None:
        await self._provider.close()

    # ------------------------------------------------------------------
    # Transcript and stats
    # ------------------------------------------------------------------

    def history(self) -> list[Message]:
        """Copy of the transcript; safe to read while a turn is running."""
        return copy.deepcopy(self._messages)

    def set_messages(self, messages: list[Message]) -> None:
        """Replace the transcript (session restore).

        A transcript without a leading system message keeps the current one.
        """
        messages = list(messages)
        if not messages or messages[0].role != Role.SYSTEM:
            messages.insert(0, self._messages[0])
        self._messages = messages

    def clear_history(self) -> None:
        del self._messages[1:]

    @property
    def stats(self) -> SessionStats:
        return self._stats.snapshot()

    def restore_stats(self, stats: SessionStats) -> None:
        self._stats = stats.snapshot()

    def estimate_context_tokens(self) -> int:
        return estimate_context_tokens(self._messages)

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def process(self, user_input: str) -> str:
        """Run a turn with no listener attached and return the final text."""
        final = ""
        async with aclosing(self.stream(user_input)) as events:
            async for event in events:
                if event.type == DONE:
                    final = event.text
        return final

    async def stream(
        self, user_input: str, gate: ConfirmationGate | None = None
    ) -> AsyncIterator[AgentEvent]:
        """Run a turn, yielding progress events; the last one is ``done``."""
        self._messages.append(Message.user(user_input))

        for iteration in range(1, self._max_iterations + 1):
            dropped = compact(self._messages, self._model.context_window)
            if dropped:
                logger.info("Context compaction dropped %d messages", dropped)

            request = self._build_request()
            logger.debug(
                "Iteration %d: %d messages, %d tools, model %s",
                iteration,
                len(request.messages),
                len(request.tools),
                request.model,
            )

            queue: asyncio.Queue[str | None] = asyncio.Queue()
            task = asyncio.create_task(self._provider.stream(request, queue.put_nowait))
            task.add_done_callback(lambda _, q=queue: q.put_nowait(None))
            try:
                while (delta := await queue.get()) is not None:
                    yield AgentEvent(type=DELTA, text=delta)
                response: ChatResponse = await task
            except LlmError as e:
                logger.error("Model call failed: %s", e)
                yield AgentEvent(type=ERROR, text=str(e))
                raise
            finally:
                if not task.done():
                    task.cancel()

            self._stats.record_usage(response.usage)
            if self._usage is not None:
                await self._usage.record(response.usage)

            if not response.has_tool_calls:
                self._messages.append(Message.assistant(response.content))
                yield AgentEvent(type=DONE, text=response.content)
                return

            self._messages.append(Message.assistant(response.content, response.tool_calls))
            async with aclosing(self._run_tool_calls(response.tool_calls, gate)) as events:
                async for event in events:
                    yield event

        message = f"[Agent stopped: reached maximum of {self._max_iterations} iterations]"
        logger.warning("Iteration cap reached (%d)", self._max_iterations)
        yield AgentEvent(type=DONE, text=message)

    async def _run_tool_calls(
        self, calls: list[ToolCall], gate: ConfirmationGate | None
    ) -> AsyncIterator[AgentEvent]:
        """Execute calls sequentially, appending exactly one result per call.

        Each result is appended before the matching event is yielded; if the
        consumer goes away, unanswered calls get a cancellation result.
        """
        pending = list(calls)
        try:
            while pending:
                call = pending[0]

                if classify(call.name, call.arguments) == RiskLevel.DANGEROUS:
                    approved = False
                    if gate is not None:
                        request_id = gate.open(call.id)
                        try:
                            yield AgentEvent(
                                type=CONFIRM,
                                tool_name=call.name,
                                arguments=call.arguments,
                                description=describe_tool_call(call.name, call.arguments),
                                request_id=request_id,
                            )
                            approved = await gate.wait(request_id, self._confirm_timeout)
                        finally:
                            gate.discard(request_id)
                    if not approved:
                        logger.warning("Tool call %s denied", call.name)
                        self._messages.append(Message.tool_result(call.id, _denied(call)))
                        pending.pop(0)
                        yield AgentEvent(
                            type=TOOL_END, tool_name=call.name, arguments=call.arguments, success=False
                        )
                        continue

                yield AgentEvent(type=TOOL_START, tool_name=call.name, arguments=call.arguments)
                try:
                    result = await self._router.execute(call.name, call.arguments)
                    success = True
                except ToolError as e:
                    result = f"Error: {e}"
                    success = False
                self._messages.append(Message.tool_result(call.id, result))
                pending.pop(0)
                yield AgentEvent(
                    type=TOOL_END, tool_name=call.name, arguments=call.arguments, success=success
                )
        finally:
            for call in pending:
                self._messages.append(Message.tool_result(call.id, CANCELLED_RESULT))

    def _build_request(self) -> ChatRequest:
        return ChatRequest(
            model=self._model.model,
            messages=list(self._messages),
            tools=self._router.definitions(self._model.tools),
            max_tokens=self._model.max_tokens,
            enable_search=self._model.enable_search or None,
        )


def _resolve_provider(settings: Settings, model_id: str) -> tuple[ModelEntry, LlmProvider]:
    entry = settings.get_model_entry(model_id)
    if entry is None:
        raise ConfigError(f"Unknown model: {model_id}")
    api_key = settings.api_key_for_model(model_id)
    return entry, create_provider(entry, api_key, settings)


__all__ = ["Agent", "CANCELLED_RESULT"]
