"""Progress events emitted by the agent loop and the confirmation gate."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)

DELTA = "delta"
TOOL_START = "tool_start"
TOOL_END = "tool_end"
CONFIRM = "confirm"
DONE = "done"
ERROR = "error"


@dataclass
class AgentEvent:
    """A single event from an agent turn."""

    type: str  # delta, tool_start, tool_end, confirm, done, error
    text: str = ""
    tool_name: str = ""
    arguments: str = ""
    success: bool = True
    description: str = ""
    request_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v != "" or k == "type"}


class ConfirmationGate:
    """One-shot yes/no channels for Dangerous tool calls, keyed by request id.

    The loop opens a request, emits a ``confirm`` event carrying the id and
    waits; a listener answers with ``resolve``.  Anything other than an
    explicit approval (timeout, cancellation) reads as a denial.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Future[bool]] = {}

    @property
    def pending(self) -> list[str]:
        return list(self._pending)

    def open(self, request_id: str = "") -> str:
        request_id = request_id or uuid.uuid4().hex
        if request_id in self._pending:
            request_id = f"{request_id}-{uuid.uuid4().hex[:8]}"
        self._pending[request_id] = asyncio.get_running_loop().create_future()
        return request_id

    def resolve(self, request_id: str, approved: bool) -> bool:
        """Deliver a decision; False if nothing is waiting under that id."""
        future = self._pending.get(request_id)
        if future is None or future.done():
            return False
        future.set_result(bool(approved))
        return True

    async def wait(self, request_id: str, timeout: float | None = None) -> bool:
        future = self._pending.get(request_id)
        if future is None:
            return False
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Confirmation %s timed out after %ss, denying", request_id, timeout)
            return False
        except asyncio.CancelledError:
            if future.cancelled():
                return False
            raise
        finally:
            self._pending.pop(request_id, None)

    def discard(self, request_id: str) -> None:
        """Drop a request nobody will wait on any more."""
        future = self._pending.pop(request_id, None)
        if future is not None and not future.done():
            future.cancel()

    def cancel_all(self) -> None:
        """Cancel every outstanding request (each reads as a denial)."""
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
