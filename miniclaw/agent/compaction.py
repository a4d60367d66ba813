"""Context compaction: heuristic token estimate and FIFO eviction.

Lossy and order-preserving.  The system message at index 0 is never
dropped and at least two messages always remain.
"""

from __future__ import annotations

import logging

from miniclaw.types import Message, Role

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 3
TOOL_CALL_OVERHEAD = 10
MESSAGE_OVERHEAD = 4
COMPACTION_RATIO = 0.85


def estimate_tokens(text: str) -> int:
    return max(1, len(text) // CHARS_PER_TOKEN)


def estimate_message_tokens(message: Message) -> int:
    tool_tokens = sum(estimate_tokens(tc.arguments) + TOOL_CALL_OVERHEAD for tc in message.tool_calls)
    return estimate_tokens(message.content) + tool_tokens + MESSAGE_OVERHEAD


def estimate_context_tokens(messages: list[Message]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)


def compaction_threshold(context_window: int) -> int:
    return int(context_window * COMPACTION_RATIO)


def compact(messages: list[Message], context_window: int) -> int:
    """Drop the oldest non-system messages in place until under threshold.

    Tool results whose assistant message has been dropped are dropped with
    it, since a result without its call is rejected by both wire formats.
    Returns the number of messages removed.
    """
    threshold = compaction_threshold(context_window)
    total = estimate_context_tokens(messages)
    if total <= threshold:
        return 0

    removed = 0
    while len(messages) > 2 and total > threshold:
        total -= estimate_message_tokens(messages.pop(1))
        removed += 1
        while len(messages) > 2 and messages[1].role == Role.TOOL:
            total -= estimate_message_tokens(messages.pop(1))
            removed += 1

    logger.debug(
        "Compacted context: dropped %d messages, ~%d tokens left (threshold %d)",
        removed,
        total,
        threshold,
    )
    return removed
