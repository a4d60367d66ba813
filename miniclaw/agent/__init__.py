"""Agent loop: turn state machine, compaction and progress events."""

from miniclaw.agent.compaction import compact, estimate_context_tokens
from miniclaw.agent.events import AgentEvent, ConfirmationGate
from miniclaw.agent.loop import Agent
from miniclaw.types import SessionStats

__all__ = [
    "Agent",
    "AgentEvent",
    "ConfirmationGate",
    "SessionStats",
    "compact",
    "estimate_context_tokens",
]
