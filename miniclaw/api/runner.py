"""Multi-session orchestration.

One Agent per session id, kept in an LRU-bounded map.  Each session has its
own lock, so a session runs one turn at a time while different sessions run
concurrently, and its own ConfirmationGate through which HTTP clients answer
confirmation requests.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field

from miniclaw.agent.events import AgentEvent, ConfirmationGate
from miniclaw.agent.loop import Agent
from miniclaw.config import Settings
from miniclaw.storage.sessions import SessionData, SessionStore, now_timestamp
from miniclaw.storage.usage import UsageLedger
from miniclaw.types import Message, Role, SessionStats

logger = logging.getLogger(__name__)

MAX_SESSIONS = 100

AgentFactory = Callable[[str | None], Agent]


@dataclass
class Session:
    session_id: str
    agent: Agent
    gate: ConfirmationGate = field(default_factory=ConfirmationGate)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    name: str = ""
    created_at: str = field(default_factory=now_timestamp)
    ui_messages: list[str] = field(default_factory=list)


class AgentRunner:
    """Runs turns for many independent sessions."""

    def __init__(
        self,
        settings: Settings,
        *,
        agent_factory: AgentFactory | None = None,
        store: SessionStore | None = None,
        usage: UsageLedger | None = None,
        max_sessions: int = MAX_SESSIONS,
    ) -> None:
        self._settings = settings
        self._usage = usage if usage is not None else UsageLedger(settings.usage_file)
        self._store = store if store is not None else SessionStore(settings.sessions_dir)
        self._agent_factory = agent_factory or self._default_agent
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[str, Session] = OrderedDict()

    def _default_agent(self, model_id: str | None) -> Agent:
        return Agent.create(self._settings, model_id, usage=self._usage)

    @property
    def usage(self) -> UsageLedger:
        return self._usage

    @property
    def store(self) -> SessionStore:
        return self._store

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    # ------------------------------------------------------------------
    # Session map
    # ------------------------------------------------------------------

    async def _get_or_create(self, session_id: str, model_id: str | None = None) -> Session:
        """Get existing or create new session with LRU eviction."""
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
            return session

        # Raises ConfigError before anything is evicted
        agent = self._agent_factory(model_id)

        evicted: list[Session] = []
        while len(self._sessions) >= self._max_sessions:
            oldest = self._evict_oldest_idle()
            if oldest is None:
                break
            evicted.append(oldest)

        # Stored before any await so a concurrent request for the same id finds it
        session = Session(session_id=session_id, agent=agent)
        self._sessions[session_id] = session
        logger.info("Session %s created (model %s)", session_id, agent.model_id)

        for old in evicted:
            await self._dispose(old)
        return session

    def _evict_oldest_idle(self) -> Session | None:
        for sid, session in self._sessions.items():
            if not session.lock.locked():
                del self._sessions[sid]
                logger.info("Session %s evicted", sid)
                return session
        return None

    async def _dispose(self, session: Session) -> None:
        session.gate.cancel_all()
        await session.agent.close()

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        return session

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def run_turn(self, session_id: str, message: str, model_id: str | None = None) -> str:
        """Blocking turn.  No listener can answer confirmations, so Dangerous calls are denied."""
        session = await self._get_or_create(session_id, model_id)
        async with session.lock:
            session.ui_messages.append(message)
            return await session.agent.process(message)

    async def stream_turn(
        self, session_id: str, message: str, model_id: str | None = None
    ) -> AsyncIterator[AgentEvent]:
        """Streaming turn; confirmations are answered through ``confirm``."""
        session = await self._get_or_create(session_id, model_id)
        async with session.lock:
            session.ui_messages.append(message)
            async with aclosing(session.agent.stream(message, session.gate)) as events:
                async for event in events:
                    yield event

    def confirm(self, session_id: str, request_id: str, approved: bool) -> bool:
        """Answer a pending confirmation; False if nothing is waiting."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        return session.gate.resolve(request_id, approved)

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def switch_model(self, session_id: str, model_id: str) -> str:
        session = await self._get_or_create(session_id)
        async with session.lock:
            await session.agent.switch_model(model_id)
        return session.agent.model_id

    def stats(self, session_id: str) -> SessionStats:
        return self._require(session_id).agent.stats

    def history(self, session_id: str) -> list[Message]:
        return self._require(session_id).agent.history()

    async def clear(self, session_id: str) -> None:
        session = self._require(session_id)
        async with session.lock:
            session.agent.clear_history()
            session.ui_messages.clear()

    async def save_session(self, session_id: str, name: str | None = None) -> SessionData:
        session = self._require(session_id)
        async with session.lock:
            if name is not None:
                session.name = name
            data = SessionData(
                id=session_id,
                name=session.name or _default_name(session.agent.history()),
                created_at=session.created_at,
                messages=session.agent.history(),
                ui_messages=list(session.ui_messages),
                stats=session.agent.stats,
            )
        self._store.save(data)
        return data

    async def load_session(self, session_id: str) -> SessionData:
        """Restore a saved session into the live map (FileNotFoundError if unknown)."""
        data = self._store.load(session_id)
        session = await self._get_or_create(session_id)
        async with session.lock:
            session.agent.set_messages(data.messages)
            session.agent.restore_stats(data.stats)
            session.name = data.name
            session.created_at = data.created_at
            session.ui_messages = list(data.ui_messages)
        logger.info("Session %s loaded (%d messages)", session_id, len(data.messages))
        return data

    def list_sessions(self) -> list[SessionData]:
        return self._store.list()

    async def end_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await self._dispose(session)
        logger.info("Session %s ended", session_id)
        return True

    async def close(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await self._dispose(session)


def _default_name(messages: list[Message]) -> str:
    for message in messages:
        if message.role == Role.USER and message.content.strip():
            first_line = message.content.strip().splitlines()[0]
            return first_line[:40]
    return "untitled"
