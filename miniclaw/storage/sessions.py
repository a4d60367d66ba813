"""Saved sessions: one pretty-printed JSON file per session.

The transcript is stored with the same Message/ToolCall dataclasses the
agent uses, so a save/load round-trip reproduces it exactly.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from miniclaw.types import Message, SessionStats

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def generate_session_id() -> str:
    return uuid.uuid4().hex[:8]


def now_timestamp() -> str:
    return datetime.now().strftime(TIMESTAMP_FORMAT)


class SessionData(BaseModel):
    id: str = Field(default_factory=generate_session_id)
    name: str = ""
    created_at: str = Field(default_factory=now_timestamp)
    messages: list[Message] = Field(default_factory=list)
    ui_messages: list[str] = Field(default_factory=list)
    stats: SessionStats = Field(default_factory=SessionStats)


class SessionStore:
    """Directory of ``<id>.json`` session files."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, session_id: str) -> Path:
        # Ids become file names; keep them inside the directory
        if not session_id or Path(session_id).name != session_id:
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self._dir / f"{session_id}.json"

    def save(self, data: SessionData) -> Path:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path(data.id)
        path.write_text(data.model_dump_json(indent=2), encoding="utf-8")
        logger.info("Saved session %s to %s", data.id, path)
        return path

    def load(self, session_id: str) -> SessionData:
        """Raises FileNotFoundError for an unknown id."""
        path = self._path(session_id)
        if not path.is_file():
            raise FileNotFoundError(f"Session '{session_id}' not found")
        return SessionData.model_validate_json(path.read_text(encoding="utf-8"))

    def list(self) -> list[SessionData]:
        """All readable sessions, newest first."""
        if not self._dir.is_dir():
            return []
        sessions: list[SessionData] = []
        for path in self._dir.glob("*.json"):
            try:
                sessions.append(SessionData.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValidationError) as e:
                logger.warning("Skipping unreadable session file %s: %s", path, e)
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.is_file():
            return False
        path.unlink()
        return True

    @staticmethod
    def export(data: SessionData, path: str | Path) -> None:
        Path(path).expanduser().write_text(data.model_dump_json(indent=2), encoding="utf-8")

    @staticmethod
    def import_(path: str | Path) -> SessionData:
        return SessionData.model_validate_json(Path(path).expanduser().read_text(encoding="utf-8"))
