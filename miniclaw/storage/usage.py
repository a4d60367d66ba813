"""Lifetime usage ledger.

A small JSON file recording the first day the tool was used and running
token/request totals.  One ledger is created by the application and passed
to every Agent that should update it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from miniclaw.types import TokenUsage

logger = logging.getLogger(__name__)


class UsageTotals(BaseModel):
    first_used: date = Field(default_factory=date.today)
    input_tokens: int = 0
    output_tokens: int = 0
    request_count: int = 0

    @property
    def days_used(self) -> int:
        return (date.today() - self.first_used).days + 1


class UsageLedger:
    """Loads lazily; a missing or corrupt file starts a fresh ledger."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._totals: UsageTotals | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def totals(self) -> UsageTotals:
        if self._totals is None:
            self._totals = self._load()
        return self._totals

    def _load(self) -> UsageTotals:
        try:
            return UsageTotals.model_validate_json(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return UsageTotals()
        except (OSError, ValidationError) as e:
            logger.warning("Usage file %s unreadable, starting fresh: %s", self._path, e)
            return UsageTotals()

    async def record(self, usage: TokenUsage | None) -> None:
        """Add one completed model call and persist off the event loop."""
        totals = self.totals
        if usage is not None:
            totals.input_tokens += usage.input_tokens
            totals.output_tokens += usage.output_tokens
        totals.request_count += 1
        await asyncio.to_thread(self._save, totals.model_dump_json(indent=2))

    def _save(self, text: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(text, encoding="utf-8")
        except OSError as e:
            logger.warning("Could not write usage file %s: %s", self._path, e)
