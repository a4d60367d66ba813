"""Server-sent event records from a decoded line stream.

httpx does the byte buffering and UTF-8 decoding (``response.aiter_lines()``);
this module only tracks record state.  Each ``data:`` line is emitted as a
record tagged with the most recent ``event:`` name; a blank line ends the
record and clears the name.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass


@dataclass(frozen=True)
class SSERecord:
    event: str
    data: str


class SSEParser:
    """Turns one line at a time into SSERecords."""

    def __init__(self) -> None:
        self._event = ""

    def feed_line(self, line: str) -> SSERecord | None:
        line = line.rstrip("\r\n")
        if not line:
            self._event = ""
            return None
        if line.startswith(":"):  # comment / keepalive
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value.strip()
            return None
        if name == "data":
            return SSERecord(event=self._event, data=value)
        return None


async def iter_records(lines: AsyncIterable[str]) -> AsyncIterator[SSERecord]:
    """Yield records from lines such as ``response.aiter_lines()``."""
    parser = SSEParser()
    async for line in lines:
        record = parser.feed_line(line)
        if record is not None:
            yield record
