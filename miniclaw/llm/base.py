"""Provider interface shared by both wire formats.

Each provider translates the internal Message model to and from its wire
format and offers a blocking call (``complete``) and a streaming call
(``stream``).  Text deltas from a stream are pushed to a ``DeltaSink`` the
moment they are decoded; the accumulated ChatResponse is returned when the
stream ends.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from miniclaw.llm.sse import SSERecord, iter_records
from miniclaw.types import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

DeltaSink = Callable[[str], None]

# Retry once on rate limit / overload for blocking calls
_RETRY_STATUSES = frozenset({429, 529})
_MAX_RETRY_AFTER = 30.0
_ERROR_BODY_PREVIEW = 500


class LlmError(RuntimeError):
    """A model call failed (transport, status or payload)."""


class ApiStatusError(LlmError):
    """Non-success HTTP status; keeps the full response body for diagnostics."""

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        super().__init__(f"{provider} API error ({status_code}): {body[:_ERROR_BODY_PREVIEW]}")
        self.status_code = status_code
        self.body = body


class ResponseFormatError(LlmError):
    """A blocking response could not be decoded."""


class LlmProvider(ABC):
    """Base class for the two wire formats.

    Owns an ``httpx.AsyncClient`` unless one is injected (tests pass a
    client built on ``httpx.MockTransport``).
    """

    name: str = "provider"
    default_api_base: str = ""
    supports_streaming: bool = True

    def __init__(
        self,
        api_key: str,
        api_base: str | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        timeout_connect: float = 10.0,
        timeout_read: float = 120.0,
    ) -> None:
        self._api_key = api_key
        self._api_base = (api_base or self.default_api_base).rstrip("/")
        self._owns_http = http is None
        self._http = http
        self._timeout = httpx.Timeout(connect=timeout_connect, read=timeout_read, write=10.0, pool=10.0)

    @property
    def api_base(self) -> str:
        return self._api_base

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
            logger.info("%s httpx client initialized (%s)", self.name, self._api_base)
        return self._http

    async def close(self) -> None:
        """Close the httpx client if this provider created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    # ------------------------------------------------------------------
    # Wire format hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def endpoint(self) -> str:
        """Full URL of the chat endpoint."""

    @abstractmethod
    def headers(self) -> dict[str, str]:
        """Auth and version headers."""

    @abstractmethod
    def build_payload(self, request: ChatRequest, stream: bool = False) -> dict[str, Any]:
        """Translate a ChatRequest into the wire request body."""

    @abstractmethod
    def parse_response(self, data: Any) -> ChatResponse:
        """Translate a decoded blocking response body into a ChatResponse."""

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Blocking call; raises LlmError on any failure."""
        payload = self.build_payload(request)
        http = self._client()

        last_error: LlmError | None = None
        for attempt in range(2):  # initial + 1 retry
            try:
                response = await http.post(self.endpoint(), json=payload, headers=self.headers())
            except httpx.TimeoutException as e:
                last_error = LlmError(f"{self.name} request timed out: {e}")
                last_error.__cause__ = e
                if attempt == 0:
                    logger.warning("%s timeout, retrying: %s", self.name, e)
                    await asyncio.sleep(1)
                    continue
                break
            except httpx.HTTPError as e:
                raise LlmError(f"{self.name} call failed: {e}") from e

            if response.is_success:
                try:
                    data = response.json()
                except ValueError as e:
                    raise ResponseFormatError(f"Failed to parse {self.name} response: {e}") from e
                return self.parse_response(data)

            if response.status_code in _RETRY_STATUSES and attempt == 0:
                retry_after = _retry_after(response)
                logger.warning(
                    "%s API error %d, retrying in %.1fs",
                    self.name,
                    response.status_code,
                    retry_after,
                )
                await asyncio.sleep(retry_after)
                continue

            raise ApiStatusError(self.name, response.status_code, response.text)

        raise last_error or LlmError(f"{self.name} call failed with unknown error")

    async def stream(self, request: ChatRequest, on_delta: DeltaSink | None = None) -> ChatResponse:
        """Streaming call.  Providers without native streaming fall back to
        a blocking call and emit the whole content as one delta."""
        response = await self.complete(request)
        if on_delta is not None and response.content:
            on_delta(response.content)
        return response

    async def _stream_records(self, payload: dict[str, Any]) -> AsyncIterator[SSERecord]:
        """POST ``payload`` and yield decoded SSE records as bytes arrive.

        A non-success status is reported before any record is yielded;
        transport errors at any point are raised as LlmError.
        """
        try:
            async with self._client().stream(
                "POST", self.endpoint(), json=payload, headers=self.headers()
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ApiStatusError(self.name, response.status_code, body)

                async for record in iter_records(response.aiter_lines()):
                    yield record
        except httpx.HTTPError as e:
            raise LlmError(f"{self.name} streaming call failed: {e}") from e


def _retry_after(response: httpx.Response) -> float:
    try:
        value = float(response.headers.get("retry-after", "1"))
    except ValueError:
        value = 1.0
    return max(0.0, min(value, _MAX_RETRY_AFTER))
