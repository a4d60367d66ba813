"""Model client layer.

Public API:
    LlmProvider      - Base class (complete / stream)
    AnthropicProvider, OpenAICompatibleProvider - The two wire formats
    ProviderKind     - Closed set of wire formats
    create_provider  - Build the provider for a resolved ModelEntry
"""

from __future__ import annotations

from enum import StrEnum

import httpx

from miniclaw.config import ConfigError, ModelEntry, Settings
from miniclaw.llm.anthropic import AnthropicProvider
from miniclaw.llm.base import ApiStatusError, DeltaSink, LlmError, LlmProvider, ResponseFormatError
from miniclaw.llm.openai_compatible import OpenAICompatibleProvider


class ProviderKind(StrEnum):
    ANTHROPIC = "anthropic"
    OPENAI_COMPATIBLE = "openai_compatible"


_PROVIDERS: dict[ProviderKind, type[LlmProvider]] = {
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.OPENAI_COMPATIBLE: OpenAICompatibleProvider,
}


def create_provider(
    entry: ModelEntry,
    api_key: str,
    settings: Settings | None = None,
    http: httpx.AsyncClient | None = None,
) -> LlmProvider:
    """Instantiate the provider for ``entry``; unknown kinds are a ConfigError."""
    name = "openai_compatible" if entry.provider == "openai" else entry.provider
    try:
        kind = ProviderKind(name)
    except ValueError:
        raise ConfigError(f"Unknown provider: {entry.provider}") from None

    timeouts = {}
    if settings is not None:
        timeouts = {
            "timeout_connect": float(settings.api_timeout_connect),
            "timeout_read": float(settings.api_timeout_read),
        }
    return _PROVIDERS[kind](api_key, entry.api_base, http=http, **timeouts)


__all__ = [
    "AnthropicProvider",
    "ApiStatusError",
    "DeltaSink",
    "LlmError",
    "LlmProvider",
    "OpenAICompatibleProvider",
    "ProviderKind",
    "ResponseFormatError",
    "create_provider",
]
