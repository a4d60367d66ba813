"""Settings via pydantic-settings with MINICLAW_ env prefix.

Values are layered: constructor kwargs > environment > .env > TOML config
file.  The TOML file defaults to ~/.miniclaw/config.toml and can be moved
with MINICLAW_CONFIG_FILE.  Its keys mirror the field names below, e.g.::

    provider = "openai_compatible"
    model = "qwen-plus"

    [providers.dashscope]
    base_url = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    api_key_env = "LLM_API_KEY"

    [[models]]
    provider_id = "dashscope"
    id = "qwen-plus"
    model = "qwen-plus"
    context_window = 131072
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

DEFAULT_CONFIG_FILE = "~/.miniclaw/config.toml"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI coding assistant. You can use tools to help the user "
    "with tasks like reading files, writing files, editing code, listing "
    "directories and executing shell commands. Be concise and helpful."
)


class ConfigError(ValueError):
    """Invalid or incomplete configuration (bad model id, missing API key...)."""


def config_file_path() -> Path:
    """Location of the TOML config file (MINICLAW_CONFIG_FILE overrides)."""
    return Path(os.environ.get("MINICLAW_CONFIG_FILE") or DEFAULT_CONFIG_FILE).expanduser()


class ProviderConfig(BaseModel):
    """A named backend shared by several models."""

    base_url: str
    api_key: str | None = None
    api_key_env: str | None = None
    api: str = "openai_compatible"  # wire format of this backend


class ModelConfig(BaseModel):
    """A model as written in the config file (fields may be inherited)."""

    id: str
    model: str
    name: str = ""
    provider: str = ""
    provider_id: str | None = None
    api_base: str | None = None
    context_window: int = 0
    max_tokens: int = 0
    tools: list[str] = Field(default_factory=list)
    enable_search: bool = False
    api_key: str | None = None
    api_key_env: str | None = None


class ModelEntry(BaseModel):
    """A fully resolved, selectable model."""

    id: str
    name: str
    provider: str
    model: str
    api_base: str | None = None
    context_window: int
    max_tokens: int
    tools: list[str] = Field(default_factory=list)  # empty = all tools
    enable_search: bool = False
    api_key: str | None = None
    api_key_env: str | None = None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MINICLAW_", env_file=".env", extra="ignore")

    # LLM (top-level defaults, used when no [[models]] are configured)
    provider: str = "openai_compatible"
    model: str = "qwen-plus"
    api_base: str | None = None  # None = the wire format's public endpoint
    api_key: str | None = None
    api_key_env: str = "LLM_API_KEY"
    max_tokens: int = 4096
    context_window: int = 131072  # 128K tokens
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    models: list[ModelConfig] = Field(default_factory=list)
    default_model: str | None = None

    # Agent
    max_iterations: int = 20
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    project_root: str = "."
    confirm_timeout: float | None = None  # seconds; None = wait indefinitely

    # Tools
    bash_timeout: int = 30
    bash_max_timeout: int = 300

    # Persistence
    sessions_dir: str = "~/.miniclaw/sessions"
    usage_file: str = "~/.miniclaw/usage.json"

    # HTTP client
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Runtime
    host: str = "127.0.0.1"
    port: int = 8765
    log_level: str = "info"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=config_file_path()),
            file_secret_settings,
        )

    @field_validator("provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        return "openai_compatible" if value == "openai" else value

    # ------------------------------------------------------------------
    # Model registry
    # ------------------------------------------------------------------

    def list_models(self) -> list[ModelEntry]:
        """Resolve every configured model, inheriting provider and global defaults."""
        if not self.models:
            return [
                ModelEntry(
                    id=self.model,
                    name=self.model or "default",
                    provider=self.provider,
                    model=self.model,
                    api_base=self.api_base,
                    context_window=self.context_window,
                    max_tokens=self.max_tokens,
                )
            ]

        entries: list[ModelEntry] = []
        for raw in self.models:
            context_window = raw.context_window or self.context_window
            max_tokens = raw.max_tokens or self.max_tokens
            if raw.provider_id is not None:
                backend = self.providers.get(raw.provider_id)
                if backend is None:
                    continue
                entries.append(
                    ModelEntry(
                        id=f"{raw.provider_id}/{raw.id}",
                        name=raw.name or raw.model,
                        provider=backend.api,
                        model=raw.model,
                        api_base=backend.base_url,
                        context_window=context_window,
                        max_tokens=max_tokens,
                        tools=raw.tools,
                        enable_search=raw.enable_search,
                        api_key=raw.api_key or backend.api_key,
                        api_key_env=raw.api_key_env or backend.api_key_env,
                    )
                )
            else:
                entries.append(
                    ModelEntry(
                        id=raw.id,
                        name=raw.name or raw.model,
                        provider=raw.provider or self.provider,
                        model=raw.model,
                        api_base=raw.api_base,
                        context_window=context_window,
                        max_tokens=max_tokens,
                        tools=raw.tools,
                        enable_search=raw.enable_search,
                        api_key=raw.api_key,
                        api_key_env=raw.api_key_env,
                    )
                )
        return entries

    def default_model_id(self) -> str:
        models = self.list_models()
        if not models:
            return "default"
        if self.default_model and any(m.id == self.default_model for m in models):
            return self.default_model
        return models[0].id

    def get_model_entry(self, model_id: str) -> ModelEntry | None:
        for entry in self.list_models():
            if entry.id == model_id:
                return entry
        return None

    def resolve_api_key(self) -> str:
        """Top-level API key: direct value first, then the named env var."""
        if self.api_key:
            return self.api_key
        key = os.environ.get(self.api_key_env)
        if not key:
            raise ConfigError(
                f"API key not found. Set api_key in {config_file_path()} "
                f"or export {self.api_key_env}=your-key"
            )
        return key

    def api_key_for_model(self, model_id: str) -> str:
        """Per-model key or env var, falling back to the top-level key."""
        entry = self.get_model_entry(model_id)
        if entry is not None:
            if entry.api_key:
                return entry.api_key
            if entry.api_key_env:
                key = os.environ.get(entry.api_key_env)
                if not key:
                    raise ConfigError(
                        f"API key for model '{model_id}' not found. "
                        f"Set env: export {entry.api_key_env}=your-key"
                    )
                return key
        return self.resolve_api_key()
