"""Shared fixtures: isolated configuration and a scripted model provider."""

import os

import pytest

from miniclaw.agent.loop import Agent
from miniclaw.api.runner import AgentRunner
from miniclaw.config import ConfigError, ModelEntry, Settings
from miniclaw.llm.base import DeltaSink, LlmProvider
from miniclaw.tools.router import ToolRouter
from miniclaw.types import ChatRequest, ChatResponse

# ---------------------------------------------------------------------------
# Configuration isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """No user config file, no MINICLAW_* or key variables leak into tests."""
    for var in list(os.environ):
        if var.startswith("MINICLAW_"):
            monkeypatch.delenv(var)
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.setenv("MINICLAW_CONFIG_FILE", str(tmp_path / "absent-config.toml"))
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------


class ScriptedProvider(LlmProvider):
    """Returns canned ChatResponses in order and records every request.

    Streaming emits the content in 3-character deltas so ordering between
    deltas and the final response can be checked.
    """

    name = "scripted"

    def __init__(self, responses=None, *, repeat=None, error=None):
        super().__init__("test-key", "http://scripted.invalid")
        self.responses = list(responses or [])
        self.repeat = repeat
        self.error = error
        self.requests: list[ChatRequest] = []
        self.closed = False

    def endpoint(self) -> str:
        return self.api_base

    def headers(self) -> dict[str, str]:
        return {}

    def build_payload(self, request, stream=False):
        return {}

    def parse_response(self, data):
        return ChatResponse()

    async def complete(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        if self.repeat is not None:
            return self.repeat
        raise AssertionError("ScriptedProvider ran out of responses")

    async def stream(self, request: ChatRequest, on_delta: DeltaSink | None = None) -> ChatResponse:
        response = await self.complete(request)
        if on_delta is not None:
            for i in range(0, len(response.content), 3):
                on_delta(response.content[i : i + 3])
        return response

    async def close(self) -> None:
        self.closed = True


def make_entry(**overrides) -> ModelEntry:
    values = {
        "id": "test",
        "name": "Test Model",
        "provider": "openai_compatible",
        "model": "test-model",
        "context_window": 100_000,
        "max_tokens": 1024,
    }
    values.update(overrides)
    return ModelEntry(**values)


@pytest.fixture
def scripted():
    """The ScriptedProvider class."""
    return ScriptedProvider


@pytest.fixture
def model_entry():
    """Factory for ModelEntry values with test defaults."""
    return make_entry


@pytest.fixture
def make_agent():
    """Factory: Agent around a provider with an empty (or given) router."""

    def _make(provider, router=None, entry=None, **kwargs):
        kwargs.setdefault("system_prompt", "You are a test agent.")
        return Agent(provider, router or ToolRouter(), entry or make_entry(), **kwargs)

    return _make


@pytest.fixture
def make_runner(tmp_path, make_agent):
    """Factory: AgentRunner whose agents each get a fresh ScriptedProvider.

    Returns ``(runner, providers)``; ``providers`` lists the provider of every
    agent in creation order.  Model id "bad" raises ConfigError like an
    unknown model would.
    """

    def _make(responses=None, *, router=None, error=None, **kwargs):
        settings = Settings(
            api_key="sk-test",
            project_root=str(tmp_path),
            sessions_dir=str(tmp_path / "sessions"),
            usage_file=str(tmp_path / "usage.json"),
        )
        providers: list[ScriptedProvider] = []

        def factory(model_id):
            if model_id == "bad":
                raise ConfigError(f"Unknown model: {model_id}")
            provider = ScriptedProvider(list(responses or []), repeat=ChatResponse(content="ok"), error=error)
            providers.append(provider)
            return make_agent(provider, router, settings=settings)

        return AgentRunner(settings, agent_factory=factory, **kwargs), providers

    return _make
