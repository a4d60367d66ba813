"""Integration tests for REST API endpoints.

Uses httpx AsyncClient with ASGITransport against an app whose runner
builds agents around ScriptedProvider (see conftest).
"""

import json

import pytest
from httpx import ASGITransport, AsyncClient

from miniclaw.agent.events import CONFIRM
from miniclaw.api.rest import create_app
from miniclaw.api.runner import AgentRunner
from miniclaw.config import Settings
from miniclaw.llm import LlmError
from miniclaw.main import build_app
from miniclaw.storage.sessions import SessionData
from miniclaw.tools.router import ToolRouter
from miniclaw.types import ChatResponse, TokenUsage, ToolCall

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def api(make_runner):
    """Factory: (AsyncClient, runner) for an app over a scripted runner."""

    def _make(responses=None, **kwargs):
        runner, _ = make_runner(responses, **kwargs)
        app = create_app(runner, Settings(api_key="sk-secret"))
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        return client, runner

    return _make


def _frames(body: str) -> list[dict]:
    frames = []
    for block in body.split("\n\n"):
        if block.startswith("data: "):
            frames.append(json.loads(block[len("data: "):]))
    return frames


# ---------------------------------------------------------------------------
# /chat
# ---------------------------------------------------------------------------


class TestChat:
    @pytest.mark.asyncio
    async def test_health(self, api):
        client, _ = api()
        async with client:
            resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_chat_turn(self, api):
        client, runner = api([ChatResponse(content="Hi there", usage=TokenUsage(12, 4))])
        async with client:
            resp = await client.post("/chat", json={"message": "hello", "session_id": "s1"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["response"] == "Hi there"
        assert data["session_id"] == "s1"
        assert data["stats"] == {"total_input_tokens": 12, "total_output_tokens": 4, "request_count": 1}
        assert runner.has_session("s1")

    @pytest.mark.asyncio
    async def test_chat_generates_session_id(self, api):
        client, runner = api()
        async with client:
            resp = await client.post("/chat", json={"message": "hello"})
        session_id = resp.json()["session_id"]
        assert len(session_id) == 8
        assert runner.has_session(session_id)

    @pytest.mark.asyncio
    async def test_chat_validation(self, api):
        client, _ = api()
        async with client:
            missing = await client.post("/chat", json={"session_id": "s1"})
            invalid = await client.post("/chat", content=b"not json", headers={"content-type": "application/json"})
        assert missing.status_code == 400
        assert "message" in missing.json()["error"]
        assert invalid.status_code == 400

    @pytest.mark.asyncio
    async def test_chat_unknown_model(self, api):
        client, _ = api()
        async with client:
            resp = await client.post("/chat", json={"message": "hi", "model": "bad"})
        assert resp.status_code == 400
        assert "Unknown model" in resp.json()["error"]

    @pytest.mark.asyncio
    async def test_chat_model_failure(self, api):
        client, _ = api(error=LlmError("upstream down"))
        async with client:
            resp = await client.post("/chat", json={"message": "hi", "session_id": "s1"})
        assert resp.status_code == 502
        assert resp.json() == {"error": "upstream down", "session_id": "s1"}


# ---------------------------------------------------------------------------
# /chat/stream and confirmation
# ---------------------------------------------------------------------------


class TestStream:
    @pytest.mark.asyncio
    async def test_stream_frames(self, api):
        client, _ = api([ChatResponse(content="streamed answer")])
        async with client:
            resp = await client.post("/chat/stream", json={"message": "hi", "session_id": "s1"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")

        frames = _frames(resp.text)
        assert all(f["session_id"] == "s1" for f in frames)
        assert "".join(f["text"] for f in frames if f["type"] == "delta") == "streamed answer"
        assert frames[-1]["type"] == "done"
        assert frames[-1]["text"] == "streamed answer"

    @pytest.mark.asyncio
    async def test_stream_model_error_frame(self, api):
        client, _ = api(error=LlmError("rate limited"))
        async with client:
            resp = await client.post("/chat/stream", json={"message": "hi", "session_id": "s1"})
        frames = _frames(resp.text)
        assert [f["type"] for f in frames] == ["error"]
        assert frames[0]["text"] == "rate limited"

    @pytest.mark.asyncio
    async def test_stream_unknown_model_frame(self, api):
        client, _ = api()
        async with client:
            resp = await client.post("/chat/stream", json={"message": "hi", "model": "bad"})
        frames = _frames(resp.text)
        assert frames[0]["type"] == "error"
        assert "Unknown model" in frames[0]["text"]

    @pytest.mark.asyncio
    async def test_confirm_endpoint(self, api):
        ran: list[str] = []

        async def bash(command: str) -> str:
            ran.append(command)
            return "ok"

        router = ToolRouter()
        router.register("bash", bash, {"description": "Run a shell command", "type": "object"})
        client, runner = api(
            [
                ChatResponse(tool_calls=[ToolCall("c1", "bash", '{"command": "rm -rf dist"}')]),
                ChatResponse(content="cleaned"),
            ],
            router=router,
        )

        async with client:
            stream = runner.stream_turn("s1", "clean")
            async for event in stream:
                if event.type == CONFIRM:
                    resp = await client.post(
                        "/chat/s1/confirm", json={"request_id": event.request_id, "approved": True}
                    )
                    assert resp.status_code == 200
                    assert resp.json() == {"status": "ok", "approved": True}

            again = await client.post("/chat/s1/confirm", json={"request_id": "c1", "approved": True})
            missing = await client.post("/chat/s1/confirm", json={"approved": True})

        assert ran == ["rm -rf dist"]
        assert again.status_code == 404
        assert missing.status_code == 400


# ---------------------------------------------------------------------------
# Session management
# ---------------------------------------------------------------------------


class TestSessionRoutes:
    @pytest.mark.asyncio
    async def test_unknown_session_routes(self, api):
        client, _ = api()
        async with client:
            assert (await client.post("/chat/nope/clear")).status_code == 404
            assert (await client.get("/chat/nope/stats")).status_code == 404
            assert (await client.delete("/chat/nope")).status_code == 404
            assert (await client.post("/sessions/nope/save")).status_code == 404
            assert (await client.post("/sessions/nope/load")).status_code == 404

    @pytest.mark.asyncio
    async def test_stats(self, api):
        client, _ = api([ChatResponse(content="x", usage=TokenUsage(3, 1))])
        async with client:
            await client.post("/chat", json={"message": "hi", "session_id": "s1"})
            resp = await client.get("/chat/s1/stats")
        data = resp.json()
        assert data["stats"]["request_count"] == 1
        assert data["messages"] == 3
        assert data["usage"]["days_used"] == 1
        assert "first_used" in data["usage"]

    @pytest.mark.asyncio
    async def test_clear_and_delete(self, api):
        client, runner = api()
        async with client:
            await client.post("/chat", json={"message": "hi", "session_id": "s1"})
            cleared = await client.post("/chat/s1/clear")
            assert len(runner.history("s1")) == 1
            ended = await client.delete("/chat/s1")
        assert cleared.json() == {"status": "cleared", "session_id": "s1"}
        assert ended.json() == {"status": "ended", "session_id": "s1"}
        assert not runner.has_session("s1")

    @pytest.mark.asyncio
    async def test_switch_model(self, api):
        client, _ = api()
        async with client:
            await client.post("/chat", json={"message": "hi", "session_id": "s1"})
            ok = await client.post("/chat/s1/model", json={"model": "qwen-plus"})
            unknown = await client.post("/chat/s1/model", json={"model": "gpt-99"})
            missing = await client.post("/chat/s1/model", json={})
        assert ok.json() == {"session_id": "s1", "model": "qwen-plus"}
        assert unknown.status_code == 400
        assert missing.status_code == 400

    @pytest.mark.asyncio
    async def test_save_list_load(self, api):
        client, runner = api([ChatResponse(content="answer")])
        async with client:
            await client.post("/chat", json={"message": "Plan the release", "session_id": "s1"})
            saved = await client.post("/sessions/s1/save", json={"name": "release"})
            await client.delete("/chat/s1")
            listed = await client.get("/sessions")
            loaded = await client.post("/sessions/s1/load")

        assert saved.json() == {"status": "saved", "session_id": "s1", "name": "release"}
        listing = listed.json()
        assert listing["total"] == 1
        assert listing["sessions"][0]["name"] == "release"
        assert listing["sessions"][0]["live"] is False
        assert loaded.json() == {"status": "loaded", "session_id": "s1", "name": "release", "messages": 3}
        assert runner.has_session("s1")

    @pytest.mark.asyncio
    async def test_load_without_api_key_is_config_error(self, tmp_path):
        settings = Settings(sessions_dir=str(tmp_path / "sessions"), usage_file=str(tmp_path / "usage.json"))
        runner = AgentRunner(settings)
        runner.store.save(SessionData(id="abcd1234", name="saved"))
        app = create_app(runner, settings)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post("/sessions/abcd1234/load")

        assert resp.status_code == 400
        assert "API key" in resp.json()["error"]
        assert not runner.has_session("abcd1234")


class TestModels:
    @pytest.mark.asyncio
    async def test_models_hide_keys(self, api):
        client, _ = api()
        async with client:
            resp = await client.get("/models")
        data = resp.json()
        assert data["default"] == "qwen-plus"
        assert [m["id"] for m in data["models"]] == ["qwen-plus"]
        assert "api_key" not in data["models"][0]
        assert "api_key_env" not in data["models"][0]


@pytest.mark.asyncio
async def test_build_app_lifespan_closes_runner(make_runner):
    runner, providers = make_runner()
    app = build_app(Settings(api_key="k"), runner)
    async with app.router.lifespan_context(app):
        await runner.run_turn("s1", "hi")
    assert providers[0].closed
    assert not runner.has_session("s1")
