"""REST API for miniclaw.

Endpoints:
  POST   /chat                        - Send message, get final response
  POST   /chat/stream                 - SSE stream of agent events
  POST   /chat/{session_id}/confirm   - Answer a pending confirmation
  POST   /chat/{session_id}/model     - Switch the session's model
  POST   /chat/{session_id}/clear     - Clear history (system prompt kept)
  GET    /chat/{session_id}/stats     - Token / request counters
  DELETE /chat/{session_id}           - End a session
  POST   /sessions/{session_id}/save  - Persist a live session
  POST   /sessions/{session_id}/load  - Restore a saved session
  GET    /sessions                    - List saved sessions
  GET    /models                      - Configured models
  GET    /health                      - Health check
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from miniclaw.api.runner import AgentRunner
from miniclaw.config import ConfigError, Settings
from miniclaw.llm import LlmError
from miniclaw.storage.sessions import generate_session_id

logger = logging.getLogger(__name__)


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _not_found(session_id: str) -> JSONResponse:
    return JSONResponse({"error": f"Unknown session: {session_id}"}, status_code=404)


def create_app(runner: AgentRunner, settings: Settings, lifespan: Any | None = None) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def chat(request: Request) -> JSONResponse:
        """POST /chat - Send a message, get a response."""
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        message = body.get("message")
        if not message:
            return JSONResponse({"error": "Missing required field: message"}, status_code=400)

        session_id = body.get("session_id") or generate_session_id()
        try:
            response_text = await runner.run_turn(session_id, message, model_id=body.get("model"))
        except ConfigError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except LlmError as e:
            logger.error("Chat error: %s", e)
            return JSONResponse({"error": str(e), "session_id": session_id}, status_code=502)

        return JSONResponse({
            "response": response_text,
            "session_id": session_id,
            "stats": asdict(runner.stats(session_id)),
        })

    async def chat_stream(request: Request) -> StreamingResponse | JSONResponse:
        """POST /chat/stream - SSE streaming chat."""
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        message = body.get("message")
        if not message:
            return JSONResponse({"error": "Missing required field: message"}, status_code=400)

        session_id = body.get("session_id") or generate_session_id()
        model_id = body.get("model")

        async def event_generator():
            try:
                async for event in runner.stream_turn(session_id, message, model_id=model_id):
                    data = json.dumps({**event.to_dict(), "session_id": session_id})
                    yield f"data: {data}\n\n"
            except LlmError as e:
                # The agent already emitted an error event for this
                logger.warning("Stream for session %s ended by model error: %s", session_id, e)
            except ConfigError as e:
                logger.error("Stream config error: %s", e)
                error_data = json.dumps({"type": "error", "text": str(e), "session_id": session_id})
                yield f"data: {error_data}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    async def confirm(request: Request) -> JSONResponse:
        """POST /chat/{session_id}/confirm - {request_id, approved}."""
        session_id = request.path_params["session_id"]
        body = await _json_body(request)
        if body is None or not body.get("request_id"):
            return JSONResponse({"error": "Missing required field: request_id"}, status_code=400)

        approved = bool(body.get("approved", False))
        if not runner.confirm(session_id, body["request_id"], approved):
            return JSONResponse({"error": "No pending confirmation with that id"}, status_code=404)
        return JSONResponse({"status": "ok", "approved": approved})

    async def switch_model(request: Request) -> JSONResponse:
        """POST /chat/{session_id}/model - {model}."""
        session_id = request.path_params["session_id"]
        body = await _json_body(request)
        if body is None or not body.get("model"):
            return JSONResponse({"error": "Missing required field: model"}, status_code=400)
        try:
            model_id = await runner.switch_model(session_id, body["model"])
        except ConfigError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        return JSONResponse({"session_id": session_id, "model": model_id})

    async def clear(request: Request) -> JSONResponse:
        """POST /chat/{session_id}/clear"""
        session_id = request.path_params["session_id"]
        try:
            await runner.clear(session_id)
        except KeyError:
            return _not_found(session_id)
        return JSONResponse({"status": "cleared", "session_id": session_id})

    async def stats(request: Request) -> JSONResponse:
        """GET /chat/{session_id}/stats"""
        session_id = request.path_params["session_id"]
        try:
            session_stats = runner.stats(session_id)
            history = runner.history(session_id)
        except KeyError:
            return _not_found(session_id)
        totals = runner.usage.totals
        return JSONResponse({
            "session_id": session_id,
            "stats": asdict(session_stats),
            "messages": len(history),
            "usage": totals.model_dump(mode="json") | {"days_used": totals.days_used},
        })

    async def end_chat(request: Request) -> JSONResponse:
        """DELETE /chat/{session_id} - End a session."""
        session_id = request.path_params["session_id"]
        if not await runner.end_session(session_id):
            return _not_found(session_id)
        return JSONResponse({"status": "ended", "session_id": session_id})

    async def save_session(request: Request) -> JSONResponse:
        """POST /sessions/{session_id}/save - optional {name}."""
        session_id = request.path_params["session_id"]
        body = await _json_body(request) or {}
        try:
            data = await runner.save_session(session_id, name=body.get("name"))
        except KeyError:
            return _not_found(session_id)
        return JSONResponse({"status": "saved", "session_id": data.id, "name": data.name})

    async def load_session(request: Request) -> JSONResponse:
        """POST /sessions/{session_id}/load"""
        session_id = request.path_params["session_id"]
        try:
            data = await runner.load_session(session_id)
        except ConfigError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except (FileNotFoundError, ValueError):
            return JSONResponse({"error": f"Session '{session_id}' not found"}, status_code=404)
        return JSONResponse({
            "status": "loaded",
            "session_id": data.id,
            "name": data.name,
            "messages": len(data.messages),
        })

    async def list_sessions(request: Request) -> JSONResponse:
        """GET /sessions - Saved sessions, newest first."""
        sessions = runner.list_sessions()
        return JSONResponse({
            "sessions": [
                {
                    "id": s.id,
                    "name": s.name,
                    "created_at": s.created_at,
                    "messages": len(s.messages),
                    "live": runner.has_session(s.id),
                }
                for s in sessions
            ],
            "total": len(sessions),
        })

    async def list_models(request: Request) -> JSONResponse:
        """GET /models"""
        models = settings.list_models()
        return JSONResponse({
            "models": [m.model_dump(exclude={"api_key", "api_key_env"}) for m in models],
            "default": settings.default_model_id(),
        })

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        return JSONResponse({"status": "healthy"})

    routes = [
        Route("/chat", chat, methods=["POST"]),
        Route("/chat/stream", chat_stream, methods=["POST"]),
        Route("/chat/{session_id}/confirm", confirm, methods=["POST"]),
        Route("/chat/{session_id}/model", switch_model, methods=["POST"]),
        Route("/chat/{session_id}/clear", clear, methods=["POST"]),
        Route("/chat/{session_id}/stats", stats),
        Route("/chat/{session_id}", end_chat, methods=["DELETE"]),
        Route("/sessions/{session_id}/save", save_session, methods=["POST"]),
        Route("/sessions/{session_id}/load", load_session, methods=["POST"]),
        Route("/sessions", list_sessions),
        Route("/models", list_models),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
