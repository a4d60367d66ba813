"""miniclaw entry point.

Settings -> UsageLedger / SessionStore -> AgentRunner -> App -> Uvicorn

The runner is closed from the Starlette lifespan so provider clients are
released on the same event loop that used them.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette

from miniclaw.api.rest import create_app
from miniclaw.api.runner import AgentRunner
from miniclaw.config import ConfigError, Settings, config_file_path
from miniclaw.storage.sessions import SessionStore
from miniclaw.storage.usage import UsageLedger

logger = logging.getLogger(__name__)


def build_app(settings: Settings, runner: AgentRunner | None = None) -> Starlette:
    """Build the Starlette app; the lifespan owns the runner's shutdown."""
    if runner is None:
        runner = AgentRunner(
            settings,
            store=SessionStore(settings.sessions_dir),
            usage=UsageLedger(settings.usage_file),
        )

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        app.state.runner = runner
        logger.info(
            "miniclaw started: model=%s, project_root=%s",
            settings.default_model_id(),
            settings.project_root,
        )
        yield
        logger.info("Shutting down miniclaw...")
        await runner.close()
        logger.info("miniclaw shutdown complete.")

    return create_app(runner, settings, lifespan=lifespan)


def main() -> None:
    """Entry point -- parse settings, build app, run server."""
    settings = Settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Config file: %s", config_file_path())
    logger.info("Models: %s", ", ".join(m.id for m in settings.list_models()))

    try:
        settings.api_key_for_model(settings.default_model_id())
    except ConfigError as e:
        logger.warning("%s -- /chat endpoints will fail for the default model", e)

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
