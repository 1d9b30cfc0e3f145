"""Main entry point for the agent API server."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import dotenv
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nexus_agent.errors import (
    InvalidDelay,
    InvalidStatusTransition,
    NexusAgentError,
    ThreadNotFound,
    ToolInputError,
)
from nexus_agent.logging_config import setup_logging
from nexus_agent.runtime import Runtime, build_runtime
from nexus_agent.server.events import start_event_listener
from nexus_agent.server.routes import agent_router, system_router, webhook_router

dotenv.load_dotenv()

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[NexusAgentError], int] = {
    ThreadNotFound: 404,
    InvalidDelay: 422,
    ToolInputError: 422,
    InvalidStatusTransition: 409,
}


async def handle_agent_error(request: Request, exc: Exception) -> JSONResponse:
    status = next(
        (code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)), 500
    )
    if status == 500:
        logger.error("Unhandled agent error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status, content={"error": str(exc)})


def create_app(runtime: Runtime | None = None, *, listen: bool = True) -> FastAPI:
    """Build the FastAPI app.

    Args:
        runtime: Use this runtime instead of building one from Config. It is
            not closed on shutdown.
        listen: Start the Redis event listener for the /events WebSocket.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler - builds the runtime and starts background tasks."""
        owned = runtime is None
        app.state.runtime = runtime if runtime is not None else await build_runtime()

        listener_task = None
        if listen:
            listener_task = asyncio.create_task(start_event_listener())
            logger.info("Event listener task started")

        yield

        if listener_task is not None:
            listener_task.cancel()
            try:
                await listener_task
            except asyncio.CancelledError:
                pass
            logger.info("Event listener task stopped")
        if owned:
            await app.state.runtime.close()

    app = FastAPI(title="nexus-agent", lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime
    app.add_exception_handler(NexusAgentError, handle_agent_error)
    app.include_router(agent_router)
    app.include_router(webhook_router)
    app.include_router(system_router)
    return app


app = create_app()


def main() -> None:
    """Run the agent server."""
    setup_logging("server")
    logger.info("Starting agent server...")

    # Hot reload disabled by default, enable with RELOAD=1
    reload_enabled = os.environ.get("RELOAD", "").lower() in ("1", "true", "yes")

    uvicorn_kwargs: dict[str, object] = {
        "host": os.environ.get("HOST", "0.0.0.0"),
        "port": int(os.environ.get("PORT", "8000")),
    }

    if reload_enabled:
        logger.info("Hot reload enabled")
        uvicorn_kwargs["reload"] = True
        uvicorn_kwargs["reload_includes"] = ["src/nexus_agent/**/*.py"]
        uvicorn_kwargs["reload_excludes"] = ["src/nexus_agent/worker/*"]

    uvicorn.run("nexus_agent.server.main:app", **uvicorn_kwargs)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
