"""FastAPI HTTP boundary for the command subsystem.

Translates HTTP requests into session registry calls and the registry's
structured failures into status codes. Live output is streamed as
server-sent events:

    GET  /health                        -> {"status": "ok", "command_running": false}
    POST /api/commands/start            <- {"command": "fetch-changes"}
    GET  /api/commands/running          -> {"running": true}
    GET  /api/commands/{id}             -> session snapshot
    GET  /api/commands/stream/{id}      -> text/event-stream of command events
    POST /api/commands/stdin/{id}       <- {"input": "secret"}
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from homelab_admin.commands.channel import EventChannel
from homelab_admin.commands.errors import (
    AlreadyRunning,
    InvalidCommand,
    LaunchFailure,
    SessionNotFound,
    SessionNotRunning,
    StdinWriteError,
)
from homelab_admin.commands.registry import SessionRegistry
from homelab_admin.config.settings import Settings
from homelab_admin.domain.models import SessionSnapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class StartCommandRequest(BaseModel):
    command: str = Field(description="Command kind (e.g., 'fetch-changes')")


class StartCommandResponse(BaseModel):
    session_id: str


class StdinRequest(BaseModel):
    input: str = Field(description="One line of input, without the trailing newline")


class HealthResponse(BaseModel):
    status: str = "ok"
    command_running: bool = False


class RunningResponse(BaseModel):
    running: bool


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    registry: SessionRegistry | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create the admin API application.

    Args:
        registry: Optional pre-built SessionRegistry (for testing).
        settings: Service settings; defaults are used when omitted.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        r = app.state.registry
        if r is None:
            r = SessionRegistry(settings=settings.commands)
            app.state.registry = r
        logger.info("Admin API started (repository=%s)", settings.repository.path)
        yield
        await r.shutdown()
        logger.info("Admin API stopped")

    app = FastAPI(
        title="homelab-admin",
        description="Runs repository updates and configuration rebuilds with live output",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.settings = settings

    def _registry() -> SessionRegistry:
        r = app.state.registry
        if r is None:
            raise HTTPException(status_code=503, detail="Session registry not initialized")
        return r

    @app.get("/health")
    async def health_check() -> HealthResponse:
        r = app.state.registry
        return HealthResponse(
            status="ok",
            command_running=r.is_command_running() if r is not None else False,
        )

    @app.post("/api/commands/start")
    async def start_command(request: StartCommandRequest) -> StartCommandResponse:
        r = _registry()
        try:
            session_id = await r.start_command(request.command, settings.repository.path)
        except AlreadyRunning as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except InvalidCommand as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except LaunchFailure as e:
            raise HTTPException(status_code=500, detail=str(e)) from e
        return StartCommandResponse(session_id=session_id)

    @app.get("/api/commands/running")
    async def command_running() -> RunningResponse:
        return RunningResponse(running=_registry().is_command_running())

    @app.get("/api/commands/stream/{session_id}")
    async def stream_session(session_id: str) -> StreamingResponse:
        r = _registry()
        channel = EventChannel()
        try:
            unsubscribe = r.subscribe(session_id, channel.push)
        except SessionNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

        async def generator() -> AsyncIterator[str]:
            try:
                async for event in channel:
                    yield f"data: {event.model_dump_json()}\n\n"
            finally:
                # Runs on normal completion and on client disconnect
                channel.close()
                unsubscribe()
                logger.debug("Stream for session %s closed", session_id)

        return StreamingResponse(
            generator(), media_type="text/event-stream", headers=SSE_HEADERS
        )

    @app.post("/api/commands/stdin/{session_id}")
    async def send_stdin(session_id: str, request: StdinRequest) -> dict[str, bool]:
        r = _registry()
        try:
            r.send_stdin(session_id, request.input)
        except SessionNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except SessionNotRunning as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except StdinWriteError as e:
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"ok": True}

    @app.get("/api/commands/{session_id}")
    async def get_session(session_id: str) -> SessionSnapshot:
        try:
            return _registry().get_session(session_id)
        except SessionNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    return app


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

def main(settings: Settings | None = None) -> None:
    """Run the admin API server."""
    settings = settings or Settings()
    app = create_app(settings=settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
