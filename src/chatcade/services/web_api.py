"""FastAPI application exposing the game engine to web and chat adapters."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ..core.errors import SessionNotFound
from ..core.schemas import ActionEvent, ActionResponse, RenderedView, StartRequest
from .engine import GameEngine


def create_app(engine: Optional[GameEngine] = None) -> FastAPI:
    """Build the API around ``engine`` (a default in-memory engine if omitted)."""

    engine = engine or GameEngine()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await engine.startup(run_cleanup=True)
        try:
            yield
        finally:
            await engine.shutdown()

    api = FastAPI(title="Chatcade Engine API", version="0.1.0", lifespan=lifespan)
    api.state.engine = engine
    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @api.get("/api/games")
    async def list_games() -> Dict[str, Any]:
        """Games the engine hosts and the action prefix each one uses."""
        return {
            "games": [
                {"kind": kind, "prefix": definition.prefix, "title": definition.title}
                for kind, definition in sorted(engine.definitions.items())
            ]
        }

    @api.post("/api/sessions", response_model=ActionResponse)
    async def start_game(payload: StartRequest) -> ActionResponse:
        """Start a game (or open its lobby)."""
        return await engine.start(payload)

    @api.post("/api/actions", response_model=ActionResponse)
    async def submit_action(payload: ActionEvent) -> ActionResponse:
        """Apply a choice a participant pressed."""
        return await engine.handle_action(payload)

    @api.get("/api/sessions/{session_key}", response_model=RenderedView)
    async def get_session(session_key: str, viewer: Optional[str] = None) -> RenderedView:
        """Current view of a live session; ``viewer`` adds their private details."""
        try:
            return engine.view(session_key, viewer)
        except SessionNotFound as exc:
            raise HTTPException(status_code=404, detail=exc.user_message) from exc

    return api


# Default application for ASGI servers.
app = create_app()
