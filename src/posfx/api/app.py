"""FastAPI application factory for the rate engine's automation API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from posfx.api.routes import api, ws
from posfx.api.routes.ws import RateFeedHub


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for startup/shutdown.
                  main.py injects one that wires and tears down the engine.
                  Without it, callers must set app.state.rate_manager.

    Returns:
        Configured FastAPI application with JSON routes and the WebSocket feed.
    """
    app = FastAPI(
        title="POS Exchange Rate Engine",
        lifespan=lifespan,
    )

    app.state.hub = RateFeedHub()

    app.include_router(api.router, prefix="/api")
    app.include_router(ws.router)

    return app
