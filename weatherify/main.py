"""
FastAPI application entrypoint for the Weatherify backend.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from weatherify.api.routes import router as api_router
from weatherify.core.config import get_settings
from weatherify.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Weatherify",
        version="0.1.0",
        description="Spotify login and session token management for Weatherify.",
    )
    # The SPA calls the API with credentials, so origins must be explicit.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
