"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_session_cookie_encoder,
    get_session_lock_registry,
    get_spotify_oauth_client,
    get_spotify_token_service,
    get_sqlite_store,
    get_token_cipher_service,
)
from .config import get_app_settings
from .session import BrowserSession, attach_session_cookie, get_browser_session

__all__ = [
    "BrowserSession",
    "attach_session_cookie",
    "get_app_settings",
    "get_browser_session",
    "get_session_cookie_encoder",
    "get_session_lock_registry",
    "get_spotify_oauth_client",
    "get_spotify_token_service",
    "get_sqlite_store",
    "get_token_cipher_service",
]
