"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from weatherify.clients import SessionCookieEncoder, SpotifyOAuthClient, SQLiteStore
from weatherify.core.config import get_settings
from weatherify.services import SessionLockRegistry, SpotifyTokenService, TokenCipherService


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_session_cookie_encoder() -> SessionCookieEncoder:
    """Provide a session cookie encoder, defaulting to the Spotify client secret."""
    settings = _settings()
    secret = settings.security.session_secret or settings.spotify.client_secret
    return SessionCookieEncoder(secret_key=secret)


@lru_cache()
def get_spotify_oauth_client() -> SpotifyOAuthClient:
    """Create a singleton Spotify OAuth client."""
    settings = _settings()
    return SpotifyOAuthClient(settings.spotify, settings.oauth)


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared SQLite session record store."""
    settings = _settings()
    return SQLiteStore(settings.session_db_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.spotify.client_secret
    return TokenCipherService(secret=secret)


@lru_cache()
def get_session_lock_registry() -> SessionLockRegistry:
    """Provide the process-wide registry of per-session locks."""
    return SessionLockRegistry()


def get_spotify_token_service() -> SpotifyTokenService:
    """Build the token lifecycle service from the shared clients."""
    settings = _settings()
    return SpotifyTokenService(
        store=get_sqlite_store(),
        oauth_client=get_spotify_oauth_client(),
        oauth_settings=settings.oauth,
        token_cipher=get_token_cipher_service(),
        session_locks=get_session_lock_registry(),
    )


__all__ = [
    "get_session_cookie_encoder",
    "get_session_lock_registry",
    "get_spotify_oauth_client",
    "get_spotify_token_service",
    "get_sqlite_store",
    "get_token_cipher_service",
]
