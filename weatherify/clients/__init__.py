"""Expose constructed client wrappers."""

from .session_cookie import InvalidSessionCookieError, SessionCookieEncoder
from .spotify_auth import (
    IdentityLookupError,
    OAuthTokenExchangeError,
    SpotifyAuthError,
    SpotifyOAuthClient,
    SpotifyUserProfile,
    TokenGrant,
)
from .sqlite_store import SQLiteStore

__all__ = [
    "IdentityLookupError",
    "InvalidSessionCookieError",
    "OAuthTokenExchangeError",
    "SQLiteStore",
    "SessionCookieEncoder",
    "SpotifyAuthError",
    "SpotifyOAuthClient",
    "SpotifyUserProfile",
    "TokenGrant",
]
