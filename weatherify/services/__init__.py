"""Service layer exports."""

from .session_locks import SessionLockRegistry
from .spotify_tokens import LoginFailure, LoginResult, SpotifyTokenService
from .token_cipher import TokenCipherService, TokenDecryptionError

__all__ = [
    "LoginFailure",
    "LoginResult",
    "SessionLockRegistry",
    "SpotifyTokenService",
    "TokenCipherService",
    "TokenDecryptionError",
]
