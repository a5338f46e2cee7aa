"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the token lifecycle
service and the maintenance scripts share a consistent configuration surface.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_SPOTIFY_SCOPES: tuple[str, ...] = (
    "playlist-read-private",
    "playlist-modify-public",
    "playlist-modify-private",
    "user-read-private",
    "user-read-email",
)


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class SpotifySettings(BaseSettings):
    """Application credentials registered with the Spotify developer dashboard."""

    client_id: str = Field(..., validation_alias="SPOTIFY_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="SPOTIFY_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="SPOTIFY_REDIRECT_URI")


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        DEFAULT_SPOTIFY_SCOPES,
        validation_alias="OAUTH_SCOPES",
    )
    refresh_window_seconds: int = Field(
        300,
        validation_alias="OAUTH_REFRESH_WINDOW_SECONDS",
        description="Access tokens this close to expiry are refreshed before use.",
    )
    http_timeout_seconds: float = Field(10.0, validation_alias="OAUTH_HTTP_TIMEOUT")
    show_dialog: bool = Field(
        True,
        validation_alias="OAUTH_SHOW_DIALOG",
        description="Force Spotify to show the consent dialog on every login.",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a space- or comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope for scope in value.replace(",", " ").split() if scope)


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    session_secret: Optional[str] = Field(
        None,
        validation_alias="SESSION_SECRET",
        description="Secret used to sign session cookies.",
    )
    session_cookie_name: str = Field(
        "weatherify_session", validation_alias="SESSION_COOKIE_NAME"
    )
    session_cookie_secure: bool = Field(False, validation_alias="SESSION_COOKIE_SECURE")
    session_cookie_max_age: int = Field(
        60 * 60 * 24 * 14, validation_alias="SESSION_COOKIE_MAX_AGE"
    )


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: HttpUrl = Field(
        "http://localhost:5173",
        validation_alias="FRONTEND_BASE_URL",
        validate_default=True,
        description="Front-end origin users are sent back to after login.",
    )
    cors_allow_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="CORS_ALLOW_ORIGINS",
        description="Extra origins allowed to call the API with credentials.",
    )
    session_db_path: str = Field("data/weatherify.db", validation_alias="SESSION_DB_PATH")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        if isinstance(value, (tuple, list)):
            return tuple(value)
        return tuple(origin.strip() for origin in value.split(",") if origin.strip())

    def allowed_origins(self) -> list[str]:
        """Origins permitted by CORS; the front-end origin is always included."""
        frontend = str(self.frontend_base_url).rstrip("/")
        origins = [frontend]
        origins.extend(o.rstrip("/") for o in self.cors_allow_origins if o.rstrip("/") != frontend)
        return origins


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "DEFAULT_SPOTIFY_SCOPES",
    "OAuthSettings",
    "SecuritySettings",
    "SpotifySettings",
    "get_settings",
]
