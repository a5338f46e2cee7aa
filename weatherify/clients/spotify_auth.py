"""
Spotify Accounts utilities.

These helpers build the consent URL, exchange and refresh tokens against the
Spotify Accounts service, and resolve the identity behind an access token.
The client holds only application credentials; user tokens are passed per call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import status

from weatherify.core.config import OAuthSettings, SpotifySettings


class SpotifyAuthError(Exception):
    """Base class for failures talking to Spotify during authentication."""


class OAuthTokenExchangeError(SpotifyAuthError):
    """Raised when the token endpoint returns an error or cannot be reached."""


class IdentityLookupError(SpotifyAuthError):
    """Raised when the current-user profile cannot be fetched."""


@dataclass(frozen=True)
class TokenGrant:
    """Fields returned by a successful token endpoint call."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: int


@dataclass(frozen=True)
class SpotifyUserProfile:
    """Subset of the ``/v1/me`` payload the backend keeps."""

    id: str
    display_name: Optional[str] = None


def _lifetime_seconds(expires_in: object) -> int:
    """Coerce ``expires_in`` to a positive number of seconds."""
    if isinstance(expires_in, bool):
        raise OAuthTokenExchangeError(f"Invalid expires_in value: {expires_in!r}")
    try:
        seconds = int(expires_in)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise OAuthTokenExchangeError(f"Invalid expires_in value: {expires_in!r}") from exc
    if seconds <= 0:
        raise OAuthTokenExchangeError(f"Invalid expires_in value: {expires_in!r}")
    return seconds


class SpotifyOAuthClient:
    """Build Spotify authorization URLs and talk to the token and profile endpoints."""

    AUTH_BASE_URL = "https://accounts.spotify.com/authorize"
    TOKEN_URL = "https://accounts.spotify.com/api/token"
    CURRENT_USER_URL = "https://api.spotify.com/v1/me"

    def __init__(
        self,
        spotify_settings: SpotifySettings,
        oauth_settings: OAuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._spotify = spotify_settings
        self._oauth = oauth_settings
        self._transport = transport

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._oauth.http_timeout_seconds,
            transport=self._transport,
        )

    def build_authorization_url(self, state: str) -> str:
        """Construct the Spotify consent URL."""
        params = {
            "client_id": self._spotify.client_id,
            "response_type": "code",
            "redirect_uri": str(self._spotify.redirect_uri),
            "scope": " ".join(self._oauth.scopes),
            "state": state,
        }
        if self._oauth.show_dialog:
            params["show_dialog"] = "true"
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def _post_token_request(self, payload: dict[str, str]) -> dict:
        try:
            async with self._http_client() as client:
                response = await client.post(
                    self.TOKEN_URL,
                    data=payload,
                    auth=(self._spotify.client_id, self._spotify.client_secret),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(
                f"Token request failed: {exc.__class__.__name__}"
            ) from exc

        if response.status_code != status.HTTP_200_OK:
            raise OAuthTokenExchangeError(
                f"Token endpoint returned {response.status_code}: {response.text}"
            )

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError("Token endpoint returned invalid JSON.") from exc

        if not isinstance(token_payload, dict):
            raise OAuthTokenExchangeError("Token endpoint returned a non-object payload.")
        return token_payload

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for an access/refresh token pair."""
        token_payload = await self._post_token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": str(self._spotify.redirect_uri),
            }
        )
        access_token = token_payload.get("access_token")
        refresh_token = token_payload.get("refresh_token")
        expires_in = token_payload.get("expires_in")

        if not access_token or not refresh_token or not expires_in:
            raise OAuthTokenExchangeError("Incomplete token payload returned from Spotify.")
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise OAuthTokenExchangeError("Spotify returned tokens that are not strings.")

        return TokenGrant(access_token, refresh_token, _lifetime_seconds(expires_in))

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """
        Mint a new access token from a stored refresh token.

        Spotify may rotate the refresh token; ``TokenGrant.refresh_token`` is
        ``None`` when it did not.
        """
        token_payload = await self._post_token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )
        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        rotated = token_payload.get("refresh_token") or None

        if not access_token or not expires_in:
            raise OAuthTokenExchangeError("Incomplete refresh payload returned from Spotify.")
        if not isinstance(access_token, str) or not isinstance(rotated, (str, type(None))):
            raise OAuthTokenExchangeError("Spotify returned tokens that are not strings.")

        return TokenGrant(access_token, rotated, _lifetime_seconds(expires_in))

    async def get_current_user(self, access_token: str) -> SpotifyUserProfile:
        """Return the profile of the user who owns ``access_token``."""
        try:
            async with self._http_client() as client:
                response = await client.get(
                    self.CURRENT_USER_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            raise IdentityLookupError(
                f"Profile request failed: {exc.__class__.__name__}"
            ) from exc

        if response.status_code != status.HTTP_200_OK:
            raise IdentityLookupError(
                f"Profile endpoint returned {response.status_code}: {response.text}"
            )

        try:
            profile = response.json()
        except ValueError as exc:
            raise IdentityLookupError("Profile endpoint returned invalid JSON.") from exc
        if not isinstance(profile, dict):
            raise IdentityLookupError("Profile endpoint returned a non-object payload.")

        user_id = profile.get("id")
        if not user_id or not isinstance(user_id, str):
            raise IdentityLookupError("Spotify profile is missing the user id.")
        display_name = profile.get("display_name")
        if not isinstance(display_name, str):
            display_name = None
        return SpotifyUserProfile(id=user_id, display_name=display_name)


__all__ = [
    "IdentityLookupError",
    "OAuthTokenExchangeError",
    "SpotifyAuthError",
    "SpotifyOAuthClient",
    "SpotifyUserProfile",
    "TokenGrant",
]
