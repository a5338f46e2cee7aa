"""
Spotify token lifecycle for browser sessions.

A session moves between four states:

* unauthenticated: no credential record is stored;
* pending callback: a CSRF state was issued by :meth:`begin_login`;
* authenticated: a complete credential record is stored;
* expired: the record's access token is inside the refresh window.

The expired state is never stored; it is derived whenever a caller asks for
an access token, and resolved by refreshing (or, on failure, by dropping the
record so the user has to log in again).
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from weatherify.clients.spotify_auth import (
    IdentityLookupError,
    OAuthTokenExchangeError,
    SpotifyAuthError,
    SpotifyOAuthClient,
)
from weatherify.core.config import OAuthSettings
from weatherify.core.logging import mask_secret
from weatherify.models.credentials import CredentialRecord, PendingLoginState
from weatherify.services.session_locks import SessionLockRegistry
from weatherify.services.token_cipher import TokenCipherService, TokenDecryptionError

logger = logging.getLogger(__name__)

STATE_ENTROPY_BYTES = 16


class LoginFailure(str, Enum):
    """Reasons a login callback can fail."""

    STATE_MISMATCH = "state_mismatch"
    EXCHANGE_FAILED = "exchange_failed"
    IDENTITY_LOOKUP_FAILED = "identity_lookup_failed"


@dataclass(frozen=True)
class LoginResult:
    """Outcome of :meth:`SpotifyTokenService.complete_login`."""

    success: bool
    failure: Optional[LoginFailure] = None
    user_id: Optional[str] = None

    @classmethod
    def succeeded(cls, user_id: str) -> "LoginResult":
        return cls(success=True, user_id=user_id)

    @classmethod
    def failed(cls, failure: LoginFailure) -> "LoginResult":
        return cls(success=False, failure=failure)


def _parse_timestamp(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SpotifyTokenService:
    """Issues, validates and refreshes the Spotify credentials of each session."""

    CREDENTIALS_SORT_KEY = "oauth#spotify"
    STATE_SORT_KEY = "oauth_state#spotify"

    def __init__(
        self,
        store: Any,
        oauth_client: SpotifyOAuthClient,
        oauth_settings: OAuthSettings,
        token_cipher: TokenCipherService,
        session_locks: SessionLockRegistry | None = None,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._refresh_window = timedelta(seconds=oauth_settings.refresh_window_seconds)
        self._state_ttl = timedelta(seconds=oauth_settings.state_ttl_seconds)
        self._cipher = token_cipher
        self._locks = session_locks or SessionLockRegistry()

    @staticmethod
    def _partition(session_id: str) -> str:
        return f"session#{session_id}"

    # -- login -----------------------------------------------------------------

    def begin_login(self, session_id: str) -> str:
        """Issue a fresh CSRF state for the session and return the consent URL."""
        pending = PendingLoginState(
            session_id=session_id,
            state=secrets.token_urlsafe(STATE_ENTROPY_BYTES),
        )
        self._store.put_item(
            {
                "pk": self._partition(session_id),
                "sk": self.STATE_SORT_KEY,
                "state": pending.state,
                "issued_at": pending.issued_at.isoformat(),
            }
        )
        logger.info("Session [%s]: issued OAuth state, redirecting to Spotify.", mask_secret(session_id))
        return self._oauth.build_authorization_url(state=pending.state)

    def _consume_state(self, session_id: str) -> Optional[PendingLoginState]:
        item = self._store.pop_item(
            partition_key=self._partition(session_id),
            sort_key=self.STATE_SORT_KEY,
        )
        if not item or not item.get("state") or not item.get("issued_at"):
            return None
        return PendingLoginState(
            session_id=session_id,
            state=item["state"],
            issued_at=_parse_timestamp(item["issued_at"]),
        )

    async def complete_login(
        self, session_id: str, code: str | None, returned_state: str | None
    ) -> LoginResult:
        """
        Validate the callback state and trade ``code`` for a credential record.

        The stored state is consumed before anything else, so it can never be
        replayed. A state failure leaves any existing record untouched; an
        exchange or identity failure leaves the session logged out.
        """
        pending = self._consume_state(session_id)
        if pending is None:
            logger.warning(
                "Session [%s]: callback without a pending OAuth state.",
                mask_secret(session_id),
            )
            return LoginResult.failed(LoginFailure.STATE_MISMATCH)
        if pending.is_expired(self._state_ttl):
            logger.warning("Session [%s]: OAuth state expired.", mask_secret(session_id))
            return LoginResult.failed(LoginFailure.STATE_MISMATCH)
        if not returned_state or not hmac.compare_digest(
            pending.state.encode("utf-8"), returned_state.encode("utf-8")
        ):
            logger.warning(
                "Session [%s]: OAuth state mismatch (stored %s, returned %s). Possible CSRF.",
                mask_secret(session_id),
                mask_secret(pending.state),
                mask_secret(returned_state),
            )
            return LoginResult.failed(LoginFailure.STATE_MISMATCH)

        async with self._locks.hold(session_id):
            if not code:
                logger.warning(
                    "Session [%s]: callback carried no authorization code.",
                    mask_secret(session_id),
                )
                self._delete_credentials(session_id)
                return LoginResult.failed(LoginFailure.EXCHANGE_FAILED)

            exchanged_at = datetime.now(timezone.utc)
            try:
                grant = await self._oauth.exchange_authorization_code(code)
            except OAuthTokenExchangeError as exc:
                logger.error(
                    "Session [%s]: exchanging code %s failed: %s",
                    mask_secret(session_id),
                    mask_secret(code),
                    exc,
                )
                self._delete_credentials(session_id)
                return LoginResult.failed(LoginFailure.EXCHANGE_FAILED)

            try:
                profile = await self._oauth.get_current_user(grant.access_token)
            except IdentityLookupError as exc:
                logger.error(
                    "Session [%s]: identity lookup after token exchange failed: %s",
                    mask_secret(session_id),
                    exc,
                )
                self._delete_credentials(session_id)
                return LoginResult.failed(LoginFailure.IDENTITY_LOOKUP_FAILED)

            record = CredentialRecord(
                session_id=session_id,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token or "",
                expires_at=exchanged_at + timedelta(seconds=grant.expires_in),
                user_id=profile.id,
                user_display_name=profile.display_name,
                created_at=exchanged_at,
                updated_at=exchanged_at,
            )
            self._save_credentials(record)

        logger.info(
            "Session [%s]: Spotify login complete for user %s (access token %s).",
            mask_secret(session_id),
            profile.id,
            mask_secret(grant.access_token),
        )
        return LoginResult.succeeded(profile.id)

    # -- token access ----------------------------------------------------------

    async def get_valid_access_token(self, session_id: str) -> Optional[str]:
        """
        Return an access token that is valid for at least the refresh window.

        Returns ``None`` when the session has no credentials or the refresh
        attempt failed; in the latter case the record is deleted.
        """
        record = self._load_credentials(session_id)
        if record is None:
            return None
        if not record.needs_refresh(self._refresh_window):
            return record.access_token

        async with self._locks.hold(session_id):
            # Another request may have refreshed (or logged out) while we waited.
            record = self._load_credentials(session_id)
            if record is None:
                return None
            if not record.needs_refresh(self._refresh_window):
                return record.access_token
            return await self._refresh(record)

    async def _refresh(self, record: CredentialRecord) -> Optional[str]:
        refreshed_at = datetime.now(timezone.utc)
        try:
            grant = await self._oauth.refresh_access_token(record.refresh_token)
        except SpotifyAuthError as exc:
            logger.warning(
                "Session [%s]: refreshing access token failed, forcing re-login: %s",
                mask_secret(record.session_id),
                exc,
            )
            self._delete_credentials(record.session_id)
            return None

        updated = record.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token or record.refresh_token,
                "expires_at": refreshed_at + timedelta(seconds=grant.expires_in),
                "updated_at": refreshed_at,
            }
        )
        self._save_credentials(updated)
        logger.info(
            "Session [%s]: refreshed access token (refresh token %s).",
            mask_secret(record.session_id),
            "rotated" if grant.refresh_token else "kept",
        )
        return updated.access_token

    # -- presence / logout -----------------------------------------------------

    def is_logged_in(self, session_id: str) -> bool:
        """Presence check only: an expired access token still counts as logged in."""
        return self._load_credentials(session_id) is not None

    def get_profile(self, session_id: str) -> Optional[CredentialRecord]:
        return self._load_credentials(session_id)

    async def logout(self, session_id: str) -> None:
        async with self._locks.hold(session_id):
            self._delete_credentials(session_id)
            self._store.delete_item(
                partition_key=self._partition(session_id),
                sort_key=self.STATE_SORT_KEY,
            )
        logger.info("Cleared Spotify credentials for session [%s].", mask_secret(session_id))

    # -- persistence -----------------------------------------------------------

    def _load_credentials(self, session_id: str) -> Optional[CredentialRecord]:
        item = self._store.get_item(
            partition_key=self._partition(session_id),
            sort_key=self.CREDENTIALS_SORT_KEY,
        )
        if not item:
            return None

        encrypted_access_token = item.get("access_token_encrypted")
        encrypted_refresh_token = item.get("refresh_token_encrypted")
        expires_at = item.get("expires_at")
        user_id = item.get("user_id")
        if not encrypted_access_token or not encrypted_refresh_token or not expires_at or not user_id:
            return None

        try:
            access_token = self._cipher.decrypt(encrypted_access_token)
            refresh_token = self._cipher.decrypt(encrypted_refresh_token)
        except TokenDecryptionError:
            logger.warning(
                "Session [%s]: stored credentials could not be decrypted; ignoring them.",
                mask_secret(session_id),
            )
            return None

        return CredentialRecord(
            session_id=session_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_parse_timestamp(expires_at),
            user_id=user_id,
            user_display_name=item.get("user_display_name"),
            created_at=_parse_timestamp(item.get("created_at") or expires_at),
            updated_at=_parse_timestamp(item.get("updated_at") or expires_at),
        )

    def _save_credentials(self, record: CredentialRecord) -> None:
        item: Dict[str, Any] = {
            "pk": self._partition(record.session_id),
            "sk": self.CREDENTIALS_SORT_KEY,
            "provider": "spotify",
            "access_token_encrypted": self._cipher.encrypt(record.access_token),
            "refresh_token_encrypted": self._cipher.encrypt(record.refresh_token),
            "expires_at": record.expires_at.isoformat(),
            "user_id": record.user_id,
            "user_display_name": record.user_display_name,
            "created_at": record.created_at.isoformat(),
            "updated_at": record.updated_at.isoformat(),
        }
        self._store.put_item(item)

    def _delete_credentials(self, session_id: str) -> None:
        self._store.delete_item(
            partition_key=self._partition(session_id),
            sort_key=self.CREDENTIALS_SORT_KEY,
        )


__all__ = ["LoginFailure", "LoginResult", "SpotifyTokenService"]
