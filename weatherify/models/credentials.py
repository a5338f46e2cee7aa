"""
Domain models for per-session Spotify credentials.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialRecord(BaseModel):
    """Decrypted view of the Spotify credentials stored for one session."""

    session_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    user_id: str
    user_display_name: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def needs_refresh(self, window: timedelta, now: datetime | None = None) -> bool:
        """True once ``now`` is inside ``window`` of the access token's expiry."""
        now = now or _utcnow()
        return now >= self.expires_at - window


class PendingLoginState(BaseModel):
    """CSRF state issued by the login redirect and consumed by the callback."""

    session_id: str
    state: str
    issued_at: datetime = Field(default_factory=_utcnow)

    def is_expired(self, ttl: timedelta, now: datetime | None = None) -> bool:
        now = now or _utcnow()
        return now - self.issued_at > ttl


__all__ = ["CredentialRecord", "PendingLoginState"]
