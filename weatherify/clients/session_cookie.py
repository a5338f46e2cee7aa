"""Signed session cookies identifying a browser session."""

from __future__ import annotations

import base64
import hmac
import secrets
from hashlib import sha256


class InvalidSessionCookieError(ValueError):
    """Raised when a session cookie is malformed or its signature does not match."""


class SessionCookieEncoder:
    """Encode and decode session identifiers to guard against tampering.

    The cookie value is ``<session_id>.<signature>`` where the signature is an
    unpadded urlsafe-base64 HMAC-SHA256 of the session id.
    """

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("Session secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(24)

    def _sign(self, session_id: str) -> str:
        digest = hmac.new(self._secret_key, session_id.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def encode(self, session_id: str) -> str:
        return f"{session_id}.{self._sign(session_id)}"

    def decode(self, cookie_value: str) -> str:
        session_id, sep, signature = cookie_value.rpartition(".")
        if not sep or not session_id or not signature:
            raise InvalidSessionCookieError("Malformed session cookie.")
        if not hmac.compare_digest(signature, self._sign(session_id)):
            raise InvalidSessionCookieError("Invalid session cookie signature.")
        return session_id


__all__ = ["InvalidSessionCookieError", "SessionCookieEncoder"]
