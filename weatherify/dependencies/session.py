"""
Browser session resolution.

The session id travels in a signed cookie; a missing or tampered cookie
starts a new session rather than failing the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request, Response

from weatherify.clients import InvalidSessionCookieError, SessionCookieEncoder
from weatherify.core.config import AppSettings
from weatherify.core.logging import mask_secret

from .clients import get_session_cookie_encoder
from .config import get_app_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrowserSession:
    session_id: str


def get_browser_session(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    encoder: Annotated[SessionCookieEncoder, Depends(get_session_cookie_encoder)],
) -> BrowserSession:
    """Resolve the caller's session from its cookie, minting one when absent."""
    cookie_value = request.cookies.get(settings.security.session_cookie_name)
    if cookie_value:
        try:
            return BrowserSession(session_id=encoder.decode(cookie_value))
        except InvalidSessionCookieError as exc:
            logger.warning("Discarding session cookie %s: %s", mask_secret(cookie_value), exc)
    return BrowserSession(session_id=encoder.new_session_id())


def attach_session_cookie(
    response: Response,
    session: BrowserSession,
    settings: AppSettings,
    encoder: SessionCookieEncoder,
) -> Response:
    """Set (or renew) the session cookie on ``response``."""
    response.set_cookie(
        key=settings.security.session_cookie_name,
        value=encoder.encode(session.session_id),
        max_age=settings.security.session_cookie_max_age,
        httponly=True,
        secure=settings.security.session_cookie_secure,
        samesite="lax",
    )
    return response


__all__ = ["BrowserSession", "attach_session_cookie", "get_browser_session"]
