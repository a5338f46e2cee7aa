"""
FastAPI routes for the Weatherify backend.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse

from weatherify.core.logging import mask_secret
from weatherify.dependencies import (
    BrowserSession,
    attach_session_cookie,
    get_app_settings,
    get_browser_session,
    get_session_cookie_encoder,
    get_spotify_token_service,
)
from weatherify.schemas import LoginStatusResponse, LogoutResponse
from weatherify.services import LoginFailure

router = APIRouter()
logger = logging.getLogger(__name__)

_LOGIN_ERROR_MARKERS = {
    LoginFailure.STATE_MISMATCH: "state_mismatch",
    LoginFailure.EXCHANGE_FAILED: "token_failure",
    LoginFailure.IDENTITY_LOOKUP_FAILED: "token_failure",
}


def _frontend_redirect(settings: Any, **params: str) -> RedirectResponse:
    target = httpx.URL(str(settings.frontend_base_url)).copy_merge_params(params)
    return RedirectResponse(url=str(target), status_code=HTTPStatus.FOUND)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/v1/auth/spotify/login")
async def spotify_login(
    session: Annotated[BrowserSession, Depends(get_browser_session)],
    token_service: Annotated[Any, Depends(get_spotify_token_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    cookie_encoder: Annotated[Any, Depends(get_session_cookie_encoder)],
) -> RedirectResponse:
    """Redirect the browser to the Spotify consent screen."""
    authorization_url = token_service.begin_login(session.session_id)
    response = RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)
    return attach_session_cookie(response, session, settings, cookie_encoder)


@router.get("/v1/auth/spotify/callback")
async def spotify_callback(
    session: Annotated[BrowserSession, Depends(get_browser_session)],
    token_service: Annotated[Any, Depends(get_spotify_token_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    cookie_encoder: Annotated[Any, Depends(get_session_cookie_encoder)],
    code: str | None = Query(default=None, description="Authorization code returned by Spotify."),
    state: str | None = Query(default=None, description="OAuth state echoed by Spotify."),
    error: str | None = Query(default=None, description="Error reported by Spotify, e.g. access_denied."),
) -> RedirectResponse:
    """Complete the OAuth exchange and send the browser back to the front-end."""
    if error:
        logger.warning(
            "Session [%s]: Spotify reported authorization error %r.",
            mask_secret(session.session_id),
            error,
        )

    try:
        result = await token_service.complete_login(session.session_id, code, state)
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception(
            "Session [%s]: unexpected error during Spotify login: %s",
            mask_secret(session.session_id),
            exc,
        )
        response = _frontend_redirect(settings, login_error="exception")
    else:
        if result.success:
            response = _frontend_redirect(settings, login_success="true")
        else:
            response = _frontend_redirect(
                settings, login_error=_LOGIN_ERROR_MARKERS[result.failure]
            )

    return attach_session_cookie(response, session, settings, cookie_encoder)


@router.get("/v1/auth/spotify/status", response_model=LoginStatusResponse)
async def spotify_login_status(
    session: Annotated[BrowserSession, Depends(get_browser_session)],
    token_service: Annotated[Any, Depends(get_spotify_token_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    cookie_encoder: Annotated[Any, Depends(get_session_cookie_encoder)],
) -> JSONResponse:
    """Report whether the session holds Spotify credentials (expiry is not checked)."""
    record = token_service.get_profile(session.session_id)
    if record is not None:
        status = LoginStatusResponse(
            logged_in=True,
            message="Successfully logged into Spotify!",
            session_id=session.session_id,
            user_id=record.user_id,
            user_display_name=record.user_display_name or "N/A",
        )
    else:
        status = LoginStatusResponse(
            logged_in=False,
            message="Not logged into Spotify.",
            session_id=session.session_id,
        )

    response = JSONResponse(content=status.model_dump(by_alias=True, exclude_none=True))
    return attach_session_cookie(response, session, settings, cookie_encoder)


@router.api_route("/v1/auth/spotify/logout", methods=["GET", "POST"], response_model=LogoutResponse)
async def spotify_logout(
    session: Annotated[BrowserSession, Depends(get_browser_session)],
    token_service: Annotated[Any, Depends(get_spotify_token_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    cookie_encoder: Annotated[Any, Depends(get_session_cookie_encoder)],
) -> JSONResponse:
    """Forget the session's Spotify credentials."""
    await token_service.logout(session.session_id)
    body = LogoutResponse(session_id=session.session_id)
    response = JSONResponse(content=body.model_dump(by_alias=True))
    return attach_session_cookie(response, session, settings, cookie_encoder)
