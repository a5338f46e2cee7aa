"""Schemas returned by the Spotify authentication endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LoginStatusResponse(BaseModel):
    """Login status reported to the front-end."""

    model_config = ConfigDict(populate_by_name=True)

    logged_in: bool = Field(..., alias="loggedIn")
    message: str
    session_id: str = Field(..., alias="sessionId")
    user_id: Optional[str] = Field(None, alias="userId")
    user_display_name: Optional[str] = Field(None, alias="userDisplayName")


class LogoutResponse(BaseModel):
    """Confirmation returned after clearing a session's credentials."""

    model_config = ConfigDict(populate_by_name=True)

    logged_out: bool = Field(True, alias="loggedOut")
    message: str = "User logged out"
    session_id: str = Field(..., alias="sessionId")


__all__ = ["LoginStatusResponse", "LogoutResponse"]
