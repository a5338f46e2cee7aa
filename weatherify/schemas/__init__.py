"""Pydantic schemas exposed by the API."""

from .auth import LoginStatusResponse, LogoutResponse

__all__ = ["LoginStatusResponse", "LogoutResponse"]
