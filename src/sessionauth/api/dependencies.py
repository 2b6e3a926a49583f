"""
FastAPI dependencies for the sessionauth routes.
"""

from __future__ import annotations

from fastapi import Request

from ..auth import OAuthAuthenticationService
from ..core import AuthConfig, ConfigurationError
from ..session import SessionHandler


def get_session(request: Request) -> SessionHandler:
    """Session handler attached by the session middleware."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise ConfigurationError(
            "Session middleware is not installed",
            error_code="session_middleware_missing"
        )
    return session


def get_auth_service(request: Request) -> OAuthAuthenticationService:
    return request.app.state.auth_service


def get_auth_config(request: Request) -> AuthConfig:
    return request.app.state.auth_service.config
