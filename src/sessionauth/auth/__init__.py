"""
Authentication modules for sessionauth.

This package contains the OAuth provider client, the authentication
service with its batch token refresh, and the session middleware.
"""

from __future__ import annotations

from .oauth import OAuthClient
from .service import OAuthAuthenticationService, UserHandler
from .middleware import SessionMiddleware, PUBLIC_AUTH_ROUTES

__all__ = [
    # OAuth
    "OAuthClient",
    # Authentication service
    "OAuthAuthenticationService",
    "UserHandler",
    # Middleware
    "SessionMiddleware",
    "PUBLIC_AUTH_ROUTES",
]
