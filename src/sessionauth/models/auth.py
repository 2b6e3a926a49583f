"""
Authentication related Pydantic models for sessionauth.

This module contains provider wire models and the payloads returned by
the authentication routes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenResponse(BaseModel):
    """
    Token endpoint response for the authorization-code and refresh grants.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    access_token: str = Field(..., description="Access token", min_length=1)
    id_token: Optional[str] = Field(None, description="OIDC ID token")
    refresh_token: Optional[str] = Field(None, description="Refresh token, when issued or rotated")
    expires_in: int = Field(3600, description="Access token lifetime in seconds", ge=0)
    token_type: Optional[str] = Field(None, description="Token type, usually Bearer")
    scope: Optional[str] = Field(None, description="Granted scope")


class OpenIDConfiguration(BaseModel):
    """
    Subset of the OpenID provider metadata used by the service.
    """

    model_config = ConfigDict(extra="ignore")

    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    end_session_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None

    @classmethod
    def from_issuer(cls, issuer: str) -> OpenIDConfiguration:
        """Conventional endpoint layout for providers without discovery."""
        return cls(
            authorization_endpoint=f"{issuer}/authorize",
            token_endpoint=f"{issuer}/oauth/token",
            userinfo_endpoint=f"{issuer}/userinfo",
            end_session_endpoint=f"{issuer}/v2/logout",
            revocation_endpoint=f"{issuer}/oauth/revoke",
        )


class RefreshOutcome(str, Enum):
    """What happened when a session's tokens were checked for refresh."""

    REFRESHED = "refreshed"
    NOT_NEEDED = "not_needed"
    NO_REFRESH_TOKEN = "no_refresh_token"
    SUPERSEDED = "superseded"
    FAILED = "failed"


class RefreshJobResult(BaseModel):
    """
    Aggregate of one batch refresh run. Not persisted.
    """

    total: int = Field(0, description="Sessions that needed a refresh", ge=0)
    refreshed: int = Field(0, description="Sessions refreshed and saved", ge=0)
    failed: int = Field(0, description="Sessions whose refresh failed", ge=0)


class RefreshTokensResponse(RefreshJobResult):
    """
    Response model for the token refresh route.
    """

    success: bool = Field(..., description="Whether the job ran to completion")


class AuthenticatedResponse(BaseModel):
    """
    Response model for the authentication probe.
    """

    authenticated: bool = Field(..., description="Whether the session is authenticated")


class ProtectedDataResponse(BaseModel):
    """
    Response model for the protected data probe.
    """

    message: str = Field(..., description="Human-readable message", min_length=1)
    user: Dict[str, Any] = Field(..., description="Authenticated user")


class ErrorResponse(BaseModel):
    """
    Error envelope returned by the exception handlers.
    """

    error: Dict[str, Any] = Field(..., description="Error message, type and code")
