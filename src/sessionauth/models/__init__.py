"""
sessionauth data models.

This module provides the Pydantic models for session records, OAuth
provider payloads and route responses.
"""

from __future__ import annotations

# Session models
from .session import (
    AuthState,
    SessionData,
    SessionRecord,
    SavedSession,
)

# Authentication models
from .auth import (
    TokenResponse,
    OpenIDConfiguration,
    RefreshOutcome,
    RefreshJobResult,
    RefreshTokensResponse,
    AuthenticatedResponse,
    ProtectedDataResponse,
    ErrorResponse,
)

__all__ = [
    # Session models
    "AuthState",
    "SessionData",
    "SessionRecord",
    "SavedSession",
    # Authentication models
    "TokenResponse",
    "OpenIDConfiguration",
    "RefreshOutcome",
    "RefreshJobResult",
    "RefreshTokensResponse",
    "AuthenticatedResponse",
    "ProtectedDataResponse",
    "ErrorResponse",
]
