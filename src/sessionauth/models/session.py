"""
Session related Pydantic models for sessionauth.

Session records are immutable: every change produces a new instance,
which the session store persists explicitly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AuthState(BaseModel):
    """
    Authentication state kept in the reserved ``auth`` slot of a session.

    ``expires_at`` is the epoch second at which the access token expires and
    is the only input to refresh decisions.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    is_authenticated: bool = Field(False, description="Whether the user is logged in")
    access_token: Optional[str] = Field(None, description="OAuth access token")
    id_token: Optional[str] = Field(None, description="OIDC ID token")
    refresh_token: Optional[str] = Field(None, description="OAuth refresh token")
    expires_at: Optional[int] = Field(None, description="Access token expiry (epoch seconds)")
    user_info: Dict[str, Any] = Field(default_factory=dict, description="Provider user info")

    @model_validator(mode="after")
    def check_authenticated_tokens(self) -> AuthState:
        """An authenticated state always carries an access token and its expiry."""
        if self.is_authenticated and (not self.access_token or self.expires_at is None):
            raise ValueError("Authenticated state requires access_token and expires_at")
        return self

    def is_expired(self, now: float) -> bool:
        """Check if the access token has expired."""
        return self.expires_at is not None and now >= self.expires_at

    def expires_within(self, threshold: int, now: float) -> bool:
        """Check if the access token expires within ``threshold`` seconds (or already has)."""
        return self.expires_at is not None and now + threshold >= self.expires_at

    def with_tokens(
        self,
        access_token: str,
        expires_in: int,
        now: float,
        id_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> AuthState:
        """
        Return an authenticated copy carrying new tokens.

        ID and refresh tokens are only replaced when the provider sent new ones.
        """
        return AuthState(
            is_authenticated=True,
            access_token=access_token,
            id_token=id_token or self.id_token,
            refresh_token=refresh_token or self.refresh_token,
            expires_at=int(now) + expires_in,
            user_info=self.user_info,
        )

    def deauthenticated(self) -> AuthState:
        """Return a copy marked as logged out, keeping the stored tokens for comparison."""
        return self.model_copy(update={"is_authenticated": False})


class SessionData(BaseModel):
    """
    Typed session payload.

    ``auth`` is reserved for the authentication service; ``extra`` is the
    untyped extension mapping for application data.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    auth: AuthState = Field(default_factory=AuthState, description="Authentication state")
    user: Optional[Dict[str, Any]] = Field(None, description="Application user record")
    state: Optional[str] = Field(None, description="Pending OAuth CSRF state")
    redirect_url: Optional[str] = Field(None, description="Where to go after login")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Application data")

    def evolve(self, **changes: Any) -> SessionData:
        """Return a validated copy with ``changes`` applied."""
        values = {
            "auth": self.auth,
            "user": self.user,
            "state": self.state,
            "redirect_url": self.redirect_url,
            "extra": self.extra,
        }
        values.update(changes)
        return SessionData.model_validate(values)


class SessionRecord(BaseModel):
    """A stored session."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Session identifier", min_length=1)
    data: SessionData = Field(default_factory=SessionData, description="Session payload")
    created_at: datetime = Field(..., description="Session creation time")
    last_accessed_at: datetime = Field(..., description="Last load or save")
    expires_at: datetime = Field(..., description="Session expiration time")

    def is_expired(self, now: datetime) -> bool:
        """Check if session is expired."""
        return now >= self.expires_at


class SavedSession(BaseModel):
    """Result of persisting a session: the stored record and its signed cookie."""

    model_config = ConfigDict(frozen=True)

    record: SessionRecord
    cookie_value: str = Field(..., min_length=1)
