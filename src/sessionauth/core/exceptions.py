"""
Custom exceptions for sessionauth.

This module defines the error taxonomy shared by the session store, the
OAuth service and the HTTP adapter, with a JSON-friendly error format.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SessionAuthError(Exception):
    """Base exception for all sessionauth errors."""

    def __init__(
        self,
        message: str,
        error_type: str = "sessionauth_error",
        error_code: Optional[str] = None,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format."""
        error_dict = {
            "message": self.message,
            "type": self.error_type,
        }

        if self.error_code:
            error_dict["code"] = self.error_code

        if self.details:
            error_dict.update(self.details)

        return {"error": error_dict}


class SignatureInvalidError(SessionAuthError):
    """Cookie is empty, malformed, or signed with an unknown secret."""

    def __init__(self, message: str = "Invalid session cookie") -> None:
        # No details: callers must not learn which check failed.
        super().__init__(
            message=message,
            error_type="signature_invalid",
            error_code="signature_invalid",
            status_code=400
        )


class StorageError(SessionAuthError):
    """Backing store unavailable or rejected an operation."""

    def __init__(
        self,
        message: str = "Session storage unavailable",
        error_code: Optional[str] = "storage_unavailable",
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(
            message=message,
            error_type="storage_error",
            error_code=error_code,
            status_code=503,
            details=details
        )


class AuthenticationError(SessionAuthError):
    """Authentication related errors."""

    def __init__(
        self,
        message: str = "Authentication required",
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(
            message=message,
            error_type="authentication_error",
            error_code=error_code,
            status_code=401,
            details=details
        )


class CsrfMismatchError(SessionAuthError):
    """OAuth callback state does not match the state stored in the session."""

    def __init__(
        self,
        message: str = "Invalid or missing state parameter",
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(
            message=message,
            error_type="csrf_mismatch",
            error_code="invalid_state",
            status_code=400,
            details=details
        )


class ProviderError(SessionAuthError):
    """Network or HTTP failure talking to the OAuth provider."""

    def __init__(
        self,
        message: str = "OAuth provider error",
        error_code: Optional[str] = "provider_error",
        provider_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(
            message=message,
            error_type="provider_error",
            error_code=error_code,
            status_code=502,
            details=details
        )
        self.provider_status = provider_status


class RefreshTokenInvalidError(SessionAuthError):
    """The provider rejected the refresh grant; the user must log in again."""

    def __init__(
        self,
        message: str = "Refresh token is invalid or expired",
        provider_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(
            message=message,
            error_type="authentication_error",
            error_code="refresh_token_invalid",
            status_code=401,
            details=details
        )
        self.provider_status = provider_status


class ConfigurationError(SessionAuthError):
    """Configuration related errors."""

    def __init__(
        self,
        message: str = "Configuration error",
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(
            message=message,
            error_type="configuration_error",
            error_code=error_code,
            status_code=500,
            details=details
        )
