"""
Security utilities for sessionauth.

This module provides random identifier generation, constant-time
comparison, bearer header parsing, redirect validation and
security headers.
"""

from __future__ import annotations

import hmac
import secrets
from typing import Dict, Optional
from urllib.parse import urlparse

from .exceptions import AuthenticationError


def generate_session_id() -> str:
    """
    Generate a secure session ID.

    Returns:
        Random session ID string (256 bits of entropy)
    """
    return secrets.token_urlsafe(32)


def generate_state() -> str:
    """
    Generate a secure random state parameter for OAuth.

    Returns:
        Random state string
    """
    return secrets.token_urlsafe(32)


def generate_request_id() -> str:
    """
    Generate a unique request ID for tracing.

    Returns:
        Random request ID string
    """
    return secrets.token_urlsafe(16)


def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two strings without leaking where they differ."""
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def validate_bearer_token(authorization_header: Optional[str]) -> str:
    """
    Extract and validate bearer token from Authorization header.

    Args:
        authorization_header: Authorization header value

    Returns:
        Extracted token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization_header:
        raise AuthenticationError("Missing Authorization header", error_code="missing_token")

    parts = authorization_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid Authorization header format", error_code="invalid_token")

    return parts[1]


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """
    Mask sensitive data for logging.

    Args:
        data: Sensitive data to mask
        visible_chars: Number of characters to show at the end

    Returns:
        Masked string
    """
    if len(data) <= visible_chars:
        return "*" * len(data)

    return "*" * (len(data) - visible_chars) + data[-visible_chars:]


def is_safe_redirect_path(url: Optional[str]) -> bool:
    """
    Check if a post-login redirect target stays on this site.

    Only absolute paths are accepted; scheme-relative (``//host``) and
    backslash tricks are rejected.

    Args:
        url: Redirect target to check

    Returns:
        True if the target is a same-origin path
    """
    if not url or not url.startswith("/") or url.startswith("//"):
        return False
    if "\\" in url:
        return False

    parsed = urlparse(url)
    return not parsed.scheme and not parsed.netloc


def get_security_headers() -> Dict[str, str]:
    """
    Get security headers for HTTP responses.

    Returns:
        Dictionary of security headers
    """
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "no-store",
    }
