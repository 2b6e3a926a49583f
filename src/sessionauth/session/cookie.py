"""
Signed session cookies.

Wire format: ``<base64url(session_id)>.<base64url(hmac_sha256(secret, session_id))>``
without padding. The cookie only references a session; it never carries
session data.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from typing import Optional, Sequence

from ..core import ConfigurationError, SignatureInvalidError


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("ascii"))


def _signature(session_id: str, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), session_id.encode("utf-8"), hashlib.sha256).digest()


def _check_secrets(secrets: Sequence[str]) -> None:
    if not secrets or any(not secret for secret in secrets):
        raise ConfigurationError(
            "At least one non-empty session secret is required",
            error_code="missing_configuration",
            details={"missing": ["SESSION_SECRETS"]}
        )


def sign(session_id: str, secrets: Sequence[str]) -> str:
    """
    Sign a session ID with the newest secret.

    Args:
        session_id: Session identifier
        secrets: Ordered secrets; ``secrets[0]`` signs

    Returns:
        Cookie value
    """
    _check_secrets(secrets)
    if not session_id:
        raise ValueError("Cannot sign an empty session id")
    return f"{_b64encode(session_id.encode('utf-8'))}.{_b64encode(_signature(session_id, secrets[0]))}"


def verify(cookie_value: Optional[str], secrets: Sequence[str]) -> str:
    """
    Verify a cookie value against every secret, newest first.

    Args:
        cookie_value: Cookie value from the request
        secrets: Ordered secrets accepted for verification

    Returns:
        The session ID

    Raises:
        SignatureInvalidError: If the value is empty, malformed or matches no secret
    """
    _check_secrets(secrets)
    if not cookie_value:
        raise SignatureInvalidError()

    parts = cookie_value.split(".")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise SignatureInvalidError()

    try:
        session_id = _b64decode(parts[0]).decode("utf-8")
        provided = _b64decode(parts[1])
    except (binascii.Error, UnicodeError, ValueError):
        raise SignatureInvalidError() from None

    # Only the canonical encoding is accepted; the decoder tolerates stray characters.
    if not session_id or _b64encode(session_id.encode("utf-8")) != parts[0] or _b64encode(provided) != parts[1]:
        raise SignatureInvalidError()

    matched = False
    for secret in secrets:
        # Every secret is checked so timing does not reveal which one matched.
        if hmac.compare_digest(provided, _signature(session_id, secret)):
            matched = True

    if not matched:
        raise SignatureInvalidError()
    return session_id


class CookieCodec:
    """Signs and verifies session cookies with a fixed set of rotating secrets."""

    def __init__(self, secrets: Sequence[str]):
        _check_secrets(secrets)
        self.secrets = tuple(secrets)

    def sign(self, session_id: str) -> str:
        """Sign a session ID with the current secret."""
        return sign(session_id, self.secrets)

    def verify(self, cookie_value: Optional[str]) -> str:
        """Return the session ID carried by a valid cookie."""
        return verify(cookie_value, self.secrets)
