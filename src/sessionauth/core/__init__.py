"""
Core modules for sessionauth.

This package contains the core infrastructure components including
configuration, exceptions, logging, and security utilities.
"""

from __future__ import annotations

from .config import (
    AuthConfig,
    CookieStorageConfig,
    LoggingConfig,
    MemoryStorageConfig,
    RedisStorageConfig,
    ServerConfig,
    SessionConfig,
    Settings,
    StorageConfig,
    get_settings,
    reload_settings,
)
from .exceptions import (
    SessionAuthError,
    SignatureInvalidError,
    StorageError,
    AuthenticationError,
    CsrfMismatchError,
    ProviderError,
    RefreshTokenInvalidError,
    ConfigurationError,
)
from .logging import (
    get_logger,
    setup_logging,
    redact,
    log_request_start,
    log_request_end,
    log_auth_event,
    log_provider_call,
    log_error,
    log_security_event,
)
from .security import (
    generate_session_id,
    generate_state,
    generate_request_id,
    constant_time_equals,
    validate_bearer_token,
    mask_sensitive_data,
    is_safe_redirect_path,
    get_security_headers,
)

__all__ = [
    # Configuration
    "AuthConfig",
    "CookieStorageConfig",
    "LoggingConfig",
    "MemoryStorageConfig",
    "RedisStorageConfig",
    "ServerConfig",
    "SessionConfig",
    "Settings",
    "StorageConfig",
    "get_settings",
    "reload_settings",
    # Exceptions
    "SessionAuthError",
    "SignatureInvalidError",
    "StorageError",
    "AuthenticationError",
    "CsrfMismatchError",
    "ProviderError",
    "RefreshTokenInvalidError",
    "ConfigurationError",
    # Logging
    "get_logger",
    "setup_logging",
    "redact",
    "log_request_start",
    "log_request_end",
    "log_auth_event",
    "log_provider_call",
    "log_error",
    "log_security_event",
    # Security
    "generate_session_id",
    "generate_state",
    "generate_request_id",
    "constant_time_equals",
    "validate_bearer_token",
    "mask_sensitive_data",
    "is_safe_redirect_path",
    "get_security_headers",
]
