"""
Configuration management for sessionauth.

This module handles all application configuration using Pydantic Settings
for environment variable management and validation.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .exceptions import ConfigurationError


class MemoryStorageConfig(BaseModel):
    """In-process storage, for development and single-worker deployments."""

    type: Literal["memory"] = "memory"


class RedisStorageConfig(BaseModel):
    """Redis storage settings."""

    type: Literal["redis"] = "redis"
    url: Optional[str] = Field(
        default=None,
        description="Redis URL; takes precedence over host/port when set"
    )
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port", ge=1, le=65535)
    username: Optional[str] = Field(default=None, description="Redis username")
    password: Optional[str] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database index", ge=0)
    tls: bool = Field(default=False, description="Connect with TLS")
    socket_timeout: float = Field(
        default=5.0,
        description="Socket timeout in seconds for Redis commands",
        gt=0
    )

    def connection_url(self) -> str:
        """Build the Redis connection URL."""
        if self.url:
            return self.url
        scheme = "rediss" if self.tls else "redis"
        auth = ""
        if self.username or self.password:
            auth = f"{self.username or ''}:{self.password or ''}@"
        return f"{scheme}://{auth}{self.host}:{self.port}/{self.db}"


class CookieStorageConfig(BaseModel):
    """Cookie-only storage; declared for completeness, refused at startup."""

    type: Literal["cookie"] = "cookie"


StorageConfig = Annotated[
    Union[MemoryStorageConfig, RedisStorageConfig, CookieStorageConfig],
    Field(discriminator="type"),
]


class SessionConfig(BaseSettings):
    """Session and cookie configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="SESSION_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="forbid"
    )

    secrets: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Cookie signing secrets; the first one signs, all verify"
    )
    cookie_name: str = Field(
        default="auth.session",
        description="Name of the session cookie"
    )
    max_age: int = Field(
        default=86400,
        description="Session lifetime in seconds",
        ge=60,
        le=60 * 60 * 24 * 30
    )
    key_prefix: str = Field(
        default="sess",
        description="Storage key prefix for session records",
        min_length=1
    )
    cookie_secure: bool = Field(default=False, description="Set the Secure flag")
    cookie_http_only: bool = Field(default=True, description="Set the HttpOnly flag")
    cookie_same_site: Literal["lax", "strict", "none"] = Field(
        default="lax",
        description="SameSite attribute"
    )
    cookie_domain: Optional[str] = Field(default=None, description="Cookie domain")
    cookie_path: str = Field(default="/", description="Cookie path")

    storage: StorageConfig = Field(
        default_factory=MemoryStorageConfig,
        description="Storage backend for session records"
    )

    @field_validator("secrets", mode="before")
    @classmethod
    def split_secrets(cls, v: Any) -> Any:
        """Accept a JSON list or a comma-separated string."""
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("secrets")
    @classmethod
    def validate_secrets(cls, v: List[str]) -> List[str]:
        """Reject blank secrets."""
        if any(not secret for secret in v):
            raise ValueError("Session secrets must not be empty strings")
        return v


class AuthConfig(BaseSettings):
    """Authentication configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
        extra="forbid"
    )

    # OAuth provider
    issuer: str = Field(default="", description="OAuth/OIDC issuer base URL")
    client_id: str = Field(default="", description="OAuth client ID")
    client_secret: str = Field(default="", description="OAuth client secret")
    audience: Optional[str] = Field(default=None, description="API audience")
    scope: str = Field(
        default="openid profile email offline_access",
        description="OAuth scope"
    )
    callback_uri: str = Field(
        default="",
        description="Redirect URI registered with the provider"
    )
    discovery: bool = Field(
        default=True,
        description="Resolve endpoints through OpenID discovery"
    )
    discovery_cache_ttl: int = Field(
        default=3600,
        description="Seconds to cache the OpenID configuration",
        ge=0
    )
    provider_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for calls to the provider",
        gt=0,
        le=120
    )

    # Token refresh
    token_refresh_api_key: Optional[str] = Field(
        default=None,
        description="Bearer key required by the token refresh route"
    )
    refresh_threshold: int = Field(
        default=300,
        description="Seconds before expiry at which tokens are refreshed",
        ge=0,
        le=3600
    )
    refresh_concurrency: int = Field(
        default=5,
        description="Concurrent refreshes in the batch job",
        ge=1,
        le=100
    )

    # Routing
    login_path: str = Field(default="/api/auth/login", description="Login route")
    logout_url: Optional[str] = Field(
        default=None,
        description="Where the provider sends the user after logout"
    )
    unprotected_routes: List[str] = Field(
        default_factory=lambda: ["/health"],
        description="Routes that bypass authentication; 'prefix*' wildcards allowed"
    )
    whitelist_file_types: List[str] = Field(
        default_factory=list,
        description="File extensions that bypass authentication"
    )

    @field_validator("issuer")
    @classmethod
    def strip_issuer(cls, v: str) -> str:
        """Drop any trailing slash from the issuer."""
        return v.rstrip("/")


class ServerConfig(BaseSettings):
    """Server configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="SERVER_",
        case_sensitive=False,
        extra="forbid"
    )

    host: str = Field(default="0.0.0.0", description="Server host address")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)
    workers: int = Field(default=1, description="Number of worker processes", ge=1, le=16)
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # CORS settings
    cors_origins: List[str] = Field(default=["*"], description="Allowed CORS origins")
    cors_methods: List[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        description="Allowed CORS methods"
    )
    cors_headers: List[str] = Field(default=["*"], description="Allowed CORS headers")


class LoggingConfig(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        extra="forbid"
    )

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="json", description="Log format (json or text)")
    file_path: Optional[str] = Field(default=None, description="Log file path (optional)")
    max_file_size: int = Field(
        default=10485760,  # 10MB
        description="Maximum log file size in bytes",
        ge=1048576,  # 1MB
        le=104857600  # 100MB
    )
    backup_count: int = Field(
        default=5,
        description="Number of backup log files",
        ge=1,
        le=20
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = {"json", "text"}
        if v.lower() not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v.lower()


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application info
    app_name: str = Field(default="sessionauth", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    app_description: str = Field(
        default="Signed server-side sessions with OAuth2/OIDC token lifecycle",
        description="Application description"
    )

    # Environment
    environment: str = Field(default="development", description="Application environment")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Sub-configurations
    session: SessionConfig = Field(default_factory=SessionConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = {"development", "staging", "production", "testing"}
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()

    def validate_for_startup(self) -> None:
        """
        Check the values the service cannot run without.

        Raises:
            ConfigurationError: If any required value is missing
        """
        missing = [
            name
            for name, value in (
                ("AUTH_ISSUER", self.auth.issuer),
                ("AUTH_CLIENT_ID", self.auth.client_id),
                ("AUTH_CLIENT_SECRET", self.auth.client_secret),
                ("AUTH_CALLBACK_URI", self.auth.callback_uri),
            )
            if not value
        ]
        if not self.session.secrets:
            missing.append("SESSION_SECRETS")

        if missing:
            raise ConfigurationError(
                "Missing required configuration",
                error_code="missing_configuration",
                details={"missing": missing}
            )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global _settings
    _settings = Settings()
    return _settings
