"""
Logging configuration for sessionauth.

structlog builds the event dictionaries and hands them to the standard
library, so every configured handler (stdout and the optional rotating
file) renders the same events. Records from other libraries that log
through ``logging`` directly go through the same processors.
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import FilteringBoundLogger, Processor

from .config import LoggingConfig
from .security import mask_sensitive_data


SENSITIVE_KEYS = {
    "password", "token", "secret", "secrets", "authorization", "cookie",
    "access_token", "refresh_token", "id_token", "client_secret",
    "api_key", "token_refresh_api_key", "code",
}

# key=value or key: value pairs embedded in free text
_EMBEDDED_SECRET = re.compile(
    r"(?i)\b(access_token|refresh_token|id_token|client_secret|password|api_key|authorization)"
    r"(\s*[=:]\s*)(?:bearer\s+)?[^\s&,;\"']+"
)

REDACTED = "[REDACTED]"


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Route structlog through the standard library and install the handlers.

    Args:
        config: Logging configuration. If None, defaults are read from the environment.
    """
    if config is None:
        config = LoggingConfig()
    level = getattr(logging, config.level)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in _build_handlers(config, level):
        root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[
            *_pre_chain(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _pre_chain() -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_request_id,
        _filter_sensitive_data,
    ]


def _formatter(log_format: str, colors: bool) -> structlog.stdlib.ProcessorFormatter:
    renderer: Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _build_handlers(config: LoggingConfig, level: int) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(config.format, colors=sys.stdout.isatty()))
    handlers: List[logging.Handler] = [console]

    if config.file_path:
        path = Path(config.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            filename=path,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        # Files never get ANSI colours
        rotating.setFormatter(_formatter(config.format, colors=False))
        handlers.append(rotating)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def _add_request_id(
    logger: Any,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    # Bound by the session middleware
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def _filter_sensitive_data(
    logger: Any,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    return redact(event_dict)


def redact(data: Any) -> Any:
    """
    Replace sensitive values with a marker.

    Values stored under a sensitive key are replaced whole. In free text only
    the value of an embedded ``key=value`` or ``key: value`` pair is replaced,
    so messages that merely name a sensitive setting stay readable.
    """
    if isinstance(data, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS
            else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item) for item in data]
    if isinstance(data, str):
        return _EMBEDDED_SECRET.sub(lambda match: f"{match.group(1)}{match.group(2)}{REDACTED}", data)
    return data


def get_logger(name: str = __name__) -> FilteringBoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        Configured structlog logger instance.
    """
    return structlog.get_logger(name)


def log_request_start(
    logger: FilteringBoundLogger,
    method: str,
    path: str,
    client_ip: str,
    user_agent: Optional[str] = None,
    request_id: Optional[str] = None
) -> None:
    """Log the start of an HTTP request."""
    logger.info(
        "Request started",
        method=method,
        path=path,
        client_ip=client_ip,
        user_agent=user_agent,
        request_id=request_id
    )


def log_request_end(
    logger: FilteringBoundLogger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    request_id: Optional[str] = None
) -> None:
    """Log the end of an HTTP request."""
    logger.info(
        "Request completed",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
        request_id=request_id
    )


def log_auth_event(
    logger: FilteringBoundLogger,
    event_type: str,
    session_id: Optional[str] = None,
    success: bool = True,
    details: Optional[Dict[str, Any]] = None
) -> None:
    """Log authentication and session lifecycle events."""
    logger.info(
        "Authentication event",
        event_type=event_type,
        session=mask_sensitive_data(session_id) if session_id else None,
        success=success,
        **(details or {})
    )


def log_provider_call(
    logger: FilteringBoundLogger,
    endpoint: str,
    method: str,
    status_code: Optional[int],
    duration_ms: float
) -> None:
    """Log calls to the OAuth provider."""
    logger.info(
        "Provider call",
        endpoint=endpoint,
        method=method,
        status_code=status_code,
        duration_ms=duration_ms
    )


def log_error(
    logger: FilteringBoundLogger,
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> None:
    """Log errors with context."""
    logger.error(
        "Error occurred",
        error_type=type(error).__name__,
        error_message=str(error),
        request_id=request_id,
        **(context or {}),
        exc_info=True
    )


def log_security_event(
    logger: FilteringBoundLogger,
    event_type: str,
    severity: str,
    client_ip: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> None:
    """Log security-related events."""
    logger.warning(
        "Security event",
        event_type=event_type,
        severity=severity,
        client_ip=client_ip,
        **(details or {})
    )
