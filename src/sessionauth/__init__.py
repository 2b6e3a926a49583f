"""
sessionauth - signed server-side sessions with an OAuth2/OIDC token lifecycle.

This package keeps OAuth tokens in storage-backed sessions referenced by a
signed cookie, refreshes them before they expire and exposes the login
flow as FastAPI routes.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"
__description__ = "Signed server-side sessions with OAuth2/OIDC token lifecycle"

# Core exports
from .core import get_settings, get_logger
from .main import create_app

__all__ = [
    "__version__",
    "__license__",
    "__description__",
    "get_settings",
    "get_logger",
    "create_app",
]
