"""
Session modules for sessionauth.

This package contains the signed cookie codec, the storage drivers, the
session store and the per-request session handler.
"""

from __future__ import annotations

from .cookie import CookieCodec, sign, verify
from .storage import StorageDriver, MemoryStorage, RedisStorage, create_storage
from .store import SessionStore, SessionUpdater
from .handler import SessionHandler

__all__ = [
    # Cookies
    "CookieCodec",
    "sign",
    "verify",
    # Storage
    "StorageDriver",
    "MemoryStorage",
    "RedisStorage",
    "create_storage",
    # Sessions
    "SessionStore",
    "SessionUpdater",
    "SessionHandler",
]
