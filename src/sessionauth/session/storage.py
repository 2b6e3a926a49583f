"""
Storage drivers for session records.

A driver is any object offering ``get``, ``set`` (with TTL), ``remove`` and
``keys`` (by prefix) as coroutines over string values. The session store
treats all drivers as interchangeable.
"""

from __future__ import annotations

import re
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..core import (
    get_logger,
    ConfigurationError,
    CookieStorageConfig,
    MemoryStorageConfig,
    RedisStorageConfig,
    StorageConfig,
    StorageError,
)


class StorageDriver(Protocol):
    """Key-value capability required by the session store."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def remove(self, key: str) -> None: ...

    async def keys(self, prefix: str) -> List[str]: ...

    async def close(self) -> None: ...


class MemoryStorage:
    """In-process driver with lazy TTL expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._items: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    def _live(self, key: str) -> Optional[str]:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._items[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        if ttl <= 0:
            self._items.pop(key, None)
            return
        self._items[key] = (value, self._clock() + ttl)

    async def remove(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self, prefix: str) -> List[str]:
        return [key for key in list(self._items) if key.startswith(prefix) and self._live(key) is not None]

    async def close(self) -> None:
        self._items.clear()


_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class RedisStorage:
    """Redis driver; expiry is delegated to native key TTLs."""

    def __init__(self, config: RedisStorageConfig, client: Optional[aioredis.Redis] = None):
        self.logger = get_logger(__name__)
        self.config = config
        self.client = client or aioredis.from_url(
            config.connection_url(),
            decode_responses=True,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_timeout,
        )

    def _fail(self, operation: str, error: Exception) -> StorageError:
        self.logger.error("Redis operation failed", operation=operation, error=str(error))
        return StorageError(
            f"Session storage {operation} failed",
            details={"operation": operation}
        )

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise self._fail("get", e) from e

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            if ttl <= 0:
                await self.client.delete(key)
            else:
                await self.client.set(key, value, ex=int(ttl))
        except RedisError as e:
            raise self._fail("set", e) from e

    async def remove(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise self._fail("remove", e) from e

    async def keys(self, prefix: str) -> List[str]:
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        try:
            return [key async for key in self.client.scan_iter(match=pattern, count=500)]
        except RedisError as e:
            raise self._fail("keys", e) from e

    async def close(self) -> None:
        await self.client.aclose()


def create_storage(config: StorageConfig, clock: Callable[[], float] = time.time) -> StorageDriver:
    """
    Build the storage driver selected by configuration.

    Args:
        config: Validated storage variant
        clock: Wall clock used by the in-memory driver

    Returns:
        Storage driver

    Raises:
        ConfigurationError: For the cookie-only variant, which cannot hold server-side records
    """
    if isinstance(config, MemoryStorageConfig):
        return MemoryStorage(clock=clock)
    if isinstance(config, RedisStorageConfig):
        return RedisStorage(config)
    if isinstance(config, CookieStorageConfig):
        raise ConfigurationError(
            "Cookie-only session storage is not supported; session cookies carry only a signed id",
            error_code="unsupported_storage",
            details={"storage": config.type}
        )
    raise ConfigurationError(
        "Unknown session storage configuration",
        error_code="unsupported_storage"
    )
