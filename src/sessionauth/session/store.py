"""
Session store for sessionauth.

This module owns session records: it creates them, resolves signed cookies
to records, persists updates with a TTL and removes them.
"""

from __future__ import annotations

import math
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from pydantic import ValidationError

from ..core import (
    get_logger,
    SessionConfig,
    SignatureInvalidError,
    StorageError,
    generate_session_id,
    log_auth_event,
    log_security_event,
    mask_sensitive_data,
)
from ..models import SavedSession, SessionData, SessionRecord
from .cookie import CookieCodec
from .storage import StorageDriver

T = TypeVar("T")

SessionUpdater = Callable[[SessionData], SessionData]


class SessionStore:
    """Creates, loads, saves and destroys session records."""

    def __init__(
        self,
        storage: StorageDriver,
        codec: CookieCodec,
        config: SessionConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.codec = codec
        self.config = config
        self.logger = get_logger(__name__)
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def key(self, session_id: str) -> str:
        """Storage key for a session ID."""
        return f"{self.config.key_prefix}:{session_id}"

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("Session storage failure", operation=operation, error=str(e))
            raise StorageError(
                f"Session storage {operation} failed",
                details={"operation": operation}
            ) from e

    async def load(self, cookie_value: Optional[str]) -> Optional[SessionRecord]:
        """
        Resolve a cookie value to its session.

        Args:
            cookie_value: Signed cookie value from the request

        Returns:
            The session, or None for a missing, tampered, unknown or expired session

        Raises:
            StorageError: If the storage driver fails
        """
        if not cookie_value:
            return None

        try:
            session_id = self.codec.verify(cookie_value)
        except SignatureInvalidError:
            log_security_event(self.logger, "invalid_session_cookie", "low")
            return None

        record = await self.get(session_id)
        if record is None:
            return None
        return record.model_copy(update={"last_accessed_at": self._now()})

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        """
        Fetch a session by ID, bypassing the cookie.

        Expired records are removed and reported as missing.
        """
        key = self.key(session_id)
        raw = await self._call("get", self.storage.get(key))
        if raw is None:
            return None

        try:
            record = SessionRecord.model_validate_json(raw)
        except ValidationError as e:
            self.logger.warning(
                "Discarding unreadable session record",
                session=mask_sensitive_data(session_id),
                error=str(e)
            )
            return None

        if record.id != session_id:
            self.logger.warning("Session record id mismatch", session=mask_sensitive_data(session_id))
            return None

        if record.is_expired(self._now()):
            await self._call("remove", self.storage.remove(key))
            log_auth_event(self.logger, "expired_session_removed", session_id=session_id)
            return None

        return record

    async def create(self, initial_data: Optional[SessionData] = None) -> SessionRecord:
        """
        Create and persist a new session.

        Args:
            initial_data: Starting payload, empty when omitted

        Returns:
            The stored session
        """
        record = self.new_record(initial_data)
        await self._write(record)

        log_auth_event(
            self.logger,
            "session_created",
            session_id=record.id,
            details={"expires_at": record.expires_at.isoformat()}
        )
        return record

    def new_record(self, initial_data: Optional[SessionData] = None) -> SessionRecord:
        """Build a session with a fresh ID without persisting it."""
        now = self._now()
        return SessionRecord(
            id=generate_session_id(),
            data=initial_data or SessionData(),
            created_at=now,
            last_accessed_at=now,
            expires_at=now + timedelta(seconds=self.config.max_age),
        )

    def update(self, record: SessionRecord, updater: SessionUpdater) -> SessionRecord:
        """
        Apply ``updater`` to the session payload.

        Nothing is persisted; call :meth:`save` to make the change durable.
        """
        data = updater(record.data)
        if not isinstance(data, SessionData):
            raise TypeError("Session updaters must return SessionData")
        return record.model_copy(update={"data": data})

    async def save(self, record: SessionRecord) -> SavedSession:
        """
        Persist a session, extending its lifetime, and sign its cookie.

        Args:
            record: Session to store

        Returns:
            The stored record and the cookie value for the response

        Raises:
            StorageError: If the storage driver write fails
        """
        now = self._now()
        record = record.model_copy(update={
            "last_accessed_at": now,
            "expires_at": now + timedelta(seconds=self.config.max_age),
        })
        await self._write(record)
        return SavedSession(record=record, cookie_value=self.codec.sign(record.id))

    async def touch(self, record: SessionRecord) -> Optional[SavedSession]:
        """
        Extend the lifetime of a session without writing the given copy.

        The latest stored copy is read and saved again, so changes other
        writers made after ``record`` was loaded are kept.

        Returns:
            The stored session, or None when it no longer exists
        """
        stored = await self.get(record.id)
        if stored is None:
            return None
        return await self.save(stored)

    async def destroy(self, record: Union[SessionRecord, str]) -> None:
        """
        Remove a session from storage. Removing an absent session is not an error.

        The caller is responsible for clearing the cookie.
        """
        session_id = record if isinstance(record, str) else record.id
        await self._call("remove", self.storage.remove(self.key(session_id)))
        log_auth_event(self.logger, "session_destroyed", session_id=session_id)

    async def regenerate(self, record: SessionRecord) -> SessionRecord:
        """
        Move a session's data to a fresh ID and drop the old entry.

        Returns:
            The stored session under its new ID
        """
        now = self._now()
        renewed = record.model_copy(update={
            "id": generate_session_id(),
            "last_accessed_at": now,
            "expires_at": now + timedelta(seconds=self.config.max_age),
        })
        await self._write(renewed)
        await self._call("remove", self.storage.remove(self.key(record.id)))

        log_auth_event(
            self.logger,
            "session_regenerated",
            session_id=renewed.id,
            details={"previous": mask_sensitive_data(record.id)}
        )
        return renewed

    async def list_session_ids(self) -> List[str]:
        """List the IDs of all stored sessions."""
        prefix = f"{self.config.key_prefix}:"
        keys = await self._call("keys", self.storage.keys(prefix))
        return [key[len(prefix):] for key in keys]

    def cookie_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``Response.set_cookie``."""
        return {
            "max_age": self.config.max_age,
            "httponly": self.config.cookie_http_only,
            "secure": self.config.cookie_secure,
            "samesite": self.config.cookie_same_site,
            "domain": self.config.cookie_domain,
            "path": self.config.cookie_path,
        }

    async def _write(self, record: SessionRecord) -> None:
        # The record's expires_at is authoritative; the storage TTL only drives cleanup.
        ttl = max(1, math.ceil((record.expires_at - self._now()).total_seconds()))
        await self._call("set", self.storage.set(self.key(record.id), record.model_dump_json(), ttl))
