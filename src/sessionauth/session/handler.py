"""
Per-request session handler.

The middleware attaches one handler to each request. Route code reads and
updates the session through it; the middleware persists the result and
writes the cookie once the response is ready.
"""

from __future__ import annotations

from typing import Optional

from ..models import SavedSession, SessionData, SessionRecord
from .store import SessionStore, SessionUpdater


class SessionHandler:
    """Session view bound to a single request."""

    def __init__(self, store: SessionStore, record: Optional[SessionRecord] = None):
        self.store = store
        self.record = record
        self.modified = False
        self.destroyed = False
        self.cookie_value: Optional[str] = None

    @property
    def id(self) -> Optional[str]:
        return self.record.id if self.record else None

    @property
    def data(self) -> SessionData:
        """Current payload; empty when the request has no session yet."""
        return self.record.data if self.record else SessionData()

    def update(self, updater: SessionUpdater) -> SessionData:
        """
        Apply ``updater`` to the payload, starting a session if needed.

        The change is written when the request completes or on :meth:`save`.
        """
        if self.record is None or self.destroyed:
            self.record = self.store.new_record()
            self.destroyed = False
        self.record = self.store.update(self.record, updater)
        self.modified = True
        return self.record.data

    async def save(self) -> Optional[SavedSession]:
        """Persist the session now. Returns None when there is nothing to store."""
        if self.record is None or self.destroyed:
            return None
        saved = await self.store.save(self.record)
        self.record = saved.record
        self.cookie_value = saved.cookie_value
        self.modified = False
        return saved

    async def touch(self) -> Optional[SavedSession]:
        """Extend the stored session's lifetime without writing this request's copy."""
        if self.record is None or self.destroyed:
            return None
        saved = await self.store.touch(self.record)
        if saved is None:
            self.record = None
            self.destroyed = True
            return None
        self.record = saved.record
        self.cookie_value = saved.cookie_value
        return saved

    async def destroy(self) -> None:
        if self.record is not None:
            await self.store.destroy(self.record)
        self.record = None
        self.modified = False
        self.destroyed = True

    async def regenerate(self) -> SessionRecord:
        """Move the session to a fresh ID, e.g. after login."""
        if self.record is None:
            self.record = self.store.new_record()
        self.record = await self.store.regenerate(self.record)
        self.modified = True
        return self.record
