"""
Session Store
=============

Keyed storage of session records with expiry semantics.

``SessionStore`` is the interface the gateway depends on; it is injected
at construction so an external store (e.g. a cache with TTL) can replace
``InMemorySessionStore`` in a multi-instance deployment.

Expired records are invisible to ``get`` and removed lazily on read, and
periodically by ``SessionSweeper``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from ..models import Session, utc_now

logger = logging.getLogger(__name__)


def short_id(session_id: str) -> str:
    """Truncated session id for log lines."""
    return f"{session_id[:6]}..." if session_id else "-"


# ============================================================================
# Per-key locks
# ============================================================================

class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLock:
    """
    One asyncio.Lock per key, dropped once nobody holds or waits for it.
    """

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def __call__(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


# ============================================================================
# Store Interface
# ============================================================================

class SessionStore(ABC):
    """
    Storage interface for session records.

    Implementations return copies from ``get``: changes to a session only
    take effect after ``put``. ``lock`` serializes read-modify-write
    sequences on one session id.
    """

    def __init__(self):
        self._locks = KeyedLock()

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Return the session, or None if absent or expired."""

    @abstractmethod
    async def put(self, session: Session) -> None:
        """Insert or replace a session record."""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove a session record. Returns True if one was removed."""

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Remove every expired record. Returns the number removed."""

    @abstractmethod
    async def count(self) -> int:
        """Number of records currently held."""

    def lock(self, session_id: str):
        """Async context manager serializing mutations of one session."""
        return self._locks(session_id)


class InMemorySessionStore(SessionStore):
    """
    Process-local session store.

    Thread-safe implementation using asyncio.Lock.
    """

    def __init__(self):
        super().__init__()
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[Session]:
        if not session_id:
            return None

        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None

            if session.record_expired():
                del self._sessions[session_id]
                logger.debug(f"Evicted expired session {short_id(session_id)} on read")
                return None

            return session.model_copy(deep=True)

    async def put(self, session: Session) -> None:
        async with self._lock:
            self._sessions[session.session_id] = session.model_copy(deep=True)

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = utc_now()
            expired_keys = [
                key for key, session in self._sessions.items()
                if session.record_expired(now)
            ]
            for key in expired_keys:
                del self._sessions[key]

        if expired_keys:
            logger.info(f"Swept {len(expired_keys)} expired sessions")
        return len(expired_keys)

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)


# ============================================================================
# Background Sweeper
# ============================================================================

class SessionSweeper:
    """
    Periodically purges expired sessions so abandoned logins do not pile up.
    """

    def __init__(self, store: SessionStore, interval_seconds: float = 60):
        self._store = store
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="session-sweeper")
        logger.info(f"Session sweeper started (interval {self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Session sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._store.sweep_expired()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}", exc_info=True)
