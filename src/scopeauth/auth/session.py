"""Application sessions and the optional session store.

A Session is what an authentication module hands back to the application:
the user identity plus values for the backend and the frontend. The session
store caches fully built sessions by uuid so that resuming a session can
skip token lookup and customization entirely.
"""

from __future__ import annotations

import asyncio
import time
import uuid as uuid_lib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()

SYSTEM_USER_ID = "system"


@dataclass
class User:
    """An authenticated user."""

    id: str
    display_name: str | None = None


@dataclass
class Session:
    """An authenticated application session.

    ``uuid`` is the opaque identifier the client presents to resume the
    session. ``expires_at`` is an epoch timestamp taken from the access
    token (None for sessions that do not expire, e.g. anonymous ones).
    """

    user: User
    uuid: str = field(default_factory=lambda: str(uuid_lib.uuid4()))
    id_reference: str | None = None
    values: dict[str, Any] = field(default_factory=dict)
    values_for_frontend: dict[str, Any] = field(default_factory=dict)
    security_keys: dict[str, list[Any]] = field(default_factory=dict)
    expires_at: float | None = None
    is_system: bool = False

    @classmethod
    def system(cls) -> Session:
        """An elevated session for internal reads and writes.

        Passed explicitly to storage calls and customizers; never installed
        as ambient state.
        """
        return cls(
            user=User(id=SYSTEM_USER_ID, display_name="System"),
            id_reference="Session:system",
            is_system=True,
        )

    def with_security_key_value(self, key: str, value: Any) -> Session:
        self.security_keys.setdefault(key, []).append(value)
        return self

    def has_security_key_value(self, key: str, value: Any) -> bool:
        return value in self.security_keys.get(key, [])

    def with_value_for_frontend(self, key: str, value: Any) -> Session:
        self.values_for_frontend[key] = value
        return self

    @property
    def is_expired(self) -> bool:
        """Check if the session's token has expired."""
        return self.expires_at is not None and time.time() >= self.expires_at

    @property
    def remaining_seconds(self) -> float | None:
        """Remaining lifetime in seconds, or None if the session does not expire."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.time())


class SessionStore(ABC):
    """Pluggable cache of fully built sessions keyed by uuid."""

    @abstractmethod
    async def store(self, session_uuid: str, session: Session, ttl: float) -> None:
        """Store a session for ``ttl`` seconds."""

    @abstractmethod
    async def load(self, session_uuid: str) -> Session | None:
        """Load a session, or None if absent or expired."""

    @abstractmethod
    async def remove(self, session_uuid: str) -> None: ...

    @abstractmethod
    async def touch(self, session_uuid: str) -> None:
        """Extend a stored session's expiry by its ttl."""

    @property
    @abstractmethod
    def default_ttl(self) -> float: ...

    async def load_and_touch(self, session_uuid: str) -> Session | None:
        session = await self.load(session_uuid)
        if session is not None:
            await self.touch(session_uuid)
        return session


@dataclass
class _StoredSession:
    session: Session
    ttl: float
    expires_at: float

    def renew(self) -> None:
        """Push the deadline out by ttl, never past the session's own expiry."""
        self.expires_at = time.time() + self.ttl
        if self.session.expires_at is not None:
            self.expires_at = min(self.expires_at, self.session.expires_at)


class MemorySessionStore(SessionStore):
    """In-memory session store with expiration cleanup.

    Expired entries are dropped when accessed and, once start() is called,
    by a background task every ``cleanup_interval`` seconds.

    Thread-safe via asyncio locks for concurrent access.
    """

    def __init__(self, default_ttl: float = 3600.0, cleanup_interval: float = 300.0):
        """Initialize the session store.

        Args:
            default_ttl: TTL used when callers have no better bound (default 1 hour)
            cleanup_interval: How often to run cleanup in seconds (default 5 min)
        """
        self._default_ttl = default_ttl
        self._cleanup_interval = cleanup_interval
        self._sessions: dict[str, _StoredSession] = {}
        self._cleanup_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    async def start(self) -> None:
        """Start the background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        """Stop the background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def store(self, session_uuid: str, session: Session, ttl: float) -> None:
        if ttl <= 0:
            return
        async with self._lock:
            stored = _StoredSession(session=session, ttl=ttl, expires_at=0.0)
            stored.renew()
            self._sessions[session_uuid] = stored

    async def load(self, session_uuid: str) -> Session | None:
        async with self._lock:
            stored = self._sessions.get(session_uuid)
            if stored is None:
                return None
            if stored.expires_at <= time.time() or stored.session.is_expired:
                del self._sessions[session_uuid]
                return None
            return stored.session

    async def remove(self, session_uuid: str) -> None:
        async with self._lock:
            self._sessions.pop(session_uuid, None)

    async def touch(self, session_uuid: str) -> None:
        async with self._lock:
            stored = self._sessions.get(session_uuid)
            if stored is not None:
                stored.renew()

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def _cleanup_loop(self) -> None:
        """Background task to remove expired sessions."""
        while True:
            try:
                await asyncio.sleep(self._cleanup_interval)
                await self._cleanup_expired()
            except asyncio.CancelledError:
                break

    async def _cleanup_expired(self) -> int:
        now = time.time()
        async with self._lock:
            expired = [key for key, stored in self._sessions.items() if stored.expires_at <= now]
            for key in expired:
                del self._sessions[key]
        return len(expired)


class SessionStoreRegistry:
    """Holds the (at most one) session store in use.

    The ``*_session`` helpers are best effort: a failing store is logged and
    treated as a miss, so the session store can never break authentication.
    """

    def __init__(self, provider: SessionStore | None = None):
        self._provider = provider

    def register(self, provider: SessionStore) -> None:
        if self._provider is not None and self._provider is not provider:
            logger.warning(
                "Replacing session store provider",
                old_provider=type(self._provider).__name__,
                new_provider=type(provider).__name__,
            )
        self._provider = provider

    @property
    def provider(self) -> SessionStore | None:
        return self._provider

    @property
    def is_available(self) -> bool:
        return self._provider is not None

    def clear(self) -> None:
        self._provider = None

    @property
    def default_ttl(self) -> float:
        return self._provider.default_ttl if self._provider is not None else 3600.0

    async def store_session(self, session_uuid: str, session: Session, ttl: float) -> None:
        if self._provider is None:
            return
        try:
            await self._provider.store(session_uuid, session, ttl)
            logger.debug("Stored session in session store", session_uuid=session_uuid)
        except Exception as e:
            logger.warning(
                "Failed to store session in session store",
                session_uuid=session_uuid,
                error=str(e),
            )

    async def load_session(self, session_uuid: str) -> Session | None:
        if self._provider is None:
            return None
        try:
            session = await self._provider.load_and_touch(session_uuid)
        except Exception as e:
            logger.warning(
                "Failed to load session from session store",
                session_uuid=session_uuid,
                error=str(e),
            )
            return None
        if session is not None:
            logger.debug("Loaded session from session store", session_uuid=session_uuid)
        return session

    async def remove_session(self, session_uuid: str) -> None:
        if self._provider is None:
            return
        try:
            await self._provider.remove(session_uuid)
        except Exception as e:
            logger.warning(
                "Failed to remove session from session store",
                session_uuid=session_uuid,
                error=str(e),
            )
