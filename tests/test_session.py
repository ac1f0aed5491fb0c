"""Tests for sessions and the session store."""

from __future__ import annotations

import asyncio
import time

import pytest

from scopeauth.auth.session import (
    MemorySessionStore,
    Session,
    SessionStore,
    SessionStoreRegistry,
    User,
)


class FailingStore(SessionStore):
    """A session store whose every call fails."""

    @property
    def default_ttl(self) -> float:
        return 60.0

    async def store(self, session_uuid, session, ttl):
        raise ConnectionError("store down")

    async def load(self, session_uuid):
        raise ConnectionError("store down")

    async def remove(self, session_uuid):
        raise ConnectionError("store down")

    async def touch(self, session_uuid):
        raise ConnectionError("store down")


def _session(**kwargs) -> Session:
    return Session(user=User(id="alice", display_name="Alice"), **kwargs)


class TestSession:
    """Tests for Session helpers."""

    def test_uuid_generated(self):
        """Test each session gets a distinct uuid."""
        assert _session().uuid != _session().uuid

    def test_security_keys(self):
        """Test security key values accumulate per key."""
        session = _session().with_security_key_value("tenantId", 1).with_security_key_value("tenantId", 2)
        assert session.has_security_key_value("tenantId", 2)
        assert not session.has_security_key_value("tenantId", 3)
        assert not session.has_security_key_value("storeId", 1)

    def test_values_for_frontend(self):
        """Test frontend values are set fluently."""
        session = _session().with_value_for_frontend("theme", "dark")
        assert session.values_for_frontend == {"theme": "dark"}

    def test_system_session(self):
        """Test the system session is flagged and named."""
        system = Session.system()
        assert system.is_system
        assert system.user.id == "system"

    def test_expiry(self):
        """Test is_expired and remaining_seconds follow expires_at."""
        assert not _session().is_expired
        assert _session().remaining_seconds is None
        assert _session(expires_at=time.time() - 1).is_expired
        assert 0 < _session(expires_at=time.time() + 100).remaining_seconds <= 100


class TestMemorySessionStore:
    """Tests for MemorySessionStore."""

    @pytest.mark.asyncio
    async def test_store_and_load(self):
        """Test a stored session is loaded back."""
        store = MemorySessionStore()
        session = _session()
        await store.store(session.uuid, session, ttl=60)
        assert await store.load(session.uuid) is session
        assert await store.load("missing") is None

    @pytest.mark.asyncio
    async def test_expired_entry_dropped(self):
        """Test entries are gone after their ttl."""
        store = MemorySessionStore()
        session = _session()
        await store.store(session.uuid, session, ttl=0.05)
        await asyncio.sleep(0.1)
        assert await store.load(session.uuid) is None
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_non_positive_ttl_not_stored(self):
        """Test a zero ttl stores nothing."""
        store = MemorySessionStore()
        session = _session()
        await store.store(session.uuid, session, ttl=0)
        assert await store.load(session.uuid) is None

    @pytest.mark.asyncio
    async def test_touch_extends_expiry(self):
        """Test load_and_touch pushes expiry out by the entry's ttl."""
        store = MemorySessionStore()
        session = _session()
        await store.store(session.uuid, session, ttl=0.5)
        await asyncio.sleep(0.3)
        assert await store.load_and_touch(session.uuid) is session
        await asyncio.sleep(0.3)
        assert await store.load(session.uuid) is session

    @pytest.mark.asyncio
    async def test_touch_capped_at_session_expiry(self):
        """Test touching never keeps a session past its token's exp."""
        store = MemorySessionStore()
        session = _session(expires_at=time.time() + 0.3)
        await store.store(session.uuid, session, ttl=60)
        await asyncio.sleep(0.15)
        assert await store.load_and_touch(session.uuid) is session
        await asyncio.sleep(0.25)
        assert await store.load(session.uuid) is None
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_expired_session_not_loaded(self):
        """Test an already expired session is dropped even within its ttl."""
        store = MemorySessionStore()
        session = _session(expires_at=time.time() + 60)
        await store.store(session.uuid, session, ttl=60)
        session.expires_at = time.time() - 1
        assert await store.load(session.uuid) is None
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_remove(self):
        """Test removed sessions are not loaded."""
        store = MemorySessionStore()
        session = _session()
        await store.store(session.uuid, session, ttl=60)
        await store.remove(session.uuid)
        assert await store.load(session.uuid) is None

    @pytest.mark.asyncio
    async def test_cleanup_task(self):
        """Test the background task removes expired entries."""
        store = MemorySessionStore(cleanup_interval=0.05)
        await store.start()
        try:
            session = _session()
            await store.store(session.uuid, session, ttl=0.01)
            await asyncio.sleep(0.15)
            assert await store.count() == 0
        finally:
            await store.stop()


class TestSessionStoreRegistry:
    """Tests for SessionStoreRegistry."""

    def test_register_and_clear(self):
        """Test availability follows registration."""
        registry = SessionStoreRegistry()
        assert not registry.is_available
        store = MemorySessionStore(default_ttl=120)
        registry.register(store)
        assert registry.is_available
        assert registry.provider is store
        assert registry.default_ttl == 120
        registry.clear()
        assert registry.provider is None

    @pytest.mark.asyncio
    async def test_helpers_without_provider(self):
        """Test helpers are no-ops when no store is registered."""
        registry = SessionStoreRegistry()
        session = _session()
        await registry.store_session(session.uuid, session, 60)
        assert await registry.load_session(session.uuid) is None
        await registry.remove_session(session.uuid)

    @pytest.mark.asyncio
    async def test_failing_store_is_a_miss(self):
        """Test store failures are logged and treated as misses."""
        registry = SessionStoreRegistry(FailingStore())
        session = _session()
        await registry.store_session(session.uuid, session, 60)
        assert await registry.load_session(session.uuid) is None
        await registry.remove_session(session.uuid)
