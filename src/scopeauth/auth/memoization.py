"""Bounded memoization with TTL and LRU eviction.

Entries expire ``timeout`` seconds after they were stored. When the cache
grows beyond ``max_size``, expired entries are dropped first and then the
least recently used ones. Uses time.monotonic() so wall clock changes do
not extend an entry's life.

Example:
    cache = Memoization(timeout=60.0, max_size=1000)

    token = await cache.get_or_compute(session_uuid, load_token)
    cache.clear_key(session_uuid)  # on logout
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from time import monotonic
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


@dataclass
class _Entry(Generic[V]):
    value: V
    stored_at: float


class Memoization(Generic[K, V]):
    """Thread-safe memoization cache.

    The lock is a threading.Lock and is never held across an await, so the
    cache can be shared by coroutines on any event loop and by plain
    threads. Two concurrent misses for the same key may both compute; the
    last result stored wins.
    """

    def __init__(
        self,
        timeout: float | None = None,
        max_size: int | None = None,
        may_store_none: bool = True,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            timeout: Seconds an entry stays valid (None = until cleared)
            max_size: Maximum number of entries (None = unbounded)
            may_store_none: Whether None results are cached
            clock: Monotonic time source (injectable for tests)
        """
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._timeout = timeout
        self._max_size = max_size
        self._may_store_none = may_store_none
        self._clock = clock
        self._entries: OrderedDict[K, _Entry[V]] = OrderedDict()
        self._lock = threading.Lock()

    def _is_expired(self, entry: _Entry[V], now: float) -> bool:
        return self._timeout is not None and now - entry.stored_at >= self._timeout

    def _evict(self, now: float) -> None:
        """Drop expired entries, then LRU entries while over capacity."""
        if self._max_size is None or len(self._entries) <= self._max_size:
            return
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def _lookup(self, key: K) -> object:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return _MISSING
            if self._is_expired(entry, now):
                del self._entries[key]
                return _MISSING
            self._entries.move_to_end(key)
            return entry.value

    def get(self, key: K) -> V | None:
        """Return the cached value, or None on a miss or an expired entry."""
        value = self._lookup(key)
        return None if value is _MISSING else value  # type: ignore[return-value]

    def __contains__(self, key: object) -> bool:
        return self._lookup(key) is not _MISSING  # type: ignore[arg-type]

    def put(self, key: K, value: V) -> None:
        if value is None and not self._may_store_none:
            return
        now = self._clock()
        with self._lock:
            self._entries[key] = _Entry(value=value, stored_at=now)
            self._entries.move_to_end(key)
            self._evict(now)

    def get_or_compute_sync(self, key: K, compute: Callable[[K], V]) -> V | None:
        """Return the cached value or compute, store and return it.

        Exceptions raised by ``compute`` propagate and nothing is stored.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            return value  # type: ignore[return-value]
        result = compute(key)
        self.put(key, result)
        return result

    async def get_or_compute(self, key: K, compute: Callable[[K], Awaitable[V]]) -> V | None:
        """Async form of get_or_compute_sync."""
        value = self._lookup(key)
        if value is not _MISSING:
            return value  # type: ignore[return-value]
        result = await compute(key)
        self.put(key, result)
        return result

    def clear_key(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
