"""TTL cache with an injectable clock.

The cache is owned by whichever query source adapter needs it (the total
count aggregate is the usual candidate) rather than living at module level.
Time comes from a Clock so tests can move it forward explicitly.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from src.core.logging import get_logger

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

# Duration the admin console kept statistics before refetching
DEFAULT_TTL_SECONDS = 5 * 60


class Clock(Protocol):
    """Protocol for a source of monotonic time in seconds."""

    def now(self) -> float:
        """Return the current time in seconds."""
        ...


class MonotonicClock:
    """Clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


@dataclass
class CacheEntry(Generic[V]):
    """A cached value and the clock reading after which it is stale.

    Attributes:
        value: The cached value.
        expires_at: Clock time at which the entry expires.
    """

    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """In-memory cache whose entries expire a fixed time after being stored.

    Entries are never updated in place: a key is only written again once its
    previous entry has expired or been invalidated. Concurrent loads of the
    same key are coalesced so only one loader call reaches the store.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Lifetime of each entry (> 0).
            clock: Time source; defaults to MonotonicClock.

        Raises:
            ValueError: If ttl_seconds is not positive.
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = ttl_seconds
        self._clock = clock or MonotonicClock()
        self._entries: dict[K, CacheEntry[V]] = {}
        self._locks: dict[K, asyncio.Lock] = {}
        # Callers inside get_or_load per key; a lock lives only while this is > 0
        self._lock_users: dict[K, int] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and entry.expires_at > self._clock.now()

    def get(self, key: K) -> V | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock.now():
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: K, value: V) -> None:
        """Store a value for the configured TTL."""
        self._entries[key] = CacheEntry(
            value=value,
            expires_at=self._clock.now() + self._ttl,
        )

    def invalidate(self, key: K) -> None:
        """Drop a single entry if present."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop all entries."""
        self._entries.clear()

    def purge_expired(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock.now()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value, calling ``loader`` once on a miss.

        Args:
            key: Cache key.
            loader: Coroutine factory producing the value on a miss.

        Returns:
            The cached or freshly loaded value. Loader exceptions propagate
            and nothing is cached.
        """
        if key in self:
            return self._entries[key].value

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                # Another waiter may have filled the entry while we queued
                if key in self:
                    logger.debug("cache_hit_after_wait", cache_key=str(key))
                    return self._entries[key].value
                value = await loader()
                self.set(key, value)
                return value
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]
