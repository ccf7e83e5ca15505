"""Tests for the TTL cache."""

import asyncio

import pytest

from src.core.cache import DEFAULT_TTL_SECONDS, MonotonicClock, TTLCache
from tests.mocks.clock import ManualClock


class TestTTLCache:
    def test_default_ttl_is_five_minutes(self) -> None:
        assert DEFAULT_TTL_SECONDS == 300
        assert TTLCache().ttl_seconds == 300

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_rejects_non_positive_ttl(self, ttl: float) -> None:
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=ttl)

    def test_entry_expires(self, manual_clock: ManualClock) -> None:
        cache: TTLCache[str, int] = TTLCache(ttl_seconds=60, clock=manual_clock)
        cache.set("users", 25)

        manual_clock.advance(59)
        assert cache.get("users") == 25
        assert "users" in cache

        manual_clock.advance(1)
        assert "users" not in cache
        assert cache.get("users") is None
        assert len(cache) == 0

    def test_invalidate_and_clear(self, manual_clock: ManualClock) -> None:
        cache: TTLCache[str, int] = TTLCache(ttl_seconds=60, clock=manual_clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        cache.invalidate("missing")
        assert cache.get("a") is None
        assert cache.get("b") == 2

        cache.clear()
        assert len(cache) == 0

    def test_purge_expired(self, manual_clock: ManualClock) -> None:
        cache: TTLCache[str, int] = TTLCache(ttl_seconds=10, clock=manual_clock)
        cache.set("old", 1)
        manual_clock.advance(5)
        cache.set("new", 2)
        manual_clock.advance(5)

        assert cache.purge_expired() == 1
        assert cache.get("new") == 2

    def test_monotonic_clock_moves_forward(self) -> None:
        clock = MonotonicClock()
        assert clock.now() <= clock.now()


class TestGetOrLoad:
    async def test_loads_once_until_expiry(self, manual_clock: ManualClock) -> None:
        cache: TTLCache[str, int] = TTLCache(ttl_seconds=300, clock=manual_clock)
        calls = []

        async def loader() -> int:
            calls.append(1)
            return len(calls)

        assert await cache.get_or_load("k", loader) == 1
        assert await cache.get_or_load("k", loader) == 1

        manual_clock.advance(300)
        assert await cache.get_or_load("k", loader) == 2

    async def test_concurrent_loads_are_coalesced(self, manual_clock: ManualClock) -> None:
        cache: TTLCache[str, int] = TTLCache(ttl_seconds=300, clock=manual_clock)
        release = asyncio.Event()
        calls = []

        async def loader() -> int:
            calls.append(1)
            await release.wait()
            return 7

        tasks = [asyncio.create_task(cache.get_or_load("k", loader)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()

        assert await asyncio.gather(*tasks) == [7, 7, 7]
        assert len(calls) == 1

    async def test_loader_errors_are_not_cached(self, manual_clock: ManualClock) -> None:
        cache: TTLCache[str, int] = TTLCache(ttl_seconds=300, clock=manual_clock)

        async def failing() -> int:
            raise RuntimeError("store down")

        async def working() -> int:
            return 3

        with pytest.raises(RuntimeError):
            await cache.get_or_load("k", failing)
        assert "k" not in cache
        assert await cache.get_or_load("k", working) == 3

    async def test_load_locks_are_released(self, manual_clock: ManualClock) -> None:
        cache: TTLCache[str, int] = TTLCache(ttl_seconds=300, clock=manual_clock)

        async def loader() -> int:
            return 1

        async def failing() -> int:
            raise RuntimeError("store down")

        for key in ("a", "b", "c"):
            await cache.get_or_load(key, loader)
        with pytest.raises(RuntimeError):
            await cache.get_or_load("d", failing)

        assert cache._locks == {}
        assert cache._lock_users == {}

    async def test_lock_outlives_first_loader_while_others_wait(
        self, manual_clock: ManualClock
    ) -> None:
        cache: TTLCache[str, int] = TTLCache(ttl_seconds=300, clock=manual_clock)
        release = asyncio.Event()
        calls = []

        async def failing_once() -> int:
            calls.append(1)
            await release.wait()
            if len(calls) == 1:
                raise RuntimeError("store down")
            return 5

        first = asyncio.create_task(cache.get_or_load("k", failing_once))
        second = asyncio.create_task(cache.get_or_load("k", failing_once))
        await asyncio.sleep(0)
        assert cache._lock_users == {"k": 2}
        release.set()

        with pytest.raises(RuntimeError):
            await first
        assert await second == 5
        assert len(calls) == 2
        assert cache._locks == {}
