"""Smoke tests to verify pytest infrastructure and shared fixtures."""

import pytest

from src.ports.query_source import QuerySource


class TestSmokeAsync:
    """Asynchronous smoke tests to verify pytest-asyncio works."""

    @pytest.mark.asyncio
    async def test_async_basic(self) -> None:
        """Verify async test execution works."""
        result = await self._async_identity(42)
        assert result == 42

    async def _async_identity(self, value: int) -> int:
        """Return the input value (helper for async testing)."""
        return value


class TestFixtures:
    """Tests to verify fixtures work correctly."""

    def test_records_fixture(self, records) -> None:
        """Verify the record fixture provides 25 distinct, ranked records."""
        assert len(records) == 25
        assert len({record["id"] for record in records}) == 25
        assert records[0] == {"id": 1, "rank": 999, "group": "a", "name": "Item 1"}

    @pytest.mark.asyncio
    async def test_memory_source_fixture(self, memory_source) -> None:
        """Verify the in-memory source satisfies the QuerySource protocol."""
        source: QuerySource[dict] = memory_source
        assert source.sort_key == "rank"
        assert await source.fetch_total_count({}) == 25

    @pytest.mark.asyncio
    async def test_recording_source_fixture(self, recording_source) -> None:
        """Verify the recording source records calls it forwards."""
        page = await recording_source.fetch_page({}, None, 3)
        assert len(page.items) == 3
        assert recording_source.page_calls[0].limit == 3

    def test_manual_clock_fixture(self, manual_clock) -> None:
        """Verify the manual clock only moves when advanced."""
        assert manual_clock.now() == 0.0
        manual_clock.advance(1.5)
        assert manual_clock.now() == 1.5
