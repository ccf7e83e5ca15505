"""Shared pytest fixtures for the pagination engine tests."""

from typing import Any

import pytest

from src.adapters.memory_source import InMemoryQuerySource
from tests.mocks.clock import ManualClock
from tests.mocks.query_sources import RecordingQuerySource
from tests.mocks.records import make_records

pytest_plugins = ["pytest_asyncio"]


@pytest.fixture
def records() -> list[dict[str, Any]]:
    """Provide the 25-record collection used by most engine tests."""
    return make_records(25)


@pytest.fixture
def memory_source(records: list[dict[str, Any]]) -> InMemoryQuerySource:
    """Provide an in-memory source over the 25 records, sorted by rank."""
    return InMemoryQuerySource(records, sort_key="rank", search_fields=("name",))


@pytest.fixture
def recording_source(memory_source: InMemoryQuerySource) -> RecordingQuerySource:
    """Provide a recording wrapper around the in-memory source.

    Use it to assert on the exact requests a controller made, to inject
    failures, or to hold responses (``holding = True``).
    """
    return RecordingQuerySource(memory_source)


@pytest.fixture
def manual_clock() -> ManualClock:
    """Provide a clock that only advances when told to."""
    return ManualClock()
