"""Mock implementations for testing."""

from tests.mocks.clock import ManualClock
from tests.mocks.query_sources import (
    PageCall,
    RecordingQuerySource,
    ScriptedQuerySource,
    make_batch,
    make_cursor,
)
from tests.mocks.records import make_records

__all__ = [
    "ManualClock",
    "PageCall",
    "RecordingQuerySource",
    "ScriptedQuerySource",
    "make_batch",
    "make_cursor",
    "make_records",
]
