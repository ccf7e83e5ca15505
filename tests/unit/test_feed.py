"""Tests for the incremental (infinite-scroll) feed controller."""

import asyncio
from typing import Any

import pytest

from src.adapters.memory_source import InMemoryQuerySource
from src.core.errors import CursorMisuseError, ErrorCategory, TransientFetchError
from src.core.feed import IncrementalFeedController, default_item_key
from src.core.pagination import Phase
from tests.mocks.query_sources import (
    RecordingQuerySource,
    ScriptedQuerySource,
    make_batch,
)


def by_id(item: dict[str, Any]) -> int:
    return item["id"]


class TestLoadMore:
    async def test_accumulates_until_exhausted(
        self, recording_source: RecordingQuerySource
    ) -> None:
        feed = IncrementalFeedController(recording_source, batch_size=10, key=by_id)

        first = await feed.load_more()
        assert [item["id"] for item in first.items] == list(range(1, 11))
        assert first.has_more is True
        assert first.phase is Phase.READY

        await feed.load_more()
        third = await feed.load_more()
        assert len(third.items) == 25
        # A short batch with a cursor still allows one more fetch
        assert third.has_more is True

        last = await feed.load_more()
        assert len(last.items) == 25
        assert last.has_more is False
        assert len(recording_source.page_calls) == 4

    async def test_exhausted_feed_ignores_load_more(
        self, recording_source: RecordingQuerySource
    ) -> None:
        feed = IncrementalFeedController(recording_source, batch_size=30, key=by_id)
        await feed.load_more()
        await feed.load_more()
        calls = len(recording_source.page_calls)

        view = await feed.load_more()

        assert view.has_more is False
        assert len(recording_source.page_calls) == calls

    async def test_passes_trailing_cursor(self, recording_source: RecordingQuerySource) -> None:
        feed = IncrementalFeedController(recording_source, batch_size=5, key=by_id)

        await feed.load_more()
        first_trailing = feed.trailing_cursor
        await feed.load_more()

        assert recording_source.page_calls[0].cursor is None
        assert recording_source.page_calls[1].cursor == first_trailing
        assert recording_source.page_calls[1].limit == 5

    async def test_filters_apply_to_every_batch(self, memory_source: InMemoryQuerySource) -> None:
        feed = IncrementalFeedController(
            memory_source, batch_size=4, filters={"group": "b"}, key=by_id
        )

        await feed.load_more()
        view = await feed.load_more()

        assert [item["id"] for item in view.items] == [2, 4, 6, 8, 10, 12, 14, 16]

    async def test_batch_without_cursor_ends_feed(self) -> None:
        source = ScriptedQuerySource([make_batch([1, 2], with_cursors=False)])
        feed = IncrementalFeedController(source, batch_size=2)

        view = await feed.load_more()

        assert view.items == (1, 2)
        assert view.has_more is False
        assert feed.trailing_cursor is None

    def test_rejects_non_positive_batch_size(self, memory_source: InMemoryQuerySource) -> None:
        with pytest.raises(ValueError):
            IncrementalFeedController(memory_source, batch_size=0)


class TestDeduplication:
    async def test_overlapping_batches_are_merged(self) -> None:
        source = ScriptedQuerySource([make_batch([1, 2, 3]), make_batch([3, 4, 5])])
        feed = IncrementalFeedController(source, batch_size=3)

        await feed.load_more()
        view = await feed.load_more()

        assert view.items == (1, 2, 3, 4, 5)
        assert source.page_calls[1].cursor == make_batch([1, 2, 3]).last_cursor

    async def test_duplicate_keeps_first_position(self) -> None:
        source = ScriptedQuerySource([make_batch([1, 2, 3]), make_batch([5, 3, 6])])
        feed = IncrementalFeedController(source, batch_size=3)

        await feed.load_more()
        view = await feed.load_more()

        assert view.items == (1, 2, 3, 5, 6)

    async def test_custom_key_keeps_first_copy(self) -> None:
        first = [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}]
        second = [{"id": 2, "v": "b-updated"}, {"id": 3, "v": "c"}]
        source = ScriptedQuerySource([make_batch(first), make_batch(second)])
        feed = IncrementalFeedController(source, batch_size=2, key=by_id)

        await feed.load_more()
        view = await feed.load_more()

        assert [item["v"] for item in view.items] == ["a", "b", "c"]

    async def test_fully_duplicate_batch_still_advances(self) -> None:
        source = ScriptedQuerySource(
            [make_batch([1, 2]), make_batch([1, 2]), make_batch([3])]
        )
        feed = IncrementalFeedController(source, batch_size=2)

        await feed.load_more()
        second = await feed.load_more()
        third = await feed.load_more()

        assert second.items == (1, 2)
        assert second.has_more is True
        assert third.items == (1, 2, 3)


class TestDefaultKey:
    def test_mapping_items_are_keyed_by_id(self) -> None:
        assert default_item_key({"id": 7, "name": "Item 7"}) == 7
        assert default_item_key(5) == 5

    async def test_mapping_records_without_key(self, records: list[dict[str, Any]]) -> None:
        feed = IncrementalFeedController(InMemoryQuerySource(records, sort_key="rank"))

        await feed.load_more()
        await feed.load_more()
        view = await feed.load_more()

        assert view.phase is Phase.READY
        assert [item["id"] for item in view.items] == list(range(1, 26))

    async def test_overlapping_mapping_batches_without_key(self) -> None:
        first = [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}]
        second = [{"id": 2, "v": "b-updated"}, {"id": 3, "v": "c"}]
        source = ScriptedQuerySource([make_batch(first), make_batch(second)])
        feed = IncrementalFeedController(source, batch_size=2)

        await feed.load_more()
        view = await feed.load_more()

        assert [item["v"] for item in view.items] == ["a", "b", "c"]


class TestKeyFailures:
    async def test_missing_id_sets_error_and_allows_retry(self) -> None:
        source = ScriptedQuerySource(
            [make_batch([{"name": "no id"}]), make_batch([{"id": 3}])]
        )
        feed = IncrementalFeedController(source, batch_size=1)

        with pytest.raises(KeyError):
            await feed.load_more()

        assert feed.phase is Phase.ERROR
        assert feed.trailing_cursor is None

        view = await feed.load_more()

        assert len(source.page_calls) == 2
        assert source.page_calls[1].cursor is None
        assert view.phase is Phase.READY
        assert view.items == ({"id": 3},)

    async def test_unhashable_key_merges_nothing(self) -> None:
        source = ScriptedQuerySource(
            [make_batch([{"id": 1}, {"id": [2]}]), make_batch([{"id": 1}])]
        )
        feed = IncrementalFeedController(source, batch_size=2)

        with pytest.raises(TypeError):
            await feed.load_more()

        assert feed.phase is Phase.ERROR
        assert feed.current_view().items == ()

        # id 1 was never recorded as seen, so it is accepted now
        view = await feed.load_more()
        assert view.items == ({"id": 1},)


class TestResetAndFailures:
    async def test_reset_clears_items_and_cursor(
        self, memory_source: InMemoryQuerySource
    ) -> None:
        feed = IncrementalFeedController(memory_source, batch_size=5, key=by_id)
        await feed.load_more()

        view = feed.reset({"group": "a"})

        assert view.items == ()
        assert view.has_more is True
        assert view.phase is Phase.IDLE
        assert feed.trailing_cursor is None

        loaded = await feed.load_more()
        assert [item["id"] for item in loaded.items] == [1, 3, 5, 7, 9]

    async def test_reset_without_filters_keeps_filters(
        self, memory_source: InMemoryQuerySource
    ) -> None:
        feed = IncrementalFeedController(
            memory_source, batch_size=3, filters={"group": "a"}, key=by_id
        )
        fingerprint = feed.fingerprint
        await feed.load_more()

        feed.reset()
        view = await feed.load_more()

        assert feed.fingerprint == fingerprint
        assert [item["id"] for item in view.items] == [1, 3, 5]

    async def test_failure_keeps_items(self, recording_source: RecordingQuerySource) -> None:
        feed = IncrementalFeedController(recording_source, batch_size=10, key=by_id)
        await feed.load_more()
        recording_source.fail_next(
            TransientFetchError("connection reset", ErrorCategory.NETWORK)
        )

        failed = await feed.load_more()

        assert failed.phase is Phase.ERROR
        assert isinstance(failed.error, TransientFetchError)
        assert len(failed.items) == 10
        assert failed.has_more is True

        retried = await feed.load_more()
        assert retried.phase is Phase.READY
        assert retried.error is None
        assert len(retried.items) == 20

    async def test_foreign_cursor_fails_loudly(self) -> None:
        source = ScriptedQuerySource([make_batch([1, 2], filters={"other": True})])
        feed = IncrementalFeedController(source, batch_size=2)

        with pytest.raises(CursorMisuseError):
            await feed.load_more()

        assert feed.phase is Phase.ERROR


class TestConcurrency:
    async def test_repeated_trigger_while_loading_is_ignored(
        self, recording_source: RecordingQuerySource
    ) -> None:
        recording_source.holding = True
        feed = IncrementalFeedController(recording_source, batch_size=10, key=by_id)

        task = asyncio.create_task(feed.load_more())
        await recording_source.wait_for_calls(1)
        ignored = await feed.load_more()
        assert ignored.phase is Phase.LOADING
        assert ignored.items == ()

        recording_source.gates[0].set()
        view = await task

        assert len(view.items) == 10
        assert len(recording_source.page_calls) == 1

    async def test_reset_discards_in_flight_batch(
        self, recording_source: RecordingQuerySource
    ) -> None:
        recording_source.holding = True
        feed = IncrementalFeedController(recording_source, batch_size=10, key=by_id)

        task = asyncio.create_task(feed.load_more())
        await recording_source.wait_for_calls(1)
        feed.reset({"group": "b"})
        recording_source.gates[0].set()
        await task

        view = feed.current_view()
        assert view.items == ()
        assert view.phase is Phase.IDLE
        assert view.has_more is True
        assert feed.trailing_cursor is None
