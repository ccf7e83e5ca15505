"""Infinite-scroll accumulation over a cursor-only query source."""

import asyncio
from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic

from src.core.cursor import check_cursor, fingerprint_filters
from src.core.errors import FetchError
from src.core.logging import get_logger
from src.core.pagination import DEFAULT_PAGE_SIZE, Phase
from src.ports.query_source import Cursor, FilterSet, ItemT, QuerySource

if TYPE_CHECKING:
    from src.core.config import PagerSettings

logger = get_logger(__name__)


def default_item_key(item: object) -> Hashable:
    """Identity key used when none is supplied.

    Mapping records (what the bundled adapters return) are keyed by their
    ``id`` field; any other item is its own key.
    """
    if isinstance(item, Mapping):
        return item["id"]
    return item  # type: ignore[return-value]


@dataclass(frozen=True)
class FeedView(Generic[ItemT]):
    """Snapshot of a feed controller for rendering."""

    items: tuple[ItemT, ...]
    has_more: bool
    phase: Phase
    error: FetchError | None = None


class IncrementalFeedController(Generic[ItemT]):
    """Accumulates batches for a scroll feed, de-duplicated by identity key.

    ``load_more`` can be wired straight to a visibility signal: repeated
    triggers while a batch is in flight are ignored and overlapping batches
    never produce duplicate entries.
    """

    def __init__(
        self,
        source: QuerySource[ItemT],
        *,
        batch_size: int = DEFAULT_PAGE_SIZE,
        filters: FilterSet | None = None,
        key: Callable[[ItemT], Hashable] = default_item_key,
        name: str = "feed",
    ) -> None:
        """Initialize the feed.

        Args:
            source: Query source for the collection.
            batch_size: Items requested per ``load_more`` (> 0).
            filters: Initial filter set.
            key: Returns the identity key used for de-duplication. Defaults
                to ``default_item_key``.
            name: View name included in log events.

        Raises:
            ValueError: If batch_size is not positive.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._source = source
        self._batch_size = batch_size
        self._key = key
        self._filters: dict[str, object] = dict(filters or {})
        self._fingerprint = fingerprint_filters(self._filters)
        self._logger = logger.bind(view=name)

        self._items: list[ItemT] = []
        self._seen: set[Hashable] = set()
        self._trailing_cursor: Cursor | None = None
        self._has_more = True
        self._phase = Phase.IDLE
        self._error: FetchError | None = None
        self._generation = 0

    @classmethod
    def from_settings(
        cls,
        source: QuerySource[ItemT],
        settings: "PagerSettings",
        **kwargs: Any,
    ) -> "IncrementalFeedController[ItemT]":
        """Build a feed whose batch size comes from ``settings``."""
        kwargs.setdefault("batch_size", settings.default_page_size)
        return cls(source, **kwargs)

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def trailing_cursor(self) -> Cursor | None:
        return self._trailing_cursor

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def generation(self) -> int:
        return self._generation

    def reset(self, filters: FilterSet | None = None) -> FeedView[ItemT]:
        """Drop accumulated items and start over.

        Args:
            filters: Replacement filter set; None keeps the current filters.
        """
        if filters is not None:
            self._filters = dict(filters)
            self._fingerprint = fingerprint_filters(self._filters)
        # Invalidates any load_more still in flight
        self._generation += 1
        self._items = []
        self._seen = set()
        self._trailing_cursor = None
        self._has_more = True
        self._phase = Phase.IDLE
        self._error = None
        self._logger.debug("feed_reset", generation=self._generation)
        return self.current_view()

    async def load_more(self) -> FeedView[ItemT]:
        """Fetch the next batch and append the items not seen before."""
        if self._phase is Phase.LOADING or not self._has_more:
            self._logger.debug(
                "operation_ignored",
                operation="load_more",
                reason="loading" if self._phase is Phase.LOADING else "exhausted",
            )
            return self.current_view()

        cursor = self._trailing_cursor
        check_cursor(cursor, self._fingerprint, self._source.sort_key)
        self._generation += 1
        generation = self._generation
        self._phase = Phase.LOADING
        self._error = None

        try:
            batch = await self._source.fetch_page(self._filters, cursor, self._batch_size)
        except FetchError as ex:
            if generation == self._generation:
                self._phase = Phase.ERROR
                self._error = ex
                self._logger.warning(
                    "fetch_failed",
                    operation="load_more",
                    generation=generation,
                    category=ex.category.name,
                    error=str(ex),
                )
            return self.current_view()
        except (Exception, asyncio.CancelledError):
            if generation == self._generation:
                self._phase = Phase.ERROR
            raise

        if generation != self._generation:
            self._logger.debug(
                "stale_response_dropped",
                operation="load_more",
                generation=generation,
                current_generation=self._generation,
            )
            return self.current_view()

        try:
            check_cursor(batch.last_cursor, self._fingerprint, self._source.sort_key)
            # Keys are computed and hashed before any state changes
            keyed = [(self._key(item), item) for item in batch.items]
            for identity, _ in keyed:
                hash(identity)
        except Exception:
            self._phase = Phase.ERROR
            raise

        added = 0
        for identity, item in keyed:
            if identity in self._seen:
                continue
            self._seen.add(identity)
            self._items.append(item)
            added += 1

        if batch.last_cursor is not None:
            self._trailing_cursor = batch.last_cursor
        self._has_more = not batch.is_empty and batch.last_cursor is not None
        self._phase = Phase.READY
        self._logger.info(
            "batch_merged",
            generation=generation,
            received=len(batch.items),
            added=added,
            total_items=len(self._items),
            has_more=self._has_more,
        )
        return self.current_view()

    def current_view(self) -> FeedView[ItemT]:
        return FeedView(
            items=tuple(self._items),
            has_more=self._has_more,
            phase=self._phase,
            error=self._error,
        )
