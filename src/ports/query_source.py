"""Query source protocol for cursor-only collections.

This module defines the single boundary the pagination engine depends on: a
source that returns "the next N items after cursor C matching filters F",
sorted by a fixed key in descending order. Implementations can talk to an
in-memory list, a SQLite table, or a remote document store.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

ItemT = TypeVar("ItemT")
ItemT_co = TypeVar("ItemT_co", covariant=True)

# Field name -> constraint. Scalars mean equality, ValueRange an inclusive
# range, and SEARCH_FILTER_KEY a substring match over searchable fields.
FilterSet = Mapping[str, Any]

SEARCH_FILTER_KEY = "search"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ValueRange:
    """Inclusive range constraint for a filter field.

    Either end may be None to leave that side open, e.g. a "date added from"
    filter without a "to" date.

    Attributes:
        start: Lowest accepted value, or None.
        end: Highest accepted value, or None.
    """

    start: Any = None
    end: Any = None

    def contains(self, value: Any) -> bool:
        if value is None:
            return False
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


@dataclass(frozen=True)
class Cursor:
    """Opaque position in a sorted collection.

    Cursors are only ever produced by a QuerySource. They carry the filter
    fingerprint and sort key they were issued under, so a consumer can refuse
    to send them with any other query.

    Attributes:
        token: Adapter-specific position marker.
        sort_value: Value of the sort key at this position.
        fingerprint: Fingerprint of the filter set the cursor was issued for.
        sort_key: Name of the sort field the cursor was issued for.
    """

    token: str
    sort_value: Any
    fingerprint: str
    sort_key: str


@dataclass(frozen=True)
class PageResult(Generic[ItemT]):
    """One batch returned by a QuerySource.

    Attributes:
        items: Items in sort order (descending by sort key).
        first_cursor: Cursor at the first item, None iff items is empty.
        last_cursor: Cursor at the last item, None iff items is empty.
    """

    items: Sequence[ItemT] = field(default_factory=tuple)
    first_cursor: Cursor | None = None
    last_cursor: Cursor | None = None

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0


# =============================================================================
# Query Source Protocol
# =============================================================================


class QuerySource(Protocol[ItemT_co]):
    """Protocol for a cursor-only collection.

    Results for a fixed filter set are ordered by ``sort_key`` descending with
    a deterministic tiebreaker, so that fetching with the last cursor of page K
    returns page K+1 with no gaps and no overlaps on a stationary collection.

    Attributes:
        sort_key: Name of the field results are sorted by.
    """

    sort_key: str

    async def fetch_page(
        self,
        filters: FilterSet,
        cursor: Cursor | None,
        limit: int,
    ) -> PageResult[ItemT_co]:
        """Fetch up to ``limit`` items strictly after ``cursor``.

        Args:
            filters: Active filter set.
            cursor: Position to start after, or None for the first page.
            limit: Maximum number of items to return (> 0).

        Returns:
            The batch and its boundary cursors.

        Raises:
            FetchError: If the underlying store request fails.
            CursorMisuseError: If the cursor was issued for other filters.
        """
        ...

    async def fetch_total_count(self, filters: FilterSet) -> int:
        """Count all items matching ``filters``.

        This is an expensive aggregate; callers only request it when the
        filter fingerprint changes.

        Args:
            filters: Active filter set.

        Returns:
            Number of matching items (>= 0).

        Raises:
            FetchError: If the underlying store request fails.
        """
        ...
