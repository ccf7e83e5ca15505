"""In-memory implementation of the QuerySource protocol.

Records are plain mappings held in a list. Pages are produced with keyset
pagination over ``(sort_key, id_key)`` in descending order, which mirrors
what a document store does with an ``orderBy`` plus ``startAfter`` query.
Records missing the sort field are excluded from results, as an ordered
document-store query would exclude them.

This adapter is used by tests and for local development without a store.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from src.core.cursor import (
    check_cursor,
    decode_keyset_token,
    encode_keyset_token,
    fingerprint_filters,
)
from src.ports.query_source import (
    SEARCH_FILTER_KEY,
    Cursor,
    FilterSet,
    PageResult,
    ValueRange,
)

Record = dict[str, Any]


def lookup_field(record: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted field path such as ``country.name`` in a record."""
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def record_matches(
    record: Mapping[str, Any],
    filters: FilterSet,
    search_fields: Sequence[str] = (),
) -> bool:
    """Check a record against a filter set.

    Args:
        record: The record to test.
        filters: Field constraints. None values are ignored.
        search_fields: Fields scanned by the search filter.

    Returns:
        True if every constraint is satisfied.
    """
    for field_name, constraint in filters.items():
        if constraint is None:
            continue

        if field_name == SEARCH_FILTER_KEY:
            needle = str(constraint).strip().lower()
            if needle and not any(
                needle in str(lookup_field(record, name) or "").lower()
                for name in search_fields
            ):
                return False
            continue

        value = lookup_field(record, field_name)
        if isinstance(constraint, ValueRange):
            if not constraint.contains(value):
                return False
        elif isinstance(constraint, (set, frozenset, list, tuple)):
            if value not in constraint:
                return False
        elif value != constraint:
            return False
    return True


class InMemoryQuerySource:
    """QuerySource over a list of records.

    Example:
        source = InMemoryQuerySource(users, sort_key="dateAdded")
        page = await source.fetch_page({"role": "admin"}, None, 10)
        following = await source.fetch_page({"role": "admin"}, page.last_cursor, 10)
    """

    def __init__(
        self,
        records: Iterable[Mapping[str, Any]] = (),
        *,
        sort_key: str,
        id_key: str = "id",
        search_fields: Sequence[str] = (),
    ) -> None:
        """Initialize the source.

        Args:
            records: Initial records. Sort and id values must be JSON scalars.
            sort_key: Field the collection is ordered by (descending).
            id_key: Unique field used as the ordering tiebreaker.
            search_fields: Fields scanned by the search filter.
        """
        self.sort_key = sort_key
        self._id_key = id_key
        self._search_fields = tuple(search_fields)
        self._records: list[Record] = [dict(record) for record in records]

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: Mapping[str, Any]) -> None:
        """Insert a record into the collection."""
        self._records.append(dict(record))

    def remove(self, item_id: Any) -> bool:
        """Delete the record with the given id.

        Returns:
            True if a record was removed.
        """
        for index, record in enumerate(self._records):
            if record.get(self._id_key) == item_id:
                del self._records[index]
                return True
        return False

    async def fetch_page(
        self,
        filters: FilterSet,
        cursor: Cursor | None,
        limit: int,
    ) -> PageResult[Record]:
        """Return up to ``limit`` matching records after ``cursor``."""
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        fingerprint = fingerprint_filters(filters)
        check_cursor(cursor, fingerprint, self.sort_key)

        ordered = sorted(self._matching(filters), key=self._position, reverse=True)
        if cursor is not None:
            after = tuple(decode_keyset_token(cursor.token))
            ordered = [record for record in ordered if self._position(record) < after]

        batch = [dict(record) for record in ordered[:limit]]
        if not batch:
            return PageResult(items=())
        return PageResult(
            items=tuple(batch),
            first_cursor=self._cursor_at(batch[0], fingerprint),
            last_cursor=self._cursor_at(batch[-1], fingerprint),
        )

    async def fetch_total_count(self, filters: FilterSet) -> int:
        """Count the records matching ``filters``."""
        return sum(1 for _ in self._matching(filters))

    def _matching(self, filters: FilterSet) -> Iterable[Record]:
        for record in self._records:
            if lookup_field(record, self.sort_key) is None:
                continue
            if record_matches(record, filters, self._search_fields):
                yield record

    def _position(self, record: Mapping[str, Any]) -> tuple[Any, Any]:
        return (lookup_field(record, self.sort_key), record.get(self._id_key))

    def _cursor_at(self, record: Mapping[str, Any], fingerprint: str) -> Cursor:
        sort_value, item_id = self._position(record)
        return Cursor(
            token=encode_keyset_token(sort_value, item_id),
            sort_value=sort_value,
            fingerprint=fingerprint,
            sort_key=self.sort_key,
        )
