"""Cursor bookkeeping shared by both pagination controllers.

Contains the filter fingerprint, the keyset token codec used by the local
adapters, and the page boundary stack the table controller replays from when
navigating backwards.
"""

import base64
import binascii
import hashlib
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from src.core.errors import CursorMisuseError, PageStackError
from src.ports.query_source import Cursor, FilterSet, ValueRange


def _canonical(value: Any) -> Any:
    """Reduce a filter value to a JSON-stable form."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, ValueRange):
        return {"$range": [_canonical(value.start), _canonical(value.end)]}
    if isinstance(value, Mapping):
        return {
            str(key): _canonical(val)
            for key, val in value.items()
            if val is not None
        }
    if isinstance(value, (set, frozenset)):
        return sorted((_canonical(val) for val in value), key=repr)
    if isinstance(value, (list, tuple)):
        return [_canonical(val) for val in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return repr(value)


def fingerprint_filters(filters: FilterSet | None) -> str:
    """Compute the order-independent fingerprint of a filter set.

    Keys are sorted, ``None`` values (unconstrained fields) are dropped and
    set values are sorted, so two filter sets selecting the same rows always
    share a fingerprint.

    Args:
        filters: The filter set, or None for no filters.

    Returns:
        Hex SHA-256 digest of the canonical serialization.
    """
    canonical = _canonical(dict(filters or {}))
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def check_cursor(cursor: Cursor | None, fingerprint: str, sort_key: str) -> None:
    """Fail loudly if a cursor is about to be sent with a foreign query.

    Raises:
        CursorMisuseError: If the cursor was issued under another fingerprint
            or sort key.
    """
    if cursor is None:
        return
    if cursor.fingerprint != fingerprint:
        raise CursorMisuseError(
            f"Cursor issued for fingerprint {cursor.fingerprint[:12]} "
            f"used with fingerprint {fingerprint[:12]}"
        )
    if cursor.sort_key != sort_key:
        raise CursorMisuseError(
            f"Cursor issued for sort key {cursor.sort_key!r} "
            f"used with sort key {sort_key!r}"
        )


def encode_keyset_token(sort_value: Any, item_id: Any) -> str:
    """Encode a (sort value, id) keyset position as an opaque token."""
    payload = json.dumps([sort_value, item_id], separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_keyset_token(token: str) -> tuple[Any, Any]:
    """Decode a token produced by encode_keyset_token.

    Raises:
        CursorMisuseError: If the token is not a keyset token.
    """
    try:
        decoded = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as ex:
        raise CursorMisuseError(f"Malformed cursor token: {token!r}") from ex
    if not isinstance(decoded, list) or len(decoded) != 2:
        raise CursorMisuseError(f"Malformed cursor token: {token!r}")
    return decoded[0], decoded[1]


@dataclass(frozen=True)
class PageBoundary:
    """A page that has already been displayed.

    Attributes:
        first_cursor: Cursor at the page's first item.
        last_cursor: Cursor at the page's last item.
        start_offset: 1-based position of the page's first item.
        item_count: Number of items the page held.
    """

    first_cursor: Cursor
    last_cursor: Cursor
    start_offset: int
    item_count: int

    @property
    def end_offset(self) -> int:
        return self.start_offset + self.item_count - 1


class PageStack:
    """Pages the user has advanced through, oldest first.

    The stack holds exactly one boundary per page; ``next_offset`` is always
    one past the last item of the newest boundary.
    """

    def __init__(self) -> None:
        self._boundaries: list[PageBoundary] = []

    def __len__(self) -> int:
        return len(self._boundaries)

    def __iter__(self) -> Iterator[PageBoundary]:
        return iter(self._boundaries)

    def __bool__(self) -> bool:
        return bool(self._boundaries)

    @property
    def next_offset(self) -> int:
        """Offset of the first item after every stacked page."""
        top = self.top()
        if top is None:
            return 1
        return top.start_offset + top.item_count

    def push(self, boundary: PageBoundary) -> None:
        """Append the boundary of the page being left.

        Raises:
            PageStackError: If the boundary does not start where the stacked
                pages end, or holds no items.
        """
        if boundary.item_count < 1:
            raise PageStackError("Cannot push a page boundary with no items")
        expected = self.next_offset
        if boundary.start_offset != expected:
            raise PageStackError(
                f"Page boundary starts at {boundary.start_offset}, "
                f"expected {expected}"
            )
        self._boundaries.append(boundary)

    def pop(self) -> PageBoundary | None:
        """Remove and return the newest boundary, or None if empty."""
        if not self._boundaries:
            return None
        return self._boundaries.pop()

    def top(self) -> PageBoundary | None:
        """Return the newest boundary without removing it."""
        if not self._boundaries:
            return None
        return self._boundaries[-1]

    def below_top(self) -> PageBoundary | None:
        """Return the boundary beneath the newest one, or None."""
        if len(self._boundaries) < 2:
            return None
        return self._boundaries[-2]

    def clear(self) -> None:
        self._boundaries.clear()
