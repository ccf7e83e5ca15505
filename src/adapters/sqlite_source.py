"""SQLite implementation of the QuerySource protocol.

Pages one table with keyset pagination: rows are ordered by the sort column
descending with the id column as tiebreaker, and a cursor is the
``(sort value, id)`` pair of the row it points at. No OFFSET is ever used.

All methods are async, wrapping synchronous sqlite3 calls with
asyncio.to_thread. Both file-based and in-memory (:memory:) databases work.
"""

import asyncio
import re
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any, cast

from src.core.cursor import (
    check_cursor,
    decode_keyset_token,
    encode_keyset_token,
    fingerprint_filters,
)
from src.core.errors import (
    ErrorCategory,
    PermanentFetchError,
    fetch_error_from_exception,
)
from src.core.logging import get_logger
from src.ports.query_source import (
    SEARCH_FILTER_KEY,
    Cursor,
    FilterSet,
    PageResult,
    ValueRange,
)

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_SELECT_COLUMNS = "SELECT name FROM pragma_table_info(?);"


def _quote(identifier: str) -> str:
    if not _IDENTIFIER.match(identifier):
        raise ValueError(f"Invalid SQL identifier: {identifier!r}")
    return f'"{identifier}"'


class SQLiteQuerySource:
    """QuerySource backed by a single SQLite table.

    Example:
        async with SQLiteQuerySource(
            "data/app.db", table="job_reports", sort_key="created_at"
        ) as source:
            page = await source.fetch_page({"status": "open"}, None, 20)

    For testing, use `:memory:` as the db_path and ``execute_script`` to
    create and fill the table.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        table: str,
        sort_key: str,
        id_key: str = "id",
        search_fields: Sequence[str] = (),
    ) -> None:
        """Initialize the source.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
            table: Table to page through.
            sort_key: Column the rows are ordered by (descending).
            id_key: Unique column used as the ordering tiebreaker.
            search_fields: Text columns scanned by the search filter.

        Raises:
            ValueError: If any name is not a plain SQL identifier.
        """
        self._db_path = str(db_path)
        self._table = _quote(table)
        self._table_name = table
        self.sort_key = sort_key
        self._sort_column = _quote(sort_key)
        self._id_key = id_key
        self._id_column = _quote(id_key)
        self._search_fields = tuple(search_fields)
        for name in self._search_fields:
            _quote(name)
        self._columns: frozenset[str] = frozenset()
        self._connection: sqlite3.Connection | None = None

    async def __aenter__(self) -> "SQLiteQuerySource":
        """Async context manager entry: connect to the database."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Async context manager exit: close the database connection."""
        await self.close()

    async def connect(self) -> None:
        """Open the database connection.

        Must be called before fetching, unless using the async context manager.
        """
        logger.debug("connecting_to_database", path=self._db_path, table=self._table_name)
        self._connection = await asyncio.to_thread(self._connect_sync)

    def _connect_sync(self) -> sqlite3.Connection:
        """Synchronous connection setup.

        check_same_thread=False is required because asyncio.to_thread may run
        each call on a different worker thread. Calls are sequential per
        controller, so the connection is never used concurrently for writes.
        """
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            logger.debug("closing_database", path=self._db_path)
            await asyncio.to_thread(self._connection.close)
            self._connection = None
            self._columns = frozenset()

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Database not connected. Call connect() or use async context manager."
            )
        return self._connection

    async def execute_script(self, script: str) -> None:
        """Run a SQL script (schema setup and fixtures)."""
        conn = self._ensure_connected()

        def run_sync() -> None:
            conn.executescript(script)
            conn.commit()

        await asyncio.to_thread(run_sync)
        self._columns = frozenset()

    # =========================================================================
    # QuerySource Implementation
    # =========================================================================

    async def fetch_page(
        self,
        filters: FilterSet,
        cursor: Cursor | None,
        limit: int,
    ) -> PageResult[dict[str, Any]]:
        """Return up to ``limit`` matching rows after ``cursor``."""
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        fingerprint = fingerprint_filters(filters)
        check_cursor(cursor, fingerprint, self.sort_key)
        conn = self._ensure_connected()

        def query_sync() -> list[sqlite3.Row]:
            clauses, params = self._where(conn, filters)
            if cursor is not None:
                sort_value, item_id = decode_keyset_token(cursor.token)
                clauses.append(
                    f"({self._sort_column} < ? OR "
                    f"({self._sort_column} = ? AND {self._id_column} < ?))"
                )
                params.extend([sort_value, sort_value, item_id])
            sql = (
                f"SELECT * FROM {self._table} WHERE {' AND '.join(clauses)} "
                f"ORDER BY {self._sort_column} DESC, {self._id_column} DESC LIMIT ?;"
            )
            params.append(limit)
            return cast(list[sqlite3.Row], conn.execute(sql, params).fetchall())

        try:
            rows = await asyncio.to_thread(query_sync)
        except sqlite3.Error as ex:
            logger.warning("query_failed", table=self._table_name, error=str(ex))
            raise fetch_error_from_exception(ex) from ex

        items = tuple({key: row[key] for key in row.keys()} for row in rows)
        if not items:
            return PageResult(items=())
        return PageResult(
            items=items,
            first_cursor=self._cursor_at(items[0], fingerprint),
            last_cursor=self._cursor_at(items[-1], fingerprint),
        )

    async def fetch_total_count(self, filters: FilterSet) -> int:
        """Count the rows matching ``filters``."""
        conn = self._ensure_connected()

        def count_sync() -> int:
            clauses, params = self._where(conn, filters)
            sql = f"SELECT COUNT(*) FROM {self._table} WHERE {' AND '.join(clauses)};"
            return int(conn.execute(sql, params).fetchone()[0])

        try:
            return await asyncio.to_thread(count_sync)
        except sqlite3.Error as ex:
            logger.warning("count_failed", table=self._table_name, error=str(ex))
            raise fetch_error_from_exception(ex) from ex

    # =========================================================================
    # Query building
    # =========================================================================

    def _table_columns(self, conn: sqlite3.Connection) -> frozenset[str]:
        if not self._columns:
            rows = conn.execute(_SELECT_COLUMNS, (self._table_name,)).fetchall()
            self._columns = frozenset(row[0] for row in rows)
        return self._columns

    def _where(
        self, conn: sqlite3.Connection, filters: FilterSet
    ) -> tuple[list[str], list[Any]]:
        columns = self._table_columns(conn)
        if not columns:
            raise PermanentFetchError(
                f"Table not found: {self._table_name}", ErrorCategory.NOT_FOUND
            )

        clauses = [f"{self._sort_column} IS NOT NULL"]
        params: list[Any] = []
        for field_name, constraint in filters.items():
            if constraint is None:
                continue

            if field_name == SEARCH_FILTER_KEY:
                needle = str(constraint).strip()
                if needle and self._search_fields:
                    likes = [f"{_quote(name)} LIKE ?" for name in self._search_fields]
                    clauses.append(f"({' OR '.join(likes)})")
                    params.extend([f"%{needle}%"] * len(likes))
                continue

            if field_name not in columns:
                raise PermanentFetchError(
                    f"Invalid filter field for {self._table_name}: {field_name!r}",
                    ErrorCategory.INVALID_INPUT,
                )
            column = _quote(field_name)

            if isinstance(constraint, ValueRange):
                if constraint.start is not None:
                    clauses.append(f"{column} >= ?")
                    params.append(constraint.start)
                if constraint.end is not None:
                    clauses.append(f"{column} <= ?")
                    params.append(constraint.end)
            elif isinstance(constraint, (set, frozenset, list, tuple)):
                values = list(constraint)
                if not values:
                    clauses.append("0")
                    continue
                placeholders = ", ".join("?" for _ in values)
                clauses.append(f"{column} IN ({placeholders})")
                params.extend(values)
            else:
                clauses.append(f"{column} = ?")
                params.append(constraint)
        return clauses, params

    def _cursor_at(self, row: dict[str, Any], fingerprint: str) -> Cursor:
        sort_value = row[self.sort_key]
        return Cursor(
            token=encode_keyset_token(sort_value, row[self._id_key]),
            sort_value=sort_value,
            fingerprint=fingerprint,
            sort_key=self.sort_key,
        )
