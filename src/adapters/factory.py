"""Query source factory for the supported backends.

Supported backends:
- "memory": In-memory records (tests, local development)
- "sqlite": Keyset pagination over a SQLite table
- "http": Remote document store collection

Example:
    # Remote collection with cached total counts
    source = create_query_source(
        "http",
        collection="users",
        sort_key="dateAdded",
        base_url="https://store.example.com/v1",
        count_cache_ttl=300,
    )

    # From environment settings
    source = create_query_source_from_settings(
        PagerSettings.from_env(), collection="job_reports", sort_key="createdAt"
    )
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from src.adapters.cached_source import CachedQuerySource
from src.adapters.http_source import HttpQuerySource
from src.adapters.memory_source import InMemoryQuerySource
from src.adapters.sqlite_source import SQLiteQuerySource
from src.core.cache import Clock, TTLCache
from src.core.config import SUPPORTED_BACKENDS, PagerSettings
from src.ports.query_source import QuerySource


def create_query_source(
    backend: str,
    *,
    collection: str,
    sort_key: str,
    id_key: str = "id",
    search_fields: Sequence[str] = (),
    records: Iterable[Mapping[str, Any]] = (),
    db_path: str | Path | None = None,
    base_url: str | None = None,
    token: str | None = None,
    timeout_seconds: float = 30,
    count_cache_ttl: float | None = None,
    clock: Clock | None = None,
) -> QuerySource[Any]:
    """Create a query source for one collection.

    Args:
        backend: "memory", "sqlite" or "http".
        collection: Collection (http) or table (sqlite) name.
        sort_key: Field the collection is ordered by.
        id_key: Unique tiebreaker field.
        search_fields: Fields scanned by the search filter (memory, sqlite).
        records: Initial records (memory).
        db_path: Database file (sqlite, required).
        base_url: Store API root (http, required).
        token: Bearer token (http).
        timeout_seconds: Request timeout (http).
        count_cache_ttl: Wrap the source in a CachedQuerySource with this TTL.
        clock: Clock for the count cache.

    Returns:
        A query source. SQLite sources must still be connected by the caller.

    Raises:
        ValueError: If the backend is not supported or required kwargs are missing.
    """
    source: QuerySource[Any]
    if backend == "memory":
        source = InMemoryQuerySource(
            records, sort_key=sort_key, id_key=id_key, search_fields=search_fields
        )
    elif backend == "sqlite":
        if db_path is None:
            raise ValueError("'db_path' is required for sqlite backend")
        source = SQLiteQuerySource(
            db_path,
            table=collection,
            sort_key=sort_key,
            id_key=id_key,
            search_fields=search_fields,
        )
    elif backend == "http":
        if not base_url:
            raise ValueError("'base_url' is required for http backend")
        source = HttpQuerySource(
            base_url,
            collection,
            sort_key=sort_key,
            id_key=id_key,
            token=token,
            timeout_seconds=timeout_seconds,
        )
    else:
        raise ValueError(
            f"Unsupported backend: {backend!r}. "
            f"Supported backends: {', '.join(repr(name) for name in SUPPORTED_BACKENDS)}"
        )

    if count_cache_ttl:
        return CachedQuerySource(source, TTLCache(ttl_seconds=count_cache_ttl, clock=clock))
    return source


def create_query_source_from_settings(
    settings: PagerSettings,
    *,
    collection: str,
    sort_key: str,
    id_key: str = "id",
    search_fields: Sequence[str] = (),
    records: Iterable[Mapping[str, Any]] = (),
    clock: Clock | None = None,
) -> QuerySource[Any]:
    """Create the query source selected by ``settings`` for one collection."""
    return create_query_source(
        settings.backend,
        collection=collection,
        sort_key=sort_key,
        id_key=id_key,
        search_fields=search_fields,
        records=records,
        db_path=settings.database_path,
        base_url=settings.source_url,
        token=settings.source_token,
        timeout_seconds=settings.timeout_seconds,
        count_cache_ttl=settings.count_cache_ttl_seconds or None,
        clock=clock,
    )
