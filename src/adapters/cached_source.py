"""QuerySource decorator that caches total counts.

Counting is the one expensive aggregate the engine asks for. This wrapper
keeps each count in an injected TTLCache keyed by filter fingerprint; pages
always go straight to the wrapped source.
"""

from typing import Any, Generic

from src.core.cache import TTLCache
from src.core.cursor import fingerprint_filters
from src.core.logging import get_logger
from src.ports.query_source import Cursor, FilterSet, ItemT, PageResult, QuerySource

logger = get_logger(__name__)


class CachedQuerySource(Generic[ItemT]):
    """Wraps a QuerySource and caches ``fetch_total_count`` per fingerprint.

    Example:
        cache = TTLCache(ttl_seconds=300)
        source = CachedQuerySource(SQLiteQuerySource(...), cache)
    """

    def __init__(
        self,
        source: QuerySource[ItemT],
        cache: TTLCache[str, int] | None = None,
    ) -> None:
        self._source = source
        self._cache: TTLCache[str, int] = cache if cache is not None else TTLCache()

    @property
    def sort_key(self) -> str:
        return self._source.sort_key

    @property
    def wrapped(self) -> QuerySource[ItemT]:
        return self._source

    async def __aenter__(self) -> "CachedQuerySource[ItemT]":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def connect(self) -> None:
        """Connect the wrapped source if it needs connecting."""
        connect = getattr(self._source, "connect", None)
        if connect is not None:
            await connect()

    async def close(self) -> None:
        """Close the wrapped source if it holds resources."""
        close = getattr(self._source, "close", None)
        if close is not None:
            await close()

    async def fetch_page(
        self,
        filters: FilterSet,
        cursor: Cursor | None,
        limit: int,
    ) -> PageResult[ItemT]:
        return await self._source.fetch_page(filters, cursor, limit)

    async def fetch_total_count(self, filters: FilterSet) -> int:
        key = fingerprint_filters(filters)
        if key in self._cache:
            logger.debug("count_cache_hit", fingerprint=key)

        async def load() -> int:
            logger.debug("count_cache_miss", fingerprint=key)
            return await self._source.fetch_total_count(filters)

        return await self._cache.get_or_load(key, load)

    def invalidate(self, filters: FilterSet | None = None) -> None:
        """Forget cached counts after a write.

        Args:
            filters: Forget only this filter set's count; None forgets all.
        """
        if filters is None:
            self._cache.clear()
        else:
            self._cache.invalidate(fingerprint_filters(filters))
