"""Remote document store implementation of the QuerySource protocol.

Talks to a collection endpoint over HTTP:

    POST {base_url}/{collection}:query
        {"filters": {...}, "start_after": <token|null>, "limit": N,
         "order_by": [{"field": <sort_key>, "direction": "desc"},
                      {"field": <id_key>, "direction": "desc"}]}
        -> {"items": [...], "firstCursor": {"token": ..., "sortValue": ...},
            "lastCursor": {...}}

    POST {base_url}/{collection}:count
        {"filters": {...}}
        -> {"count": N}

Filters are sent as ``{"field": value}`` for equality,
``{"field": {"range": {"start": a, "end": b}}}`` for ranges and
``{"field": {"in": [...]}}`` for membership.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.cursor import check_cursor, fingerprint_filters
from src.core.errors import (
    ErrorCategory,
    PermanentFetchError,
    TransientFetchError,
    is_retryable,
)
from src.core.logging import get_logger
from src.ports.query_source import Cursor, FilterSet, PageResult, ValueRange

logger = get_logger(__name__)


# =============================================================================
# Wire schemas
# =============================================================================


class CursorPayload(BaseModel):
    """Cursor as returned by the store."""

    token: str = Field(..., min_length=1)
    sort_value: Any = Field(None, alias="sortValue")

    model_config = ConfigDict(populate_by_name=True)


class PagePayload(BaseModel):
    """Response body of a query request."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    first_cursor: CursorPayload | None = Field(None, alias="firstCursor")
    last_cursor: CursorPayload | None = Field(None, alias="lastCursor")

    model_config = ConfigDict(populate_by_name=True)


class CountPayload(BaseModel):
    """Response body of a count request."""

    count: int = Field(..., ge=0)


def _encode_value(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def encode_filters(filters: FilterSet) -> dict[str, Any]:
    """Convert a filter set to its JSON request form, dropping None values."""
    encoded: dict[str, Any] = {}
    for field_name, constraint in filters.items():
        if constraint is None:
            continue
        if isinstance(constraint, ValueRange):
            encoded[field_name] = {
                "range": {
                    "start": _encode_value(constraint.start),
                    "end": _encode_value(constraint.end),
                }
            }
        elif isinstance(constraint, (set, frozenset)):
            encoded[field_name] = {"in": sorted(_encode_value(v) for v in constraint)}
        elif isinstance(constraint, (list, tuple)):
            encoded[field_name] = {"in": [_encode_value(v) for v in constraint]}
        else:
            encoded[field_name] = _encode_value(constraint)
    return encoded


def _status_category(status: int) -> ErrorCategory:
    if status == 429:
        return ErrorCategory.RATE_LIMIT
    if status >= 500:
        return ErrorCategory.SERVICE_UNAVAILABLE
    if status in (401, 403):
        return ErrorCategory.AUTH_FAILURE
    if status == 404:
        return ErrorCategory.NOT_FOUND
    return ErrorCategory.INVALID_INPUT


class HttpQuerySource:
    """QuerySource that queries a remote document store collection.

    A shared ``aiohttp.ClientSession`` can be injected; without one, each
    request opens and closes its own session.

    Example:
        source = HttpQuerySource(
            "https://store.example.com/v1",
            "users",
            sort_key="dateAdded",
            token=settings.source_token,
        )
        page = await source.fetch_page({"isVerified": True}, None, 10)
    """

    def __init__(
        self,
        base_url: str,
        collection: str,
        *,
        sort_key: str,
        id_key: str = "id",
        token: str | None = None,
        timeout_seconds: float = 30,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            base_url: Root URL of the store API.
            collection: Collection name appended to the base URL.
            sort_key: Field the collection is ordered by (descending).
            id_key: Unique field used as the ordering tiebreaker.
            token: Optional bearer token.
            timeout_seconds: Total timeout per request.
            session: Optional shared client session.
        """
        self._base_url = base_url.rstrip("/")
        self._collection = collection
        self.sort_key = sort_key
        self._id_key = id_key
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session

    async def fetch_page(
        self,
        filters: FilterSet,
        cursor: Cursor | None,
        limit: int,
    ) -> PageResult[dict[str, Any]]:
        """Request up to ``limit`` items after ``cursor``."""
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        fingerprint = fingerprint_filters(filters)
        check_cursor(cursor, fingerprint, self.sort_key)

        body = {
            "filters": encode_filters(filters),
            "start_after": cursor.token if cursor is not None else None,
            "limit": limit,
            "order_by": [
                {"field": self.sort_key, "direction": "desc"},
                {"field": self._id_key, "direction": "desc"},
            ],
        }
        data = await self._post("query", body)
        try:
            payload = PagePayload.model_validate(data)
        except ValidationError as ex:
            logger.error("invalid_page_response", collection=self._collection, error=str(ex))
            raise PermanentFetchError.from_exception(ex, ErrorCategory.UNKNOWN) from ex

        if len(payload.items) > limit:
            # The store cursor points past items we would drop
            logger.error(
                "oversized_page_response",
                collection=self._collection,
                limit=limit,
                received=len(payload.items),
            )
            raise PermanentFetchError(
                f"Store returned {len(payload.items)} items for a limit of {limit}",
                ErrorCategory.UNKNOWN,
            )

        items = tuple(payload.items)
        if not items:
            return PageResult(items=())
        if payload.first_cursor is None or payload.last_cursor is None:
            # A batch without cursors cannot be continued; callers treat the
            # missing trailing cursor as end of data.
            logger.warning("page_without_cursors", collection=self._collection)
            return PageResult(items=items)

        return PageResult(
            items=items,
            first_cursor=self._cursor(payload.first_cursor, fingerprint),
            last_cursor=self._cursor(payload.last_cursor, fingerprint),
        )

    async def fetch_total_count(self, filters: FilterSet) -> int:
        """Request the number of items matching ``filters``."""
        data = await self._post("count", {"filters": encode_filters(filters)})
        try:
            return CountPayload.model_validate(data).count
        except ValidationError as ex:
            logger.error("invalid_count_response", collection=self._collection, error=str(ex))
            raise PermanentFetchError.from_exception(ex, ErrorCategory.UNKNOWN) from ex

    def _cursor(self, payload: CursorPayload, fingerprint: str) -> Cursor:
        return Cursor(
            token=payload.token,
            sort_value=payload.sort_value,
            fingerprint=fingerprint,
            sort_key=self.sort_key,
        )

    async def _post(self, action: str, body: Mapping[str, Any]) -> Any:
        url = f"{self._base_url}/{self._collection}:{action}"
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}

        logger.debug("store_request", url=url, action=action)
        try:
            if self._session is not None:
                return await self._send(self._session, url, body, headers)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, url, body, headers)
        except aiohttp.ContentTypeError as ex:
            logger.error("non_json_response", url=url, error=str(ex))
            raise PermanentFetchError.from_exception(ex, ErrorCategory.UNKNOWN) from ex
        except asyncio.TimeoutError as ex:
            logger.error("store_timeout", url=url)
            raise TransientFetchError.from_exception(ex, ErrorCategory.TIMEOUT) from ex
        except aiohttp.ClientError as ex:
            logger.error("store_network_error", url=url, error=str(ex))
            raise TransientFetchError.from_exception(ex, ErrorCategory.NETWORK) from ex

    async def _send(
        self,
        session: aiohttp.ClientSession,
        url: str,
        body: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> Any:
        async with session.post(
            url, json=body, headers=headers, timeout=self._timeout
        ) as response:
            if not 200 <= response.status < 300:
                error_text = await response.text()
                category = _status_category(response.status)
                logger.error(
                    "store_request_failed",
                    url=url,
                    status=response.status,
                    category=category.name,
                )
                error_cls = (
                    TransientFetchError if is_retryable(category) else PermanentFetchError
                )
                raise error_cls(
                    f"Store request failed with status {response.status}: {error_text}",
                    category,
                )
            return await response.json()
