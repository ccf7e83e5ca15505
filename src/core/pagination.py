"""Bidirectional Next/Previous paging over a cursor-only query source.

The controller never asks the source for a "previous" page. Going back
replays a forward query from the boundary recorded when the user advanced,
so both directions share the same ordering and boundary semantics.
"""

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from src.core.cursor import PageBoundary, PageStack, check_cursor, fingerprint_filters
from src.core.errors import CursorMisuseError, FetchError
from src.core.logging import get_logger
from src.ports.query_source import Cursor, FilterSet, ItemT, PageResult, QuerySource

if TYPE_CHECKING:
    from src.core.config import PagerSettings

logger = get_logger(__name__)

ResultT = TypeVar("ResultT")

DEFAULT_PAGE_SIZE = 10


class Phase(Enum):
    """Lifecycle phase shared by the table and feed controllers."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class PageRange:
    """1-based inclusive positions of the displayed items; (0, 0) when empty."""

    start: int
    end: int


@dataclass(frozen=True)
class PaginationView(Generic[ItemT]):
    """Snapshot of a table controller for rendering.

    Attributes:
        items: Items on the current page.
        has_next: Whether a Next control should be enabled.
        has_prev: Whether a Previous control should be enabled.
        range: Positions of the current items within the filtered collection.
        total_count: Items matching the active filters.
        phase: Controller phase.
        page_size: Configured page size.
        first_cursor: Cursor at the first item on the page.
        last_cursor: Cursor at the last item on the page.
        error: The failure from the last operation, when phase is ERROR.
    """

    items: tuple[ItemT, ...]
    has_next: bool
    has_prev: bool
    range: PageRange
    total_count: int
    phase: Phase
    page_size: int
    first_cursor: Cursor | None = None
    last_cursor: Cursor | None = None
    error: FetchError | None = None


class PaginationController(Generic[ItemT]):
    """Drives a paged table over a QuerySource.

    One instance belongs to one list view. Navigation calls that arrive while
    a fetch is in flight are ignored; ``reset`` and ``set_page_size`` supersede
    the in-flight fetch, whose response is then discarded by generation.

    Example:
        controller = PaginationController(source, page_size=20, name="users")
        view = await controller.reset({"role": "admin"})
        if view.has_next:
            view = await controller.go_next()
    """

    def __init__(
        self,
        source: QuerySource[ItemT],
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        filters: FilterSet | None = None,
        trust_total_count: bool = False,
        name: str = "table",
    ) -> None:
        """Initialize the controller.

        Args:
            source: Query source for the collection being listed.
            page_size: Items per page (> 0).
            filters: Initial filter set; no fetch happens until ``reset``.
            trust_total_count: Derive ``has_next`` from the total count instead
                of the full-page heuristic.
            name: View name included in log events.

        Raises:
            ValueError: If page_size is not positive.
        """
        _validate_page_size(page_size)
        self._source = source
        self._page_size = page_size
        self._filters: dict[str, object] = dict(filters or {})
        self._fingerprint = fingerprint_filters(self._filters)
        self._trust_total_count = trust_total_count
        self._logger = logger.bind(view=name)

        self._stack = PageStack()
        self._items: tuple[ItemT, ...] = ()
        self._first_cursor: Cursor | None = None
        self._last_cursor: Cursor | None = None
        self._total_count = 0
        self._counted_fingerprint: str | None = None
        self._end_reached = False
        self._phase = Phase.IDLE
        self._error: FetchError | None = None
        self._generation = 0

    @classmethod
    def from_settings(
        cls,
        source: QuerySource[ItemT],
        settings: "PagerSettings",
        **kwargs: Any,
    ) -> "PaginationController[ItemT]":
        """Build a controller whose page size comes from ``settings``.

        An explicit ``page_size`` keyword still wins over the settings value.
        """
        kwargs.setdefault("page_size", settings.default_page_size)
        return cls(source, **kwargs)

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def filters(self) -> dict[str, object]:
        return dict(self._filters)

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def current_start_offset(self) -> int:
        return self._stack.next_offset

    @property
    def page_stack(self) -> tuple[PageBoundary, ...]:
        return tuple(self._stack)

    # =========================================================================
    # Operations
    # =========================================================================

    async def reset(self, filters: FilterSet | None = None) -> PaginationView[ItemT]:
        """Apply a new filter set and load the first page with its total count.

        Args:
            filters: The filter set to apply; None clears all filters.

        Returns:
            The view after the fetch (or the error state if it failed).
        """
        self._filters = dict(filters or {})
        self._fingerprint = fingerprint_filters(self._filters)
        return await self._restart("reset", refresh_count=True)

    async def set_page_size(self, page_size: int) -> PaginationView[ItemT]:
        """Change the page size and reload from the first page.

        Args:
            page_size: New items per page (> 0).

        Raises:
            ValueError: If page_size is not positive.
        """
        _validate_page_size(page_size)
        self._page_size = page_size
        refresh = self._counted_fingerprint != self._fingerprint
        return await self._restart("set_page_size", refresh_count=refresh)

    async def go_next(self) -> PaginationView[ItemT]:
        """Advance to the page after the current one.

        State changes only after a successful fetch. An empty result keeps
        the current page and disables Next.
        """
        if self._ignored("go_next"):
            return self.current_view()
        if (
            not self._has_next()
            or self._first_cursor is None
            or self._last_cursor is None
        ):
            self._logger.debug("operation_ignored", operation="go_next", reason="no_next_page")
            return self.current_view()

        leaving = PageBoundary(
            first_cursor=self._first_cursor,
            last_cursor=self._last_cursor,
            start_offset=self.current_start_offset,
            item_count=len(self._items),
        )
        start_after = self._checked(leaving.last_cursor)
        generation = self._begin()
        page = await self._fetch(
            "go_next",
            generation,
            self._source.fetch_page(self._filters, start_after, self._page_size),
        )
        if page is None:
            return self.current_view()

        self._validate_page(page)
        if page.is_empty:
            self._end_reached = True
            self._phase = Phase.READY
            self._logger.info("end_of_collection", start_offset=self.current_start_offset)
            return self.current_view()

        self._stack.push(leaving)
        self._apply_page(page)
        self._log_page("go_next", generation)
        return self.current_view()

    async def go_prev(self) -> PaginationView[ItemT]:
        """Return to the previous page by replaying its forward query."""
        if self._ignored("go_prev"):
            return self.current_view()
        target = self._stack.top()
        if target is None:
            self._logger.debug("operation_ignored", operation="go_prev", reason="first_page")
            return self.current_view()

        anchor = self._stack.below_top()
        start_after = self._checked(anchor.last_cursor if anchor is not None else None)
        generation = self._begin()
        page = await self._fetch(
            "go_prev",
            generation,
            self._source.fetch_page(self._filters, start_after, self._page_size),
        )
        if page is None:
            return self.current_view()

        self._validate_page(page)
        self._stack.pop()
        self._apply_page(page)
        self._log_page("go_prev", generation)
        return self.current_view()

    def current_view(self) -> PaginationView[ItemT]:
        """Build the view model for the current state without side effects."""
        if self._items:
            start = self.current_start_offset
            page_range = PageRange(start=start, end=start + len(self._items) - 1)
        else:
            page_range = PageRange(start=0, end=0)
        return PaginationView(
            items=self._items,
            has_next=self._has_next(),
            has_prev=len(self._stack) > 0,
            range=page_range,
            total_count=self._total_count,
            phase=self._phase,
            page_size=self._page_size,
            first_cursor=self._first_cursor,
            last_cursor=self._last_cursor,
            error=self._error,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _restart(self, operation: str, *, refresh_count: bool) -> PaginationView[ItemT]:
        generation = self._begin()
        self._stack.clear()
        self._items = ()
        self._first_cursor = None
        self._last_cursor = None
        self._end_reached = False
        if refresh_count:
            self._total_count = 0
            self._counted_fingerprint = None

        fingerprint = self._fingerprint
        page_request = self._source.fetch_page(self._filters, None, self._page_size)
        if refresh_count:
            request: Awaitable[tuple[PageResult[ItemT], int | None]] = _gather_page_and_count(
                page_request, self._source.fetch_total_count(self._filters)
            )
        else:
            request = _page_only(page_request)

        result = await self._fetch(operation, generation, request)
        if result is None:
            return self.current_view()

        page, total = result
        if total is not None:
            self._total_count = total
            self._counted_fingerprint = fingerprint
        self._apply_page(page)
        self._log_page(operation, generation)
        return self.current_view()

    async def _fetch(
        self,
        operation: str,
        generation: int,
        request: Awaitable[ResultT],
    ) -> ResultT | None:
        """Await a source request and return its result if still current.

        Returns None when the request failed or was superseded.
        """
        try:
            result = await request
        except FetchError as ex:
            if self._is_current(generation):
                self._phase = Phase.ERROR
                self._error = ex
                self._logger.warning(
                    "fetch_failed",
                    operation=operation,
                    generation=generation,
                    category=ex.category.name,
                    error=str(ex),
                )
            else:
                self._drop_stale(operation, generation)
            return None
        except (Exception, asyncio.CancelledError):
            if self._is_current(generation):
                self._phase = Phase.ERROR
            raise

        if not self._is_current(generation):
            self._drop_stale(operation, generation)
            return None
        return result

    def _begin(self) -> int:
        self._generation += 1
        self._phase = Phase.LOADING
        self._error = None
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _ignored(self, operation: str) -> bool:
        if self._phase is Phase.LOADING:
            self._logger.debug(
                "operation_ignored",
                operation=operation,
                reason="loading",
                generation=self._generation,
            )
            return True
        return False

    def _checked(self, cursor: Cursor | None) -> Cursor | None:
        check_cursor(cursor, self._fingerprint, self._source.sort_key)
        return cursor

    def _validate_page(self, page: PageResult[ItemT]) -> None:
        """Reject a page whose cursors belong to another query.

        Runs before the page stack or the current page is touched, so a
        rejected page leaves navigation exactly where it was.
        """
        try:
            self._checked(page.first_cursor)
            self._checked(page.last_cursor)
        except CursorMisuseError:
            self._phase = Phase.ERROR
            raise

    def _apply_page(self, page: PageResult[ItemT]) -> None:
        self._validate_page(page)
        self._items = tuple(page.items)
        self._first_cursor = page.first_cursor
        self._last_cursor = page.last_cursor
        self._end_reached = page.is_empty
        self._phase = Phase.READY

    def _has_next(self) -> bool:
        if not self._items or self._end_reached or self._last_cursor is None:
            return False
        if self._trust_total_count and self._counted_fingerprint == self._fingerprint:
            return self.current_start_offset + len(self._items) - 1 < self._total_count
        return len(self._items) == self._page_size

    def _drop_stale(self, operation: str, generation: int) -> None:
        self._logger.debug(
            "stale_response_dropped",
            operation=operation,
            generation=generation,
            current_generation=self._generation,
        )

    def _log_page(self, operation: str, generation: int) -> None:
        self._logger.info(
            "page_fetched",
            operation=operation,
            generation=generation,
            start_offset=self.current_start_offset,
            item_count=len(self._items),
            total_count=self._total_count,
        )


def _validate_page_size(page_size: int) -> None:
    if page_size < 1:
        raise ValueError(f"page_size must be positive, got {page_size}")


async def _page_only(
    page_request: Awaitable[PageResult[ItemT]],
) -> tuple[PageResult[ItemT], int | None]:
    return await page_request, None


async def _gather_page_and_count(
    page_request: Awaitable[PageResult[ItemT]],
    count_request: Awaitable[int],
) -> tuple[PageResult[ItemT], int | None]:
    """Run the page and total-count requests as one suspension point."""
    page, total = await asyncio.gather(page_request, count_request, return_exceptions=True)
    for outcome in (page, total):
        if isinstance(outcome, BaseException):
            raise outcome
    return page, total
