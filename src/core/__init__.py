"""Core pagination engine.

This module contains the platform-agnostic controllers that page through a
cursor-only query source, plus the cursor bookkeeping, cache, error taxonomy,
logging and settings they rely on.
"""

from src.core.cache import Clock, MonotonicClock, TTLCache
from src.core.config import PagerSettings
from src.core.cursor import (
    PageBoundary,
    PageStack,
    check_cursor,
    decode_keyset_token,
    encode_keyset_token,
    fingerprint_filters,
)
from src.core.errors import (
    CursorMisuseError,
    ErrorCategory,
    FetchError,
    PageStackError,
    PermanentFetchError,
    TransientFetchError,
    classify_error,
    fetch_error_from_exception,
    is_retryable,
)
from src.core.feed import FeedView, IncrementalFeedController, default_item_key
from src.core.logging import (
    bind_contextvars,
    clear_contextvars,
    configure_logging,
    get_logger,
    unbind_contextvars,
    view_context,
)
from src.core.pagination import (
    DEFAULT_PAGE_SIZE,
    PageRange,
    PaginationController,
    PaginationView,
    Phase,
)

__all__ = [
    # Controllers
    "DEFAULT_PAGE_SIZE",
    "FeedView",
    "IncrementalFeedController",
    "PageRange",
    "PaginationController",
    "PaginationView",
    "Phase",
    "default_item_key",
    # Cursor bookkeeping
    "PageBoundary",
    "PageStack",
    "check_cursor",
    "decode_keyset_token",
    "encode_keyset_token",
    "fingerprint_filters",
    # Caching
    "Clock",
    "MonotonicClock",
    "TTLCache",
    # Configuration
    "PagerSettings",
    # Error handling
    "CursorMisuseError",
    "ErrorCategory",
    "FetchError",
    "PageStackError",
    "PermanentFetchError",
    "TransientFetchError",
    "classify_error",
    "fetch_error_from_exception",
    "is_retryable",
    # Logging
    "bind_contextvars",
    "clear_contextvars",
    "configure_logging",
    "get_logger",
    "unbind_contextvars",
    "view_context",
]
