"""Error classification and the pagination error taxonomy.

Query source adapters turn store and transport failures into FetchError
subclasses; controllers catch FetchError and publish it on the view instead
of raising. Programming errors (cursor misuse, corrupt page stack) are
separate types that always propagate.

Example:
    from src.core.errors import fetch_error_from_exception

    try:
        rows = await run_query()
    except sqlite3.Error as ex:
        raise fetch_error_from_exception(ex) from ex
"""

import asyncio
from enum import Enum, auto


class ErrorCategory(Enum):
    """Classification of error types for handling decisions."""

    # Transient errors - safe for the caller to retry
    RATE_LIMIT = auto()  # Store rate limiting / quota
    TIMEOUT = auto()  # Request/operation timeout
    NETWORK = auto()  # Network connectivity issues
    SERVICE_UNAVAILABLE = auto()  # Temporary service outage (5xx)
    BUSY = auto()  # Store locked or overloaded

    # Permanent errors - retrying the same request will fail again
    INVALID_INPUT = auto()  # Bad filter or malformed request (4xx)
    AUTH_FAILURE = auto()  # Authentication/authorization error
    NOT_FOUND = auto()  # Collection or endpoint not found
    CONFIGURATION = auto()  # Missing configuration or setup issue
    UNKNOWN = auto()  # Unclassified error


RETRYABLE_CATEGORIES = {
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.TIMEOUT,
    ErrorCategory.NETWORK,
    ErrorCategory.SERVICE_UNAVAILABLE,
    ErrorCategory.BUSY,
}


class FetchError(Exception):
    """A query source request failed.

    This is the only error kind controllers surface to the calling view.

    Attributes:
        category: The classified cause of the failure.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.original_error = original_error

    @property
    def retryable(self) -> bool:
        return is_retryable(self.category)

    @classmethod
    def from_exception(
        cls,
        ex: Exception,
        category: ErrorCategory | None = None,
    ) -> "FetchError":
        """Create an error of this class from an existing exception."""
        if category is None:
            category = classify_error(ex)
        return cls(
            message=str(ex) or type(ex).__name__,
            category=category,
            original_error=ex,
        )


class TransientFetchError(FetchError):
    """Fetch failure caused by a timeout, transport or temporary store problem."""


class PermanentFetchError(FetchError):
    """Fetch failure that will recur if the same request is repeated."""


class CursorMisuseError(AssertionError):
    """A cursor was used under a fingerprint or sort key it was not issued for."""


class PageStackError(RuntimeError):
    """A page boundary was pushed without the current page having advanced."""


def classify_error(error: Exception) -> ErrorCategory:
    """Classify an exception into an error category.

    Args:
        error: The exception to classify.

    Returns:
        The ErrorCategory that best matches the error.
    """
    error_str = str(error).lower()

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    if "timed out" in error_str or "timeout" in error_str:
        return ErrorCategory.TIMEOUT

    if isinstance(error, ConnectionError):
        return ErrorCategory.NETWORK
    if "connection" in error_str or "network" in error_str:
        return ErrorCategory.NETWORK

    if "rate" in error_str and "limit" in error_str:
        return ErrorCategory.RATE_LIMIT
    if "429" in error_str or "too many requests" in error_str:
        return ErrorCategory.RATE_LIMIT
    if "quota" in error_str or "resource exhausted" in error_str:
        return ErrorCategory.RATE_LIMIT

    # SQLite reports lock contention as "database is locked"
    if "locked" in error_str or "busy" in error_str:
        return ErrorCategory.BUSY

    if "503" in error_str or "service unavailable" in error_str:
        return ErrorCategory.SERVICE_UNAVAILABLE
    if "502" in error_str or "bad gateway" in error_str:
        return ErrorCategory.SERVICE_UNAVAILABLE
    if "500" in error_str or "internal server error" in error_str:
        return ErrorCategory.SERVICE_UNAVAILABLE

    if "401" in error_str or "unauthorized" in error_str:
        return ErrorCategory.AUTH_FAILURE
    if "403" in error_str or "forbidden" in error_str:
        return ErrorCategory.AUTH_FAILURE
    if "permission" in error_str:
        return ErrorCategory.AUTH_FAILURE

    if "404" in error_str or "not found" in error_str:
        return ErrorCategory.NOT_FOUND
    if "no such table" in error_str:
        return ErrorCategory.NOT_FOUND

    if "400" in error_str or "bad request" in error_str:
        return ErrorCategory.INVALID_INPUT
    if "invalid" in error_str or "validation" in error_str:
        return ErrorCategory.INVALID_INPUT
    if "no such column" in error_str:
        return ErrorCategory.INVALID_INPUT

    if "configuration" in error_str or "not configured" in error_str:
        return ErrorCategory.CONFIGURATION

    return ErrorCategory.UNKNOWN


def is_retryable(category: ErrorCategory) -> bool:
    """Check if an error category is safe to retry.

    Args:
        category: The error category to check.

    Returns:
        True if the error is transient and can be retried.
    """
    return category in RETRYABLE_CATEGORIES


def fetch_error_from_exception(
    ex: Exception, category: ErrorCategory | None = None
) -> FetchError:
    """Wrap a store or transport exception in the matching FetchError subclass.

    Args:
        ex: The exception raised by the underlying store client.
        category: Override for the classified category.

    Returns:
        A TransientFetchError for retryable categories, otherwise a
        PermanentFetchError.
    """
    if isinstance(ex, FetchError):
        return ex
    if category is None:
        category = classify_error(ex)
    if is_retryable(category):
        return TransientFetchError.from_exception(ex, category)
    return PermanentFetchError.from_exception(ex, category)
