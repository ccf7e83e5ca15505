"""Ports (interfaces) for the application.

This module contains the Protocol definition that separates the pagination
engine from the stores it pages through, together with the value types that
cross that boundary.
"""

from src.ports.query_source import (
    SEARCH_FILTER_KEY,
    Cursor,
    FilterSet,
    PageResult,
    QuerySource,
    ValueRange,
)

__all__ = [
    # Data classes
    "Cursor",
    "PageResult",
    "ValueRange",
    # Filter types
    "FilterSet",
    "SEARCH_FILTER_KEY",
    # Protocols
    "QuerySource",
]
