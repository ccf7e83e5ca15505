"""Adapters for external systems.

This module contains implementations of the QuerySource protocol for the
supported storage backends.
"""

from src.adapters.cached_source import CachedQuerySource
from src.adapters.factory import create_query_source, create_query_source_from_settings
from src.adapters.http_source import HttpQuerySource
from src.adapters.memory_source import InMemoryQuerySource
from src.adapters.sqlite_source import SQLiteQuerySource

__all__ = [
    "CachedQuerySource",
    "HttpQuerySource",
    "InMemoryQuerySource",
    "SQLiteQuerySource",
    "create_query_source",
    "create_query_source_from_settings",
]
