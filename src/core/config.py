"""Environment-driven settings for query sources and controllers.

Environment variables:
    QUERY_BACKEND: "memory", "sqlite" or "http" (default: memory).
    DATABASE_PATH: SQLite database file (default: data/app.db).
    QUERY_SOURCE_URL: Base URL of the document store HTTP API.
    QUERY_SOURCE_TOKEN: Bearer token sent to the document store, if any.
    QUERY_TIMEOUT_SECONDS: Per-request timeout for HTTP sources (default: 30).
    DEFAULT_PAGE_SIZE: Page size for new controllers (default: 10).
    COUNT_CACHE_TTL_SECONDS: Lifetime of cached total counts; 0 disables
        the cache (default: 300).
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from src.core.cache import DEFAULT_TTL_SECONDS
from src.core.pagination import DEFAULT_PAGE_SIZE

SUPPORTED_BACKENDS = ("memory", "sqlite", "http")


def _int_setting(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as ex:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from ex
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class PagerSettings:
    """Runtime configuration for building query sources.

    Attributes:
        backend: Query source backend name.
        database_path: Path to the SQLite database (sqlite backend).
        source_url: Base URL of the remote store (http backend).
        source_token: Optional bearer token for the remote store.
        timeout_seconds: HTTP request timeout.
        default_page_size: Page size for new controllers.
        count_cache_ttl_seconds: Total-count cache lifetime; 0 disables it.
    """

    backend: str = "memory"
    database_path: str = "data/app.db"
    source_url: str | None = None
    source_token: str | None = None
    timeout_seconds: int = 30
    default_page_size: int = DEFAULT_PAGE_SIZE
    count_cache_ttl_seconds: int = DEFAULT_TTL_SECONDS

    def __post_init__(self) -> None:
        if self.backend not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported backend: {self.backend!r}. "
                f"Supported backends: {', '.join(SUPPORTED_BACKENDS)}"
            )
        if self.backend == "http" and not self.source_url:
            raise ValueError("QUERY_SOURCE_URL is required for the http backend")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "PagerSettings":
        """Read settings from the environment.

        Args:
            env: Mapping to read instead of os.environ (for tests).

        Raises:
            ValueError: If a variable holds an invalid value.
        """
        if env is None:
            env = os.environ
        return cls(
            backend=env.get("QUERY_BACKEND", "memory").strip().lower(),
            database_path=env.get("DATABASE_PATH", "data/app.db"),
            source_url=env.get("QUERY_SOURCE_URL") or None,
            source_token=env.get("QUERY_SOURCE_TOKEN") or None,
            timeout_seconds=_int_setting(env, "QUERY_TIMEOUT_SECONDS", 30, 1),
            default_page_size=_int_setting(env, "DEFAULT_PAGE_SIZE", DEFAULT_PAGE_SIZE, 1),
            count_cache_ttl_seconds=_int_setting(
                env, "COUNT_CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS, 0
            ),
        )
