"""Structured logging for the pagination engine, built on structlog.

Controllers and query source adapters emit named events (``page_fetched``,
``stale_response_dropped``, ``operation_ignored`` and so on) with keyword
context. Filter fingerprints and cache keys are full SHA-256 digests; the
``abbreviate_digests`` processor shortens them so log lines stay readable
while remaining greppable.

Usage:
    from src.core.logging import configure_logging, get_logger, view_context

    configure_logging(development=True)
    logger = get_logger(__name__)

    with view_context("users", admin_id="abc-123"):
        logger.info("page_fetched", generation=3, item_count=10)
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from os import getenv
from typing import Any, TextIO, cast

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Libraries whose INFO/DEBUG chatter drowns out pagination events
_NOISY_LOGGERS = ("aiohttp", "asyncio")

# Event fields holding hex digests, and how much of each to keep
DIGEST_FIELDS = ("fingerprint", "cache_key")
DIGEST_PREFIX_LENGTH = 12


def abbreviate_digests(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Cut fingerprint and cache key values down to a short prefix."""
    for field_name in DIGEST_FIELDS:
        value = event_dict.get(field_name)
        if isinstance(value, str) and len(value) > DIGEST_PREFIX_LENGTH:
            event_dict[field_name] = value[:DIGEST_PREFIX_LENGTH]
    return event_dict


def _resolve_level(log_level: str | None) -> int:
    if log_level is None:
        log_level = getenv("LOG_LEVEL", "INFO")
    level = logging.getLevelName(log_level.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _build_processors(development: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        abbreviate_digests,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if development:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        # One JSON object per line for log shipping
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    return processors


def configure_logging(
    development: bool | None = None,
    log_level: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        development: Pretty console output when True, JSON lines when False.
            None reads ENVIRONMENT (anything but "production" is development).
        log_level: Level name; None reads LOG_LEVEL. Unknown names fall back
            to INFO.
        stream: Destination for log lines; defaults to stdout.
    """
    if development is None:
        development = getenv("ENVIRONMENT", "development").lower() != "production"
    level = _resolve_level(log_level)

    structlog.configure(
        processors=_build_processors(development),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # force=True replaces handlers installed by earlier calls
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=level,
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, typically named after the calling module."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


@contextmanager
def view_context(view: str, **kwargs: Any) -> Iterator[None]:
    """Tag every event logged inside the block with a list view name.

    Args:
        view: Name of the list view (for example "users" or "job_reports").
        **kwargs: Extra context such as the admin id.
    """
    with structlog.contextvars.bound_contextvars(view=view, **kwargs):
        yield


def bind_contextvars(**kwargs: Any) -> None:
    """Bind context for all subsequent events in this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_contextvars() -> None:
    structlog.contextvars.clear_contextvars()


def unbind_contextvars(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
