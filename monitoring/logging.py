"""Structured logging for the agent core: renderer setup and scoped context binding."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Noisy at INFO on every reasoner or probe call
_QUIET_LOGGERS = ("httpx", "httpcore", "anthropic")

_RENDERERS = {
    "json": structlog.processors.JSONRenderer,
    "console": structlog.dev.ConsoleRenderer,
}


def configure_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """Route structlog through the stdlib root logger.

    Arguments win over LOG_FORMAT / LOG_LEVEL. ``json`` emits one JSON
    object per line; anything else falls back to the console renderer.
    """
    fmt = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()
    level = logging.getLevelName((log_level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _RENDERERS.get(fmt, structlog.dev.ConsoleRenderer)(),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@contextmanager
def log_context(**bindings: object) -> Iterator[None]:
    """Bind *bindings* (session_id, execution_id, ...) onto every log line in the block.

    None values are skipped so callers can pass optional ids unconditionally.
    """
    with structlog.contextvars.bound_contextvars(**{k: v for k, v in bindings.items() if v is not None}):
        yield
