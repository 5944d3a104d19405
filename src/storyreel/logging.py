"""Structured logging for storyreel.

Every module logs through ``get_logger(__name__)`` with snake_case event names
and keyword context. Long-running jobs bind their identifiers once with
``job_context`` so that every event emitted while polling carries them.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from storyreel.config import settings

_configured = False

_NOISY_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def _renderer() -> Any:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(force: bool = False) -> None:
    """Configure structlog and route stdlib logging through it.

    Safe to call more than once; the API app and the CLI both call it.
    """
    global _configured
    if _configured and not force:
        return

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
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
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(),
            ],
        )
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_storyreel", False):
            root.removeHandler(existing)
    handler._storyreel = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance for a module."""
    return structlog.get_logger(name)


@contextmanager
def job_context(**ids: Any) -> Iterator[None]:
    """Bind job identifiers (``job_id``, ``story_id``, ``shot_id``...) to every log event."""
    with structlog.contextvars.bound_contextvars(**{k: v for k, v in ids.items() if v is not None}):
        yield
