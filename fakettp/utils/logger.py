"""Logging setup for fakettp.

structlog, rendered as console lines by default or as JSON lines with
``-json_logs`` / ``JSON_LOGS=true``; the level comes from ``-log_level`` /
``LOG_LEVEL``. ``run.py`` calls ``configure_logging()`` once from the flags;
importing this module applies console defaults so library use and tests log
sensibly without it.

Request-scoped fields are bound by the Dispatcher with
``structlog.contextvars.bind_contextvars(request_id=...)`` and merged into
every event logged while that request is being decided.
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor

LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog for the process.

    Args:
        log_level:   One of LOG_LEVELS (case-insensitive).
        json_output: JSON lines instead of console output.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        # no file=: each logger picks up the current sys.stdout
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str = "fakettp") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
