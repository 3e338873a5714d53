"""structlog setup shared by the monitor and configuration modes."""

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> TextIO:
    """
    Configure structlog for the current run mode.

    Args:
        level: Standard logging level name. Unknown names fall back to INFO.
        log_file: Append log lines to this file instead of stderr. Used by
            the configuration UI, which owns the terminal.

    Returns:
        The stream log lines are written to.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        stream: TextIO = open(log_file, "a", encoding="utf-8")
        colors = False
    else:
        stream = sys.stderr
        colors = stream.isatty()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=False),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=False,
    )
    return stream
