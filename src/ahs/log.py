from __future__ import annotations

import logging
import sys

import structlog

from .errors import ConfigurationError

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}
FORMATS = ("text", "json")


def configure_logging(level: str = "info", fmt: str = "text", stream=None) -> None:
    """Configure structlog for the process; text goes to a console renderer, json to one object per line."""
    lvl = LEVELS.get((level or "").strip().lower())
    if lvl is None:
        raise ConfigurationError(f"Invalid log level '{level}', expected one of {', '.join(LEVELS)}")

    fmt = (fmt or "").strip().lower()
    if fmt == "json":
        processors = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    elif fmt == "text":
        # ConsoleRenderer formats exceptions itself
        processors = [structlog.dev.ConsoleRenderer(colors=False)]
    else:
        raise ConfigurationError(f"Invalid log format '{fmt}', expected one of {', '.join(FORMATS)}")

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *processors,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        logger_factory=lambda *args: structlog.PrintLogger(stream or sys.stderr),
        cache_logger_on_first_use=False,
    )
