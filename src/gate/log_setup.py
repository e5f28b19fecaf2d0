"""Structured logging setup for the command line."""

import logging
import sys
from typing import TextIO

import structlog

from .config import Settings

LOGGER_NAME = "pushgate"


def configure_logging(settings: Settings, stream: TextIO | None = None) -> None:
    """Route structlog output to stderr, and also to the log file when one is set.

    Lines go through a stdlib logger so the logging module flushes and
    closes the log file at interpreter exit.
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    output = logging.getLogger(LOGGER_NAME)
    for handler in list(output.handlers):
        output.removeHandler(handler)
        handler.close()

    output.addHandler(logging.StreamHandler(stream or sys.stderr))
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        output.addHandler(logging.FileHandler(settings.log_file, encoding="utf-8"))
    output.setLevel(level)
    output.propagate = False

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=lambda *args: output,
        cache_logger_on_first_use=False,
    )
