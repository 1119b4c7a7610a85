from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


LOGGER_NAME = "hashdrop"
LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(level: str = "info", console: Console | None = None) -> logging.Logger:
    """Attach a single Rich handler (stderr) to the package logger."""
    try:
        numeric_level = LOG_LEVELS[level.lower()]
    except KeyError:
        raise ValueError(
            f"Invalid log level '{level}'. Use one of: {', '.join(LOG_LEVELS)}"
        ) from None

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers.clear()
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setLevel(numeric_level)
    logger.addHandler(handler)
    logger.propagate = False
    return logger
