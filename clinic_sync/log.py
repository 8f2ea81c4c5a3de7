"""Logging setup for the console front end."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "WARNING", console: Console | None = None) -> logging.Logger:
    """Attach a rich handler to the clinic_sync logger tree."""
    logger = logging.getLogger("clinic_sync")
    logger.setLevel(level.upper())
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    logger.addHandler(RichHandler(console=console, show_path=False, rich_tracebacks=True))
    logger.propagate = False
    return logger
