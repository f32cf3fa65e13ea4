"""Logging configuration for the command line."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "repo_health_guard"


def setup_logging(verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """
    Route ``repo_health_guard`` log records through rich.

    Args:
        verbose: Show DEBUG records instead of WARNING and above.
        console: Console to write to (default: stderr).

    Returns:
        The package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    return logger
