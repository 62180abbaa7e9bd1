"""Logging setup for the CLI and embedding applications."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "crewgate"


def configure_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """Install a rich handler on the crewgate logger tree.

    Args:
        verbose: Log at DEBUG instead of WARNING
        console: Console to render to (defaults to stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    # Reconfiguring replaces our own handler instead of stacking a second one
    for handler in list(logger.handlers):
        if getattr(handler, "_crewgate", False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    handler._crewgate = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False
    return logger
