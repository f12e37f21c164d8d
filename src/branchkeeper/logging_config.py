"""Logging configuration for branchkeeper."""

import logging
import sys
from typing import Optional, TextIO

LOGGER_NAME = "branchkeeper"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_color: bool = False) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, coloring a copy of the level name only."""
        if not self.use_color or record.levelname not in self.COLORS:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{self.COLORS[original]}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def level_for(verbose: bool = False, debug: bool = False) -> int:
    """Map the CLI verbosity flags to a log level."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return logging.WARNING


def setup_logging(verbose: bool = False, debug: bool = False, stream: Optional[TextIO] = None) -> logging.Logger:
    """Configure and return the branchkeeper logger.

    Args:
        verbose: If True, show INFO level messages
        debug: If True, show DEBUG level messages with timestamps
        stream: Where to write log records, stderr by default

    Returns:
        The configured logger, to be handed to the components that log.
    """
    level = level_for(verbose=verbose, debug=debug)
    stream = stream if stream is not None else sys.stderr

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    use_color = hasattr(stream, "isatty") and stream.isatty()
    if debug:
        formatter = ColoredFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            use_color=use_color,
        )
    else:
        formatter = ColoredFormatter(fmt="%(levelname)s: %(message)s", use_color=use_color)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Get a logger below the branchkeeper namespace.

    Args:
        name: Name of the module (typically __name__)

    Returns:
        Logger instance
    """
    if name != LOGGER_NAME and not name.startswith(LOGGER_NAME + "."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)
