"""Centralized Loguru configuration for codeqa."""

import sys

from loguru import logger

_TEXT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

# Remove the default stderr sink so we can reconfigure it
logger.remove()

# Default sink: stderr with INFO level, colored, concise format
logger.add(sys.stderr, level="INFO", format=_TEXT_FORMAT, colorize=True)


def configure_logger(level: str = "INFO", serialize: bool = False) -> None:
    """Reconfigure the global logger (called from CLI or API startup).

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
        serialize: If True, output JSON lines instead of human-readable text.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="{message}" if serialize else _TEXT_FORMAT,
        serialize=serialize,
        colorize=not serialize,
    )
