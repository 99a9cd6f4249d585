"""Logger factory shared by all reviewrag modules.

Usage:
    from reviewrag.log import get_logger
    logger = get_logger(__name__)
    logger.info("Something happened")

The default level comes from settings.LOG_LEVEL.
"""
import logging
import sys
from typing import Optional

from reviewrag.config import settings


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Create and return a named logger with a standardised formatter.

    Args:
        name: Typically ``__name__`` of the calling module.
        level: Explicit level name override; defaults to settings.LOG_LEVEL.

    Returns:
        logging.Logger: A configured logger instance.
    """
    resolved = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger = logging.getLogger(name)

    # Avoid adding duplicate handlers if the logger already exists
    if not logger.handlers:
        logger.setLevel(resolved)
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)
        logger.propagate = False

    return logger
