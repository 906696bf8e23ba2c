"""
Logging utilities.
"""

import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the contractrag tree.

    A stderr handler is attached once to the ``contractrag`` root logger so
    that child loggers created with ``__name__`` share it.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger
    """
    root = logging.getLogger('contractrag')

    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """
    Set the log level for every contractrag logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logging.getLogger('contractrag').setLevel(level)


def preview(text: str | None, limit: int = 60) -> str:
    """Shorten contract or chunk text for log lines."""
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat[:limit] + "..." if len(flat) > limit else flat
