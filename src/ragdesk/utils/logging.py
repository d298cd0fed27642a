"""
Logging utilities.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Iterator

PACKAGE_LOGGER = 'ragdesk'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _package_logger() -> logging.Logger:
    """Return the package logger, attaching the stderr handler once."""
    root = logging.getLogger(PACKAGE_LOGGER)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the package logger.

    The handler lives on the ``ragdesk`` logger only; module loggers
    propagate to it. Names outside the package are nested under it.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger
    """
    _package_logger()

    if name != PACKAGE_LOGGER and not name.startswith(f'{PACKAGE_LOGGER}.'):
        name = f'{PACKAGE_LOGGER}.{name}'

    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """
    Set the log level for the whole package.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    _package_logger().setLevel(level)


@contextmanager
def log_duration(
    logger: logging.Logger,
    label: str,
    level: int = logging.DEBUG,
) -> Iterator[None]:
    """
    Log how long the wrapped block took, including when it raises.

    Example:
        ```python
        with log_duration(logger, "Retrieval"):
            result = await pipeline.retrieve(question)
        ```
    """
    started = time.perf_counter()
    try:
        yield
    finally:
        logger.log(level, f"{label} took {(time.perf_counter() - started) * 1000:.0f}ms")
