"""Centralized logging configuration for apilink.

Library modules only ever call ``logging.getLogger(__name__)``; the host
application decides where records go. ``setup_logging`` is the convenience
used by services and scripts that embed apilink directly.
"""

import logging
import os
import sys
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_ENV = "APILINK_LOG_LEVEL"


def setup_logging(
    log_level: Optional[int] = None,
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the ``apilink`` logger tree.

    Args:
        log_level: Minimum level; defaults to $APILINK_LOG_LEVEL, then INFO.
        log_format: Format string for log records.
        log_file: Optional path for an additional file handler.

    Returns:
        The configured ``apilink`` logger.
    """
    if log_level is None:
        log_level = logging.getLevelName(os.getenv(LOG_LEVEL_ENV, "INFO").upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    logger = logging.getLogger("apilink")
    logger.setLevel(log_level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging configured. Level=%s", logging.getLevelName(log_level))
    return logger
