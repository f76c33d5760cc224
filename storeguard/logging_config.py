"""Logging setup for processes that embed the security layer."""

import logging
from typing import Optional

from .config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Attach a stream handler to the ``storeguard`` logger.

    Safe to call more than once; the handler is only added the first time.

    Args:
        level: Log level name (defaults to Settings.LOG_LEVEL)

    Returns:
        The package logger
    """
    logger = logging.getLogger("storeguard")
    logger.setLevel((level or get_settings().LOG_LEVEL).upper())

    if not any(getattr(h, "_storeguard", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._storeguard = True
        logger.addHandler(handler)

    return logger
