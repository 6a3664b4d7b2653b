"""
Package logger.

Library code only logs; handlers are left to the application except when
debug output is requested explicitly.
"""

from __future__ import annotations

import logging

from .config import config

LOGGER_NAME = "tracegrad"

logger = logging.getLogger(LOGGER_NAME)
logger.addHandler(logging.NullHandler())


def enable_debug_logging(level: int = logging.DEBUG) -> logging.Handler:
    """Attach a stream handler to the package logger and return it."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(name)s %(levelname)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler


if config.debug:
    enable_debug_logging()
