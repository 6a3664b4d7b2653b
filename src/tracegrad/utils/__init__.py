"""
Miscellaneous utilities shared across tracegrad.
"""

from .logging import logger
from .config import config

__all__ = ["logger", "config"]
