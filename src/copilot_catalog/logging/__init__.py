"""
Logging module - Structured logging system.

structlog on top of stdlib logging, with a HUMAN level (25) for
readable catalog traceability.
"""

from .human import HumanLog, HumanLogHandler
from .levels import HUMAN
from .setup import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
    "HUMAN",
    "HumanLog",
    "HumanLogHandler",
]
