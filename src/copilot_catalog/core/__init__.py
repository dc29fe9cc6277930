"""
Core module -- events and process lifecycle.

QuotaMonitor lives in core.quota_monitor; it depends on the remote
package and is imported from there directly.
"""

from .events import CatalogEvent, EventBus
from .shutdown import EXIT_INTERRUPTED, GracefulShutdown, ShutdownRequested

__all__ = [
    "CatalogEvent",
    "EventBus",
    "EXIT_INTERRUPTED",
    "GracefulShutdown",
    "ShutdownRequested",
]
