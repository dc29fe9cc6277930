"""
Catalog events -- in-process notifications for collaborators.

The core never talks to a UI directly. Collaborators (list views,
status indicators) subscribe to events and re-read whatever they need.

Invariants:
- A failing listener NEVER breaks the emitter (errors -> log and continue)
- Listeners run synchronously, in subscription order, on the emitting thread
"""

import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()

__all__ = [
    "CatalogEvent",
    "EventBus",
    "Listener",
]


class CatalogEvent(Enum):
    """Events emitted by the catalog core."""

    CATALOG_CHANGED = "catalog_changed"
    REFRESH_FAILED = "refresh_failed"  # payload: reason, items
    QUOTA_LOW = "quota_low"  # payload: remaining, reset_at
    QUOTA_EXHAUSTED = "quota_exhausted"  # payload: remaining, reset_at


Listener = Callable[..., None]


class EventBus:
    """Minimal synchronous publish/subscribe registry."""

    def __init__(self) -> None:
        self._listeners: dict[CatalogEvent, list[Listener]] = {}
        self._lock = threading.Lock()
        self.log = logger.bind(component="events")

    def subscribe(self, event: CatalogEvent, listener: Listener) -> Callable[[], None]:
        """Register a listener for an event.

        Returns:
            A callable that removes the subscription.
        """
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(event, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def emit(self, event: CatalogEvent, **payload: Any) -> None:
        """Call every listener of `event` with the payload as keyword args."""
        with self._lock:
            listeners = list(self._listeners.get(event, []))

        for listener in listeners:
            try:
                listener(**payload)
            except Exception as e:
                self.log.warning(
                    "events.listener_error",
                    event_name=event.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def has_listeners(self, event: CatalogEvent) -> bool:
        with self._lock:
            return bool(self._listeners.get(event))
