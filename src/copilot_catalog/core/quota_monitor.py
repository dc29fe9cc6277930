"""
QuotaMonitor -- periodic API quota status for status indicators.

Polls the remote quota endpoint in a daemon thread (every
`poll_interval` seconds) and keeps the latest reading. It never blocks
or gates catalog operations; it only reports.

Status levels:
    READY  remaining >  warn_threshold
    OK     remaining <= warn_threshold
    LOW    remaining <= low_water_mark
    ERROR  the quota query failed
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from ..config.schema import RateLimitConfig
from ..remote.errors import CatalogError
from ..remote.rate_gate import RateBudget, RateGate
from .events import CatalogEvent, EventBus

logger = structlog.get_logger()


class QuotaStatus(Enum):
    READY = "ready"
    OK = "ok"
    LOW = "low"
    ERROR = "error"


@dataclass(frozen=True)
class RateLimitInfo:
    """A quota reading, ready for display."""

    remaining: int
    limit: int
    reset_at: float
    reset_in_seconds: float

    @classmethod
    def from_budget(cls, budget: RateBudget, now: float) -> "RateLimitInfo":
        return cls(
            remaining=budget.remaining,
            limit=budget.limit,
            reset_at=budget.reset_at,
            reset_in_seconds=budget.reset_in(now),
        )


def classify_quota(remaining: int, config: RateLimitConfig) -> QuotaStatus:
    if remaining <= config.low_water_mark:
        return QuotaStatus.LOW
    if remaining <= config.warn_threshold:
        return QuotaStatus.OK
    return QuotaStatus.READY


class QuotaMonitor:
    """Background quota poller.

    Usage:
        monitor = QuotaMonitor(config.rate_limit, client.query_quota, events=bus)
        monitor.start()
        ...
        monitor.stop()
    """

    def __init__(
        self,
        config: RateLimitConfig,
        quota_source: Callable[[], RateBudget],
        events: EventBus | None = None,
        gate: RateGate | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Thresholds and poll interval
            quota_source: Queries the current budget (RemoteClient.query_quota)
            events: Bus for quota_low / quota_exhausted on status changes
            gate: If given, every successful reading is fed to gate.observe()
            clock: Returns the current epoch time in seconds
        """
        self.config = config
        self._quota_source = quota_source
        self.events = events or EventBus()
        self.gate = gate
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._status = QuotaStatus.ERROR
        self._info: RateLimitInfo | None = None
        self.log = logger.bind(component="quota_monitor")

    @property
    def status(self) -> QuotaStatus:
        with self._lock:
            return self._status

    @property
    def info(self) -> RateLimitInfo | None:
        """Last successful reading, or None if there has been none."""
        with self._lock:
            return self._info

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll(self) -> QuotaStatus:
        """Query the quota once and update status and info."""
        try:
            budget = self._quota_source()
        except CatalogError as e:
            self.log.warning("quota_monitor.query_failed", error=str(e))
            with self._lock:
                self._status = QuotaStatus.ERROR
            return QuotaStatus.ERROR

        if self.gate is not None:
            self.gate.observe(budget)

        info = RateLimitInfo.from_budget(budget, self._clock())
        status = classify_quota(budget.remaining, self.config)
        with self._lock:
            previous = self._status
            self._status = status
            self._info = info

        self.log.debug(
            "quota_monitor.polled",
            status=status.value,
            remaining=info.remaining,
            limit=info.limit,
        )

        if status is QuotaStatus.LOW and previous is not QuotaStatus.LOW:
            event = CatalogEvent.QUOTA_EXHAUSTED if budget.exhausted else CatalogEvent.QUOTA_LOW
            self.events.emit(event, remaining=budget.remaining, reset_at=budget.reset_at)
        return status

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="QuotaMonitor",
            daemon=True,
        )
        self._thread.start()
        self.log.info("quota_monitor.started", interval=self.config.poll_interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            self.log.info("quota_monitor.stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.poll()
            self._stop_event.wait(self.config.poll_interval)
