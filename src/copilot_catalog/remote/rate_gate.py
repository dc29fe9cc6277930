"""
RateGate -- request budget guard for the remote API.

Before every remote call the client asks the gate how long to wait:

    wait = gate.reserve()
    sleep(wait)
    ... make the call ...

Policy:
- remaining > low-water mark  -> 0 (go now)
- 0 < remaining <= low-water  -> min(low_water_delay, time to reset)
- remaining == 0              -> time to reset + safety margin
- quota query failed          -> fail_open_delay (never wedge the caller)

The budget is never persisted; it is re-queried (or taken from the last
response headers) before each call.
"""

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

import structlog

from ..config.schema import RateLimitConfig
from ..core.events import CatalogEvent, EventBus
from ..logging.human import HumanLog
from .errors import CatalogError

logger = structlog.get_logger()

__all__ = [
    "RateBudget",
    "RateGate",
]


@dataclass(frozen=True)
class RateBudget:
    """Remote quota at a point in time.

    Attributes:
        remaining: Calls left in the current window.
        limit: Calls allowed per window.
        reset_at: Epoch seconds when the window resets.
    """

    remaining: int
    limit: int
    reset_at: float

    def __post_init__(self) -> None:
        if self.remaining < 0 or self.limit < 0:
            raise ValueError("Quota values cannot be negative")
        if self.remaining > self.limit:
            raise ValueError(
                f"remaining ({self.remaining}) cannot exceed limit ({self.limit})"
            )

    def reset_in(self, now: float) -> float:
        """Seconds until the quota window resets (never negative)."""
        return max(0.0, self.reset_at - now)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RateBudget | None":
        """Build a budget from X-RateLimit-* response headers.

        Returns:
            RateBudget, or None if the headers are missing or inconsistent.
        """
        try:
            remaining = int(headers["x-ratelimit-remaining"])
            limit = int(headers["x-ratelimit-limit"])
            reset_at = float(headers["x-ratelimit-reset"])
            return cls(remaining=remaining, limit=limit, reset_at=reset_at)
        except (KeyError, TypeError, ValueError):
            return None


class RateGate:
    """Decides how long to wait before the next remote call."""

    def __init__(
        self,
        config: RateLimitConfig,
        quota_source: Callable[[], RateBudget],
        clock: Callable[[], float] = time.time,
        events: EventBus | None = None,
    ) -> None:
        """Initialize the gate.

        Args:
            config: Quota policy (low-water mark, delays, margin)
            quota_source: Callable that queries the current budget
            clock: Returns the current epoch time in seconds
            events: Bus for quota_low / quota_exhausted notifications
        """
        self.config = config
        self._quota_source = quota_source
        self._clock = clock
        self._events = events
        self._last: RateBudget | None = None
        self.log = logger.bind(component="rate_gate")
        self.hlog = HumanLog(self.log)

    @property
    def last_known(self) -> RateBudget | None:
        """Last budget seen, from a quota query or from response headers."""
        return self._last

    def observe(self, budget: RateBudget | None) -> None:
        """Record a budget reported by a response (e.g. rate limit headers)."""
        if budget is not None:
            self._last = budget

    def reserve(self) -> float:
        """Return the number of seconds to wait before the next call."""
        try:
            budget = self._current_budget()
        except CatalogError as e:
            self.log.warning(
                "rate_gate.quota_query_failed",
                error=str(e),
                delay=self.config.fail_open_delay,
            )
            return self.config.fail_open_delay

        now = self._clock()
        if budget.exhausted:
            wait = budget.reset_in(now) + self.config.safety_margin
            self._notify(CatalogEvent.QUOTA_EXHAUSTED, budget)
            self.hlog.quota_wait(wait, budget.remaining)
            return wait

        if budget.remaining <= self.config.low_water_mark:
            wait = min(self.config.low_water_delay, budget.reset_in(now))
            self._notify(CatalogEvent.QUOTA_LOW, budget)
            if wait > 0:
                self.log.info(
                    "rate_gate.low_water",
                    remaining=budget.remaining,
                    limit=budget.limit,
                    wait=round(wait, 2),
                )
            return wait

        return 0.0

    def _current_budget(self) -> RateBudget:
        if self.config.query_consumes_quota and self._last is not None:
            # Reuse until the window it describes has reset
            if self._clock() < self._last.reset_at:
                return self._last

        budget = self._quota_source()
        self._last = budget
        self.log.debug(
            "rate_gate.budget",
            remaining=budget.remaining,
            limit=budget.limit,
            reset_at=budget.reset_at,
        )
        return budget

    def _notify(self, event: CatalogEvent, budget: RateBudget) -> None:
        if self._events is not None:
            self._events.emit(event, remaining=budget.remaining, reset_at=budget.reset_at)
