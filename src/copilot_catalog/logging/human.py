"""
Human Log -- Formatter and helper for catalog traceability logs.

Produces readable output so the user can follow what the catalog does,
step by step, without technical noise.

Example output:
    Refreshing catalog from github/awesome-copilot@main...
      Waiting 3s for API quota (2 left)
    ✓ Catalog refreshed (10 items)

    ⚠  Refresh failed (HTTP 502), serving cached catalog (10 items)
"""

import logging
import sys

from .levels import HUMAN

_RECORD_ATTRS = frozenset((
    "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName", "name", "event",
))

_EVENT_DICT_KEYS = frozenset(("event", "level", "logger", "timestamp", "exc_info", "stack_info"))


class HumanFormatter:
    """Formats catalog events into readable text.

    Each event type has its own format; unknown events return None
    and are not printed.
    """

    def format_event(self, event: str, **kw) -> str | None:
        """Format an event as readable text.

        Args:
            event: Event name (e.g. "catalog.refresh.start")
            **kw: Event parameters

        Returns:
            Formatted text, or None if the event has no defined format
        """
        match event:

            # ── CACHE ───────────────────────────────────────────────────
            case "catalog.cache.hit":
                items = kw.get("items", "?")
                age = kw.get("age_minutes", "?")
                return f"Using cached catalog ({items} items, {age} min old)"

            case "catalog.cache.cleared":
                return "Catalog cache cleared"

            # ── REFRESH ─────────────────────────────────────────────────
            case "catalog.refresh.start":
                source = kw.get("source", "?")
                forced = " (forced)" if kw.get("forced") else ""
                return f"Refreshing catalog from {source}{forced}..."

            case "catalog.refresh.done":
                items = kw.get("items", "?")
                suffix = " -- tree listing was truncated by the remote" if kw.get("truncated") else ""
                return f"✓ Catalog refreshed ({items} items){suffix}"

            case "catalog.refresh.not_modified":
                items = kw.get("items", "?")
                return f"✓ Catalog unchanged upstream ({items} items)"

            case "catalog.refresh.stale":
                reason = kw.get("reason", "unknown error")
                items = kw.get("items", "?")
                return f"\n⚠  Refresh failed ({reason}), serving cached catalog ({items} items)"

            case "catalog.expand.done":
                query = kw.get("query", "")
                added = kw.get("added", "?")
                total = kw.get("total", "?")
                return f'✓ Expanded catalog for "{query}" (+{added}, {total} total)'

            # ── QUOTA ───────────────────────────────────────────────────
            case "rate_gate.wait":
                seconds = kw.get("seconds", 0)
                remaining = kw.get("remaining", "?")
                return f"  Waiting {seconds:.0f}s for API quota ({remaining} left)"

            case "remote.quota_retry":
                seconds = kw.get("wait_seconds", 0)
                return f"  API quota exhausted, retrying once in {seconds:.0f}s"

            case _:
                return None


class HumanLogHandler(logging.Handler):
    """Logging handler that formats HUMAN events.

    Only processes HUMAN (25) records; the rest are ignored.
    Writes to stderr so stdout pipes stay clean.
    """

    def __init__(self, stream=None) -> None:
        super().__init__(level=HUMAN)
        self.stream = stream or sys.stderr
        self.formatter_inst = HumanFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if record.levelno != HUMAN:
                return

            if isinstance(record.msg, dict):
                # structlog ProcessorFormatter pipeline: msg is the event dict
                kw = {k: v for k, v in record.msg.items() if k not in _EVENT_DICT_KEYS}
                event = record.msg.get("event", "")
            else:
                event = getattr(record, "event", None) or record.getMessage()
                kw = {
                    k: v for k, v in record.__dict__.items()
                    if not k.startswith("_") and k not in _RECORD_ATTRS
                }

            formatted = self.formatter_inst.format_event(event, **kw)
            if formatted is not None:
                self.stream.write(formatted + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


class HumanLog:
    """Typed helper to emit HUMAN-level logs.

    Usage:
        hlog = HumanLog(structlog.get_logger())
        hlog.refresh_start("github/awesome-copilot@main", forced=False)
        hlog.refresh_done(items=10, truncated=False)
    """

    def __init__(self, logger) -> None:
        self._log = logger

    def cache_hit(self, items: int, age_minutes: int) -> None:
        self._log.log(HUMAN, "catalog.cache.hit", items=items, age_minutes=age_minutes)

    def cache_cleared(self) -> None:
        self._log.log(HUMAN, "catalog.cache.cleared")

    def refresh_start(self, source: str, forced: bool) -> None:
        self._log.log(HUMAN, "catalog.refresh.start", source=source, forced=forced)

    def refresh_done(self, items: int, truncated: bool) -> None:
        self._log.log(HUMAN, "catalog.refresh.done", items=items, truncated=truncated)

    def not_modified(self, items: int) -> None:
        self._log.log(HUMAN, "catalog.refresh.not_modified", items=items)

    def stale(self, reason: str, items: int) -> None:
        self._log.log(HUMAN, "catalog.refresh.stale", reason=reason, items=items)

    def expanded(self, query: str, added: int, total: int) -> None:
        self._log.log(HUMAN, "catalog.expand.done", query=query, added=added, total=total)

    def quota_wait(self, seconds: float, remaining: int | None) -> None:
        self._log.log(HUMAN, "rate_gate.wait", seconds=seconds, remaining=remaining)

    def quota_retry(self, wait_seconds: float) -> None:
        self._log.log(HUMAN, "remote.quota_retry", wait_seconds=wait_seconds)
