"""
On-disk store for the catalog snapshot.

The items, the build timestamp and the validator tokens live in a single
JSON document, so they are always read and written together:

- write() goes to a temporary file in the same directory and is then
  moved over the old file with os.replace (atomic on POSIX and Windows).
- clear() removes that one file, so all three parts vanish at once.

Typical usage:
    store = CacheStore(Path("~/.copilot-catalog"))
    snapshot = store.read()
    if snapshot is None or not store.is_fresh(snapshot, ttl_seconds=86400):
        snapshot = store.write(items, validators)
"""

import json
import os
import tempfile
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

import structlog

from .models import CatalogItem, CatalogSnapshot

logger = structlog.get_logger()

CACHE_FILE_NAME = "catalog.json"


class CacheStore:
    """Persistent, atomic store for one catalog snapshot."""

    def __init__(
        self,
        cache_dir: Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            cache_dir: Directory for the snapshot file (created on first write)
            clock: Returns the current epoch time in seconds
        """
        self.cache_dir = Path(cache_dir).expanduser()
        self.path = self.cache_dir / CACHE_FILE_NAME
        self._clock = clock
        self._lock = threading.Lock()
        self.log = logger.bind(component="cache_store", path=str(self.path))

    def read(self) -> CatalogSnapshot | None:
        """Return the persisted snapshot, or None if missing or unreadable."""
        with self._lock:
            return self._read_unlocked()

    def write(
        self,
        items: Iterable[CatalogItem],
        validators: dict[str, str] | None = None,
    ) -> CatalogSnapshot:
        """Replace the persisted catalog.

        built_at becomes now, but never moves backwards relative to the
        snapshot being replaced.

        Args:
            items: Complete new item set (keyed by path; later duplicates win)
            validators: Validator tokens to persist alongside the items

        Returns:
            The snapshot that was written.
        """
        with self._lock:
            previous = self._read_unlocked()
            built_at = self._clock()
            if previous is not None:
                built_at = max(built_at, previous.built_at)

            snapshot = CatalogSnapshot(
                items={item.path: item for item in items},
                built_at=built_at,
                validators=dict(validators or {}),
            )
            self._write_unlocked(snapshot)

        self.log.debug("cache.written", items=len(snapshot.items), built_at=built_at)
        return snapshot

    def restore(self, snapshot: CatalogSnapshot) -> None:
        """Write back an exact snapshot (used to undo a cleared refresh)."""
        with self._lock:
            self._write_unlocked(snapshot)
        self.log.info("cache.restored", items=len(snapshot.items))

    def is_fresh(self, snapshot: CatalogSnapshot, ttl_seconds: float) -> bool:
        """True if the snapshot is younger than the TTL."""
        return self._clock() - snapshot.built_at < ttl_seconds

    def clear(self) -> bool:
        """Remove all persisted state.

        Returns:
            True if there was a snapshot to remove.
        """
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                return False
        self.log.info("cache.cleared")
        return True

    def _read_unlocked(self) -> CatalogSnapshot | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return CatalogSnapshot.from_dict(data)
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError, OSError) as e:
            # Corrupt or foreign file -> behave as if there were no cache
            self.log.warning("cache.read_failed", error=str(e))
            return None

    def _write_unlocked(self, snapshot: CatalogSnapshot) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False)

        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=self.cache_dir,
            prefix=".catalog-",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as tmp:
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_path = Path(tmp.name)

        try:
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
