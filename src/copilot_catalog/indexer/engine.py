"""
IndexEngine -- answers "give me the current catalog".

Orchestrates RemoteClient, CatalogMapper and CacheStore under a TTL
policy:

    idle -> checking -> fresh ---------------------------> serving
                     -> refreshing -> (write) -----------> serving
                                   -> fallback -> (cache) -> serving (stale)
                                              -> (none)  -> NoCacheAvailable

Invariants:
- build_index and expand_by_keywords never run concurrently (one lock);
  duplicate refreshes would only waste quota.
- Nothing is written until a refresh has completed; an interrupted or
  failed refresh leaves the previous snapshot in place. A forced refresh
  clears the store first: it puts the old snapshot back only when it is
  interrupted (shutdown, Ctrl+C, a local write error). A remote failure
  after the clear finds no cache and raises NoCacheAvailable.
- A failed refresh with a usable cache is a degraded success (stale=True),
  never an error.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from ..core.events import CatalogEvent, EventBus
from ..logging.human import HumanLog
from ..remote.client import TreeListing
from ..remote.errors import CatalogError, MalformedRemoteResponse, NoCacheAvailable
from .cache import CacheStore
from .mapper import CatalogMapper
from .matcher import matches_all, path_haystack, tokenize
from .models import CatalogItem, CatalogSnapshot, Category

logger = structlog.get_logger()

WARNING_TREE_TRUNCATED = "tree_truncated"


class TreeSource(Protocol):
    """The part of RemoteClient the engine depends on."""

    @property
    def source(self) -> str: ...

    def fetch_tree(self, validators: dict[str, str] | None = None) -> TreeListing: ...


class EngineState(Enum):
    IDLE = "idle"
    CHECKING = "checking"
    FRESH = "fresh"
    REFRESHING = "refreshing"
    FALLBACK = "fallback"
    SERVING = "serving"


@dataclass
class IndexResult:
    """Catalog handed to callers.

    Attributes:
        items: Catalog items (read-only instances).
        source: "cache", "remote" or "fallback".
        stale: True when a refresh failed and cached items are served.
        error: Failure reason when stale.
        warnings: Soft problems, e.g. "tree_truncated".
        built_at: Epoch seconds of the snapshot served.
    """

    items: list[CatalogItem]
    source: str
    stale: bool = False
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    built_at: float | None = None


class IndexEngine:
    """Builds, refreshes and expands the catalog."""

    def __init__(
        self,
        client: TreeSource,
        mapper: CatalogMapper,
        store: CacheStore,
        ttl_seconds: float,
        expand_max_items: int = 5,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            client: Remote tree source (RemoteClient in production)
            mapper: Entry -> item mapper
            store: Snapshot persistence
            ttl_seconds: Age after which a cached catalog is refreshed
            expand_max_items: Cap on new items per keyword expansion
            events: Bus for catalog_changed / refresh_failed
            clock: Returns the current epoch time in seconds
        """
        self.client = client
        self.mapper = mapper
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.expand_max_items = expand_max_items
        self.events = events or EventBus()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = EngineState.IDLE
        self.log = logger.bind(component="index_engine", source=client.source)
        self.hlog = HumanLog(self.log)

    @property
    def state(self) -> EngineState:
        return self._state

    def on_changed(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Subscribe to catalog changes. Returns an unsubscribe callable."""
        return self.events.subscribe(CatalogEvent.CATALOG_CHANGED, callback)

    def current(self) -> CatalogSnapshot | None:
        """Currently persisted snapshot, without any remote call."""
        return self.store.read()

    def clear_cache(self) -> bool:
        with self._lock:
            removed = self.store.clear()
        self.hlog.cache_cleared()
        return removed

    # --- Build ---

    def build_index(self, force_refresh: bool = False) -> IndexResult:
        """Return the catalog, refreshing it from the remote when needed.

        Args:
            force_refresh: Skip the TTL check; the store is cleared first and
                stays cleared if the remote fails.

        Raises:
            NoCacheAvailable: If the refresh failed and there is no cache.
            ShutdownRequested: If a wait was interrupted by shutdown.
        """
        with self._lock:
            self._state = EngineState.CHECKING
            previous = self.store.read()

            if force_refresh:
                self.store.clear()
            elif previous is not None and self.store.is_fresh(previous, self.ttl_seconds):
                self._state = EngineState.FRESH
                self.hlog.cache_hit(
                    items=len(previous.items),
                    age_minutes=int(previous.age(self._clock()) // 60),
                )
                self._state = EngineState.SERVING
                return IndexResult(
                    items=previous.item_list(),
                    source="cache",
                    built_at=previous.built_at,
                )

            self._state = EngineState.REFRESHING
            self.hlog.refresh_start(self.client.source, forced=force_refresh)
            # Removed by the forced clear; comes back only if the refresh is interrupted
            held = previous if force_refresh else None
            try:
                result = self._refresh(None if force_refresh else previous)
            except CatalogError as e:
                return self._fallback(e)
            except BaseException:
                if held is not None and self.store.read() is None:
                    self.store.restore(held)
                self._state = EngineState.IDLE
                raise

            self._state = EngineState.SERVING
            return result

    def _refresh(self, previous: CatalogSnapshot | None) -> IndexResult:
        validators = previous.validators if previous is not None else None
        listing = self.client.fetch_tree(validators)

        if listing.not_modified:
            if previous is None:
                raise MalformedRemoteResponse("Remote reported 'not modified' without a validator")
            snapshot = self.store.write(previous.item_list(), listing.validators)
            self.hlog.not_modified(items=len(snapshot.items))
            self.events.emit(CatalogEvent.CATALOG_CHANGED)
            return IndexResult(
                items=snapshot.item_list(),
                source="remote",
                built_at=snapshot.built_at,
            )

        items = self.mapper.map(listing.entries)
        snapshot = self.store.write(items, listing.validators)
        self.hlog.refresh_done(items=len(snapshot.items), truncated=listing.truncated)
        self.events.emit(CatalogEvent.CATALOG_CHANGED)

        return IndexResult(
            items=snapshot.item_list(),
            source="remote",
            warnings=_listing_warnings(listing),
            built_at=snapshot.built_at,
        )

    def _fallback(self, error: CatalogError) -> IndexResult:
        self._state = EngineState.FALLBACK

        reason = str(error)
        cached = self.store.read()
        if cached is None:
            self.log.error("catalog.refresh.failed", error=reason, error_type=type(error).__name__)
            self._state = EngineState.IDLE
            raise NoCacheAvailable(
                f"Catalog refresh failed and no cached catalog is available: {reason}"
            ) from error

        self.hlog.stale(reason=reason, items=len(cached.items))
        self.events.emit(CatalogEvent.REFRESH_FAILED, reason=reason, items=len(cached.items))
        self._state = EngineState.SERVING
        return IndexResult(
            items=cached.item_list(),
            source="fallback",
            stale=True,
            error=reason,
            built_at=cached.built_at,
        )

    # --- Expand ---

    def expand_by_keywords(self, query: str) -> IndexResult:
        """Discover items matching `query` and merge them into the catalog.

        Always fetches the full tree (the TTL is bypassed: the point is to
        find items the cached catalog does not have). New items overwrite
        cached ones with the same path; everything else is kept.

        Raises:
            CatalogError: If the tree cannot be fetched.
            ShutdownRequested: If a wait was interrupted by shutdown.
        """
        keywords = tokenize(query)

        def keep(path: str, category: Category) -> bool:
            return matches_all(path_haystack(path, category), keywords)

        with self._lock:
            self._state = EngineState.REFRESHING
            try:
                existing = self.store.read()
                listing = self.client.fetch_tree()
                found = self.mapper.map(listing.entries, keep=keep, limit=self.expand_max_items)

                merged = dict(existing.items) if existing is not None else {}
                added = sum(1 for item in found if item.path not in merged)
                for item in found:
                    merged[item.path] = item

                validators = existing.validators if existing is not None else {}
                snapshot = self.store.write(merged.values(), validators)
            except BaseException:
                self._state = EngineState.IDLE
                raise

            self.hlog.expanded(query=query, added=added, total=len(snapshot.items))
            self.events.emit(CatalogEvent.CATALOG_CHANGED)
            self._state = EngineState.SERVING
            return IndexResult(
                items=snapshot.item_list(),
                source="remote",
                warnings=_listing_warnings(listing),
                built_at=snapshot.built_at,
            )


def _listing_warnings(listing: TreeListing) -> list[str]:
    return [WARNING_TREE_TRUNCATED] if listing.truncated else []
