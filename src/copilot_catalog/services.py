"""
Production wiring of the catalog components.

    config -> RemoteClient (+ RateGate) -> IndexEngine <- CatalogMapper
                                               ^
                                           CacheStore

Everything shares one EventBus, and every wait goes through the
GracefulShutdown sleep so Ctrl+C interrupts quota waits.
"""

from dataclasses import dataclass

from .config.schema import AppConfig
from .core.events import EventBus
from .core.quota_monitor import QuotaMonitor
from .core.shutdown import GracefulShutdown
from .indexer import CacheStore, CatalogMapper, IndexEngine, ItemHydrator, KeywordMatcher
from .remote import RemoteClient


@dataclass
class Services:
    """The assembled component graph for one process."""

    config: AppConfig
    events: EventBus
    client: RemoteClient
    mapper: CatalogMapper
    store: CacheStore
    engine: IndexEngine
    matcher: KeywordMatcher
    hydrator: ItemHydrator

    def quota_monitor(self) -> QuotaMonitor:
        return QuotaMonitor(
            self.config.rate_limit,
            self.client.query_quota,
            events=self.events,
            gate=self.client.gate,
        )

    def close(self) -> None:
        self.client.close()


def build_services(
    config: AppConfig,
    shutdown: GracefulShutdown | None = None,
    transport=None,
) -> Services:
    """Build the production component graph from a validated config.

    Args:
        config: Application configuration
        shutdown: Source of the interruptible sleep; a private one if None
        transport: Optional httpx transport (tests)
    """
    shutdown = shutdown or GracefulShutdown()
    events = EventBus()
    catalog = config.catalog

    client = RemoteClient(
        config.remote,
        repo=catalog.repo,
        branch=catalog.branch,
        rate_limit=config.rate_limit,
        events=events,
        sleep=shutdown.sleep,
        transport=transport,
    )
    mapper = CatalogMapper(
        catalog.repo,
        catalog.branch,
        max_items=catalog.max_items,
        raw_base=config.remote.raw_base,
    )
    store = CacheStore(catalog.cache_dir)
    engine = IndexEngine(
        client,
        mapper,
        store,
        ttl_seconds=catalog.ttl_seconds,
        expand_max_items=catalog.expand_max_items,
        events=events,
    )

    return Services(
        config=config,
        events=events,
        client=client,
        mapper=mapper,
        store=store,
        engine=engine,
        matcher=KeywordMatcher(),
        hydrator=ItemHydrator(client),
    )
