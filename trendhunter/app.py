"""Component wiring; every service is constructed here and injected."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from .aggregator import SourceAggregator
from .cache import ResponseCache
from .clustering import ClusterBuilder
from .config import Config
from .event_bus import EventBus
from .http import close_session
from .ingestion import IngestionService
from .providers import PROVIDER_CLASSES, ProviderClient, build_provider
from .refresh import RefreshScheduler
from .scheduler import PeriodicScheduler
from .store import TrendStore
from .topics import TopicAssembler

logger = logging.getLogger(__name__)

INGEST_JOB = "ingest"
REFRESH_JOB = "refresh"


@dataclass
class App:
    config: Config
    store: TrendStore
    bus: EventBus
    aggregator: SourceAggregator
    builder: ClusterBuilder
    assembler: TopicAssembler
    refresher: RefreshScheduler
    ingestion: IngestionService
    scheduler: PeriodicScheduler

    async def close(self) -> None:
        await self.scheduler.stop()
        self.bus.reset()
        await self.store.close()
        await close_session()


def build_providers(config: Config) -> list[ProviderClient]:
    return [
        build_provider(
            name,
            api_key=config.api_key_for(name),
            timeout=config.provider_timeout,
            retry_delay=config.provider_retry_delay,
        )
        for name in PROVIDER_CLASSES
    ]


def build_app(
    config: Config,
    *,
    providers: Sequence[ProviderClient] | None = None,
    store: TrendStore | None = None,
) -> App:
    """Assemble the pipeline. Must be called with an event loop running."""

    store = store or TrendStore(config.database_url)
    bus = EventBus()
    aggregator = SourceAggregator(
        providers if providers is not None else build_providers(config),
        cache=ResponseCache(ttl=config.cache_ttl),
        rotation_order=config.provider_rotation,
        fallback_order=config.provider_fallback,
        basic_order=config.provider_basic_order,
        batch_pause=config.batch_pause,
    )
    builder = ClusterBuilder(
        literal_threshold=config.literal_threshold,
        phonetic_threshold=config.phonetic_threshold,
        min_size=config.min_cluster_size,
    )
    assembler = TopicAssembler(store, bus, min_size=config.min_cluster_size)
    refresher = RefreshScheduler(
        store,
        aggregator,
        tick_interval=config.refresh_interval,
        per_tick_cap=config.refresh_per_tick,
    )
    ingestion = IngestionService(
        store,
        aggregator,
        builder,
        assembler,
        window_hours=config.listing_window_hours,
        batch_limit=config.ingest_batch_limit,
    )
    scheduler = PeriodicScheduler()
    scheduler.add_job(INGEST_JOB, ingestion.poll, config.ingest_interval)
    scheduler.add_job(REFRESH_JOB, refresher.tick, config.refresh_interval)
    logger.info("Providers in rotation: %s", ", ".join(aggregator.provider_names))
    return App(
        config=config,
        store=store,
        bus=bus,
        aggregator=aggregator,
        builder=builder,
        assembler=assembler,
        refresher=refresher,
        ingestion=ingestion,
        scheduler=scheduler,
    )


__all__ = ["App", "INGEST_JOB", "REFRESH_JOB", "build_app", "build_providers"]
