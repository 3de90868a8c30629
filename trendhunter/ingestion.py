"""New-listing ingestion: persist fresh tokens, cluster them, assemble topics."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Callable

from cachetools import LRUCache

from .aggregator import SourceAggregator
from .clustering import ClusterBuilder
from .store import Token, TrendStore
from .topics import TopicAssembler
from .types import ClusterCandidate, ListedToken
from .util import utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestionReport:
    """Outcome of one ingestion poll."""

    listed: int = 0
    fresh: int = 0
    stored: int = 0
    snapshots: int = 0
    batch_size: int = 0
    clusters: int = 0
    topics_created: int = 0
    topics_updated: int = 0
    failures: int = 0


class IngestionService:
    def __init__(
        self,
        store: TrendStore,
        aggregator: SourceAggregator,
        builder: ClusterBuilder,
        assembler: TopicAssembler,
        *,
        window_hours: float = 6.0,
        batch_limit: int = 40,
        seen_size: int = 10_000,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.store = store
        self.aggregator = aggregator
        self.builder = builder
        self.assembler = assembler
        self.window_hours = float(window_hours)
        self.batch_limit = max(1, int(batch_limit))
        self._seen: LRUCache = LRUCache(maxsize=max(1, int(seen_size)))
        self._clock = clock

    async def _ensure_names(self, listing: ListedToken) -> tuple[str, str]:
        if listing.name or listing.symbol:
            return listing.name, listing.symbol
        info = await self.aggregator.get_basic_info(listing.address)
        if info is None:
            return "", ""
        return info.name, info.symbol

    async def _store_listing(self, listing: ListedToken, report: IngestionReport) -> Token:
        name, symbol = await self._ensure_names(listing)
        token, created = await self.store.create_token(
            listing.address,
            name=name,
            symbol=symbol,
            decimals=listing.decimals,
            icon=listing.icon,
            created_at=listing.listed_at,
        )
        if created:
            report.stored += 1
            reading = listing.as_reading()
            if not reading.is_all_zero():
                await self.store.append_market_snapshot(
                    token.id, reading.snapshot_fields(), timestamp=self._clock()
                )
                report.snapshots += 1
        return token

    async def _batch(self, fresh: list[Token]) -> list[ClusterCandidate]:
        since = self._clock() - datetime.timedelta(hours=self.window_hours)
        backlog = await self.store.unassigned_tokens(since)
        ordered: list[Token] = []
        seen: set[str] = set()
        # Fresh tokens first, then the most recent of the unassigned backlog.
        for token in list(fresh) + list(reversed(backlog)):
            if token.address in seen or not (token.name or token.symbol):
                continue
            seen.add(token.address)
            ordered.append(token)
            if len(ordered) >= self.batch_limit:
                break
        return [
            ClusterCandidate(
                address=t.address, name=t.name, symbol=t.symbol, created_at=t.created_at
            )
            for t in ordered
        ]

    async def poll(self) -> IngestionReport:
        report = IngestionReport()
        listings = await self.aggregator.get_recent_listings(self.window_hours)
        report.listed = len(listings)

        fresh_tokens: list[Token] = []
        for listing in listings:
            if listing.address in self._seen:
                continue
            report.fresh += 1
            try:
                token = await self._store_listing(listing, report)
            except Exception:
                report.failures += 1
                logger.exception("Failed to store listing %s", listing.address)
                continue
            self._seen[listing.address] = True
            fresh_tokens.append(token)

        candidates = await self._batch(fresh_tokens)
        report.batch_size = len(candidates)
        clusters = self.builder.build(candidates)
        report.clusters = len(clusters)
        for cluster in clusters:
            try:
                change = await self.assembler.assemble(cluster)
            except Exception:
                report.failures += 1
                logger.exception(
                    "Failed to assemble topic for cluster seeded by %s", cluster.seed.address
                )
                continue
            if change is None:
                continue
            if change.created:
                report.topics_created += 1
            else:
                report.topics_updated += 1

        logger.info(
            "Ingestion: %d listed, %d fresh, %d stored, batch %d, %d cluster(s), "
            "%d topic(s) created, %d updated",
            report.listed,
            report.fresh,
            report.stored,
            report.batch_size,
            report.clusters,
            report.topics_created,
            report.topics_updated,
        )
        return report


__all__ = ["IngestionReport", "IngestionService"]
