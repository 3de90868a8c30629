"""Priority-tiered refresh of market data for tracked tokens."""

from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from .aggregator import SourceAggregator
from .store import MarketSnapshot, Token, TrendStore
from .types import MarketReading
from .util import utcnow

logger = logging.getLogger(__name__)


class Priority(enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Minimum number of ticks between two refreshes of a token, per tier.
TIER_INTERVAL_TICKS: dict[Priority, int] = {
    Priority.HIGH: 1,
    Priority.MEDIUM: 5,
    Priority.LOW: 30,
}

_MARKET_CAP_STEPS = ((1_000_000.0, 0.3), (100_000.0, 0.2), (10_000.0, 0.1))
_VOLUME_STEPS = ((100_000.0, 0.3), (10_000.0, 0.2), (1_000.0, 0.1))


def _step(value: float, steps: Sequence[tuple[float, float]]) -> float:
    for threshold, points in steps:
        if value >= threshold:
            return points
    return 0.0


def priority_score(snapshot: MarketSnapshot | MarketReading) -> float:
    """Importance in ``[0, 1]`` derived from liquidity, market cap and volume."""

    value = 0.4 if (snapshot.liquidity or 0.0) > 0 else 0.0
    value += _step(snapshot.market_cap or 0.0, _MARKET_CAP_STEPS)
    value += _step(snapshot.volume_24h or 0.0, _VOLUME_STEPS)
    return round(value, 6)


def priority_tier(value: float) -> Priority:
    # Zero-score tokens stay in the low tier so they still refresh eventually.
    if value >= 0.8:
        return Priority.HIGH
    if value >= 0.4:
        return Priority.MEDIUM
    return Priority.LOW


@dataclass(slots=True)
class _Candidate:
    token: Token
    snapshot: MarketSnapshot
    score: float
    tier: Priority


@dataclass(slots=True)
class RefreshReport:
    """Outcome of one refresh pass."""

    considered: int = 0
    eligible: int = 0
    selected: list[str] = field(default_factory=list)
    written: int = 0
    skipped_zero: int = 0
    missing: int = 0


class RefreshScheduler:
    """Decide which tracked tokens to refresh on each tick and persist results.

    A token is due once its latest snapshot is older than its tier interval.
    Due tokens are ranked by priority score (older snapshot first on ties)
    and at most ``per_tick_cap`` of them are fetched per tick.
    """

    def __init__(
        self,
        store: TrendStore,
        aggregator: SourceAggregator,
        *,
        tick_interval: float = 1.0,
        per_tick_cap: int = 4,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if per_tick_cap < 1:
            raise ValueError("per_tick_cap must be at least 1")
        self.store = store
        self.aggregator = aggregator
        self.tick_interval = float(tick_interval)
        self.per_tick_cap = int(per_tick_cap)
        self._clock = clock

    def min_interval(self, tier: Priority) -> datetime.timedelta:
        return datetime.timedelta(seconds=TIER_INTERVAL_TICKS[tier] * self.tick_interval)

    def is_due(self, snapshot: MarketSnapshot, tier: Priority, now: datetime.datetime) -> bool:
        age = now - snapshot.timestamp
        # Half a tick of grace absorbs the fetch latency between tick start and write.
        grace = datetime.timedelta(seconds=self.tick_interval / 2.0)
        return age + grace >= self.min_interval(tier)

    async def select(self) -> tuple[list[_Candidate], int, int]:
        now = self._clock()
        tracked = await self.store.tracked_tokens()
        due: list[_Candidate] = []
        for token, snap in tracked:
            value = priority_score(snap)
            tier = priority_tier(value)
            if self.is_due(snap, tier, now):
                due.append(_Candidate(token, snap, value, tier))
        due.sort(key=lambda c: (-c.score, c.snapshot.timestamp, c.token.id))
        return due[: self.per_tick_cap], len(tracked), len(due)

    async def tick(self) -> RefreshReport:
        selected, considered, eligible = await self.select()
        report = RefreshReport(considered=considered, eligible=eligible)
        if not selected:
            return report
        report.selected = [c.token.address for c in selected]
        await self._refresh(selected, report)
        logger.debug(
            "Refresh tick: %d tracked, %d due, %d fetched, %d written, %d zero, %d missing",
            report.considered,
            report.eligible,
            len(report.selected),
            report.written,
            report.skipped_zero,
            report.missing,
        )
        return report

    async def refresh_topic(self, topic_id: int) -> RefreshReport:
        """Refresh every member of one topic now, ignoring tiers and the cap.

        Raises :class:`LookupError` for an unknown *topic_id*.
        """

        topic = await self.store.get_topic(topic_id)
        if topic is None:
            raise LookupError(f"topic {topic_id} does not exist")
        rows = await self.store.topic_members(topic_id)
        report = RefreshReport(considered=len(rows))
        candidates: list[_Candidate] = []
        for token, _link, snap in rows:
            if snap is None:
                snap = MarketSnapshot(token_id=token.id, timestamp=datetime.datetime.min)
                value = 0.0
            else:
                value = priority_score(snap)
            candidates.append(_Candidate(token, snap, value, priority_tier(value)))
        report.eligible = len(candidates)
        report.selected = [c.token.address for c in candidates]
        if candidates:
            await self._refresh(candidates, report)
        logger.info(
            "Refreshed topic %r: %d written, %d zero, %d missing",
            topic.name,
            report.written,
            report.skipped_zero,
            report.missing,
        )
        return report

    async def _refresh(self, candidates: Sequence[_Candidate], report: RefreshReport) -> None:
        readings = await self.aggregator.get_batch([c.token.address for c in candidates])
        by_address = {r.address: r for r in readings}
        for candidate in candidates:
            reading = by_address.get(candidate.token.address)
            if reading is None:
                report.missing += 1
                continue
            try:
                written = await self.persist(candidate.token, candidate.snapshot, reading)
            except Exception:
                logger.exception("Failed to persist refresh for %s", candidate.token.address)
                continue
            if written:
                report.written += 1
            else:
                report.skipped_zero += 1

    async def persist(
        self,
        token: Token,
        previous: MarketSnapshot | None,
        reading: MarketReading,
    ) -> bool:
        """Write *reading* as a new snapshot unless it is a stale zero reading.

        An all-zero reading is never written. When only price or market cap
        dropped to zero, the previous positive value is carried into the new
        row.
        """

        if reading.is_all_zero():
            logger.info("Skipping all-zero reading for %s from %s", token.address, reading.source)
            return False
        fields = reading.snapshot_fields()
        if previous is not None:
            for name in ("price", "market_cap"):
                prior = getattr(previous, name, None) or 0.0
                if not fields[name] and prior > 0:
                    fields[name] = prior
        await self.store.append_market_snapshot(token.id, fields, timestamp=self._clock())
        if reading.icon and not token.icon:
            await self.store.apply_metadata(
                token.address,
                name=reading.name,
                symbol=reading.symbol,
                icon=reading.icon,
                decimals=reading.decimals,
            )
        return True


__all__ = [
    "Priority",
    "TIER_INTERVAL_TICKS",
    "RefreshReport",
    "RefreshScheduler",
    "priority_score",
    "priority_tier",
]
