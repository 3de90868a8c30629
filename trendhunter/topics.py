"""Turn qualifying clusters into persisted, scored topics."""

from __future__ import annotations

import datetime
import logging
import math
from typing import Callable, Iterable, Sequence

from .clustering import Cluster
from .event_bus import TOPIC_CREATED, TOPIC_UPDATED, EventBus
from .schemas import TopicAggregates, TopicChanged, TopicMember
from .store import MarketSnapshot, Token, TopicToken, TrendStore, split_keywords
from .util import utcnow

logger = logging.getLogger(__name__)

STOP_WORDS: frozenset[str] = frozenset(
    {"coin", "token", "the", "of", "and", "sol", "solana", "official", "meme"}
)

MAX_KEYWORDS = 10
DESCRIPTION_KEYWORDS = 5


def choose_topic_name(cluster: Cluster, stop_words: Iterable[str] = STOP_WORDS) -> str:
    """Most widely shared keyword of the cluster, else the first member's symbol."""

    stop = set(stop_words)
    for keyword in cluster.keywords:
        if keyword in stop or keyword.isdigit():
            continue
        return keyword.capitalize() if keyword.isascii() else keyword
    seed = cluster.seed
    return seed.symbol or seed.name or seed.address


def auto_description(keywords: Sequence[str]) -> str:
    return "Auto-generated topic. Keywords: " + ", ".join(keywords[:DESCRIPTION_KEYWORDS])


def merge_keywords(fresh: Iterable[str], existing: Iterable[str], limit: int = MAX_KEYWORDS) -> list[str]:
    merged: list[str] = []
    for word in list(fresh) + list(existing):
        if word and word not in merged:
            merged.append(word)
    return merged[:limit]


def hotness_score(aggregates: TopicAggregates) -> float:
    score = (
        15.0 * aggregates.member_count
        + 8.0 * math.log10(max(aggregates.total_market_cap, 1.0))
        + 5.0 * math.log10(max(aggregates.total_liquidity, 1.0))
        + max(0.0, 50.0 - 2.0 * aggregates.avg_age_hours)
    )
    return max(0.0, score)


def build_members(
    rows: Sequence[tuple[Token, TopicToken, MarketSnapshot | None]],
) -> list[TopicMember]:
    members: list[TopicMember] = []
    for token, link, snap in rows:
        members.append(
            TopicMember(
                address=token.address,
                name=token.name,
                symbol=token.symbol,
                icon=token.icon or "",
                price=snap.price if snap else 0.0,
                market_cap=snap.market_cap if snap else 0.0,
                liquidity=snap.liquidity if snap else 0.0,
                volume_24h=snap.volume_24h if snap else 0.0,
                price_change_24h=snap.price_change_24h if snap else 0.0,
                created_at=token.created_at,
                added_at=link.added_at,
            )
        )
    return members


def aggregate(members: Sequence[TopicMember], now: datetime.datetime) -> TopicAggregates:
    ages = [
        max(0.0, (now - m.created_at).total_seconds() / 3600.0)
        for m in members
        if m.created_at is not None
    ]
    return TopicAggregates(
        member_count=len(members),
        total_market_cap=sum(m.market_cap for m in members),
        total_liquidity=sum(m.liquidity for m in members),
        total_volume_24h=sum(m.volume_24h for m in members),
        avg_age_hours=sum(ages) / len(ages) if ages else 0.0,
    )


class TopicAssembler:
    """Create or merge the topic for a cluster and broadcast the result."""

    def __init__(
        self,
        store: TrendStore,
        bus: EventBus,
        *,
        min_size: int = 3,
        stop_words: Iterable[str] = STOP_WORDS,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        if min_size < 1:
            raise ValueError("min_size must be at least 1")
        self.store = store
        self.min_size = int(min_size)
        self.bus = bus
        self.stop_words = frozenset(stop_words)
        self._clock = clock

    async def assemble(self, cluster: Cluster) -> TopicChanged | None:
        tokens: list[Token] = []
        for member in cluster.members:
            token = await self.store.find_token(member.address)
            if token is None:
                logger.warning("Cluster member %s is not stored; skipping it", member.address)
                continue
            tokens.append(token)
        # A cluster that shrank below the minimum is dropped whole.
        if len(tokens) < self.min_size:
            if tokens:
                logger.warning(
                    "Cluster around %s has %d stored member(s), fewer than %d; discarding it",
                    cluster.seed.address,
                    len(tokens),
                    self.min_size,
                )
            return None

        name = choose_topic_name(cluster, self.stop_words)
        keywords = [k for k in cluster.keywords if k not in self.stop_words]
        topic, created = await self.store.create_topic(
            name,
            description=auto_description(keywords),
            keywords=keywords[:MAX_KEYWORDS],
        )

        new_members: list[str] = []
        for token in tokens:
            if await self.store.add_member_to_topic(topic.id, token.id):
                new_members.append(token.address)

        if created:
            merged = keywords[:MAX_KEYWORDS]
        else:
            merged = merge_keywords(keywords, split_keywords(topic.keywords))

        members = build_members(await self.store.topic_members(topic.id))
        totals = aggregate(members, self._clock())
        hotness = hotness_score(totals)
        description = auto_description(merged)
        topic = await self.store.update_topic(
            topic.id, description=description, keywords=merged, hotness=hotness
        )

        payload = TopicChanged(
            topic_id=topic.id,
            name=topic.name,
            description=topic.description,
            keywords=merged,
            hotness=hotness,
            created=created,
            members=members,
            aggregates=totals,
            new_members=new_members,
        )
        if created:
            logger.info(
                "Topic %r created with %d member(s), hotness %.1f", topic.name, len(members), hotness
            )
        else:
            logger.info(
                "Topic %r merged %d new member(s), now %d, hotness %.1f",
                topic.name,
                len(new_members),
                len(members),
                hotness,
            )
        self.bus.publish(TOPIC_CREATED if created else TOPIC_UPDATED, payload)
        return payload


__all__ = [
    "STOP_WORDS",
    "TopicAssembler",
    "aggregate",
    "auto_description",
    "build_members",
    "choose_topic_name",
    "hotness_score",
    "merge_keywords",
]
