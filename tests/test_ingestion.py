import datetime

import pytest

from conftest import START, FakeProvider
from trendhunter.aggregator import SourceAggregator
from trendhunter.cache import ResponseCache
from trendhunter.clustering import ClusterBuilder
from trendhunter.event_bus import TOPIC_CREATED, TOPIC_UPDATED
from trendhunter.ingestion import IngestionService
from trendhunter.topics import TopicAssembler
from trendhunter.types import ListedToken, TokenInfo

RECENT = START - datetime.timedelta(minutes=10)


def _pepe_scorer(name_a, symbol_a, name_b, symbol_b):
    return 0.9 if "Pepe" in name_a and "Pepe" in name_b else 0.0


def _listing(address, name="", symbol="", **kwargs):
    kwargs.setdefault("listed_at", RECENT)
    return ListedToken(address=address, source="dexscreener", name=name, symbol=symbol, **kwargs)


def _service(store, bus, clock, provider, *, batch_limit=40):
    aggregator = SourceAggregator([provider], cache=ResponseCache(ttl=0), clock=clock)
    builder = ClusterBuilder(scorer=_pepe_scorer)
    assembler = TopicAssembler(store, bus, clock=clock)
    return IngestionService(
        store, aggregator, builder, assembler, window_hours=6, batch_limit=batch_limit, clock=clock
    )


@pytest.mark.asyncio
async def test_poll_stores_clusters_and_creates_topic(store, bus, clock):
    created = []
    bus.subscribe(TOPIC_CREATED, created.append)
    provider = FakeProvider(
        "dexscreener",
        listings=[
            _listing("a", "Pepe King", "PEPEK", price=0.01, liquidity=500.0),
            _listing("b", "Pepe Kings", "PEPEKS"),
            _listing("c", "PepeKing Inu", "PEPEKI", market_cap=9000.0),
            _listing("x", "Solana Cat", "SCAT", price=0.2),
        ],
    )
    service = _service(store, bus, clock, provider)

    report = await service.poll()

    assert report.listed == 4
    assert report.fresh == 4
    assert report.stored == 4
    # "b" arrived without market figures
    assert report.snapshots == 3
    assert report.clusters == 1
    assert report.topics_created == 1
    assert report.failures == 0

    [event] = created
    assert event.name == "Pepe"
    assert sorted(m.address for m in event.members) == ["a", "b", "c"]
    token = await store.find_token("a")
    assert token.created_at == RECENT
    assert (await store.latest_snapshot(token.id)).liquidity == 500.0


@pytest.mark.asyncio
async def test_repeated_listings_are_not_reprocessed(store, bus, clock):
    provider = FakeProvider(
        "dexscreener",
        listings=[_listing(addr, f"Pepe {addr}", addr.upper()) for addr in ("a", "b", "c")],
    )
    service = _service(store, bus, clock, provider)
    await service.poll()
    again = await service.poll()
    assert again.listed == 3
    assert again.fresh == 0
    assert again.batch_size == 0
    assert again.clusters == 0


@pytest.mark.asyncio
async def test_new_family_members_merge_into_topic(store, bus, clock):
    updated = []
    bus.subscribe(TOPIC_UPDATED, updated.append)
    first = [_listing(addr, f"Pepe {addr}", addr.upper()) for addr in ("a", "b", "c")]
    provider = FakeProvider("dexscreener", listings=first)
    service = _service(store, bus, clock, provider)
    await service.poll()

    provider.listings = first + [
        _listing(addr, f"Pepe {addr}", addr.upper()) for addr in ("d", "e", "f")
    ]
    report = await service.poll()

    assert report.fresh == 3
    assert report.topics_updated == 1
    assert updated[0].new_members == ["d", "e", "f"]
    assert updated[0].aggregates.member_count == 6
    assert len(await store.list_topics()) == 1


@pytest.mark.asyncio
async def test_unassigned_backlog_joins_next_batch(store, bus, clock):
    provider = FakeProvider(
        "dexscreener", listings=[_listing("a", "Pepe A", "PA"), _listing("b", "Pepe B", "PB")]
    )
    service = _service(store, bus, clock, provider)
    first = await service.poll()
    assert first.clusters == 0

    provider.listings = [_listing("c", "Pepe C", "PC")]
    second = await service.poll()
    assert second.batch_size == 3
    assert second.topics_created == 1


@pytest.mark.asyncio
async def test_nameless_listing_resolved_through_basic_info(store, bus, clock):
    provider = FakeProvider(
        "dexscreener",
        listings=[_listing("anon"), _listing("ghost")],
        basic={"anon": TokenInfo("anon", "Resolved", "RSV")},
    )
    service = _service(store, bus, clock, provider)
    report = await service.poll()
    assert report.stored == 2
    assert provider.basic_calls == ["anon", "ghost"]
    assert (await store.find_token("anon")).symbol == "RSV"
    # unnamed tokens never reach clustering
    assert report.batch_size == 1


@pytest.mark.asyncio
async def test_batch_limit_caps_candidates(store, bus, clock):
    provider = FakeProvider(
        "dexscreener",
        listings=[_listing(f"t{i}", f"Pepe {i}", f"P{i}") for i in range(8)],
    )
    service = _service(store, bus, clock, provider, batch_limit=5)
    report = await service.poll()
    assert report.stored == 8
    assert report.batch_size == 5
    assert report.clusters == 1
