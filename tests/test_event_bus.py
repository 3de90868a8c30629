import asyncio
import logging

import orjson
import pytest

from trendhunter.event_bus import TOPIC_CREATED, TOPIC_UPDATED, EventBus
from trendhunter.schemas import TopicAggregates, TopicChanged, TopicMember, encode_event


def _payload():
    return TopicChanged(
        topic_id=1,
        name="Pepe",
        description="Auto-generated topic. Keywords: pepe",
        keywords=["pepe"],
        hotness=61.0,
        created=True,
        members=[TopicMember("a", "Pepe King", "PEPEK", market_cap=10.0)],
        aggregates=TopicAggregates(1, 10.0, 0.0, 0.0, 0.5),
        new_members=["a"],
    )


def test_sync_handlers_receive_payload(bus):
    seen = []
    bus.subscribe(TOPIC_CREATED, seen.append)
    bus.publish(TOPIC_CREATED, "x")
    bus.publish(TOPIC_UPDATED, "ignored")
    assert seen == ["x"]


def test_unsubscribe_and_context_manager(bus):
    seen = []
    unsub = bus.subscribe(TOPIC_CREATED, seen.append)
    unsub()
    bus.publish(TOPIC_CREATED, 1)
    with bus.subscription(TOPIC_CREATED, seen.append):
        bus.publish(TOPIC_CREATED, 2)
    bus.publish(TOPIC_CREATED, 3)
    assert seen == [2]


def test_failing_handler_isolated(bus, caplog):
    seen = []

    def broken(_payload):
        raise RuntimeError("boom")

    bus.subscribe(TOPIC_CREATED, broken)
    bus.subscribe(TOPIC_CREATED, seen.append)
    with caplog.at_level(logging.ERROR):
        bus.publish(TOPIC_CREATED, "ok")
    assert seen == ["ok"]
    assert "failed" in caplog.text


@pytest.mark.asyncio
async def test_async_handlers_scheduled_and_drained(bus):
    seen = []

    async def slow(payload):
        await asyncio.sleep(0)
        seen.append(payload)

    async def broken(_payload):
        raise RuntimeError("boom")

    bus.subscribe(TOPIC_UPDATED, slow)
    bus.subscribe(TOPIC_UPDATED, broken)
    bus.publish(TOPIC_UPDATED, "late")
    assert seen == []
    await bus.drain()
    assert seen == ["late"]


def test_encode_event_is_json():
    decoded = orjson.loads(encode_event(TOPIC_CREATED, _payload()))
    assert decoded["topic"] == TOPIC_CREATED
    assert decoded["payload"]["name"] == "Pepe"
    assert decoded["payload"]["members"][0]["symbol"] == "PEPEK"
    assert decoded["payload"]["aggregates"]["member_count"] == 1
