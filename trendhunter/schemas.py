"""Typed event payload schemas used with the event bus."""
from __future__ import annotations

import datetime
from dataclasses import asdict, dataclass, field, is_dataclass
from typing import Any, Dict, List, Optional

import orjson


# ─────────────────────────────
# Event payload dataclasses
# ─────────────────────────────

@dataclass
class TopicMember:
    """One token inside a topic, with its latest market figures."""
    address: str
    name: str
    symbol: str
    icon: str = ""
    price: float = 0.0
    market_cap: float = 0.0
    liquidity: float = 0.0
    volume_24h: float = 0.0
    price_change_24h: float = 0.0
    created_at: Optional[datetime.datetime] = None
    added_at: Optional[datetime.datetime] = None


@dataclass
class TopicAggregates:
    """Totals across a topic's members."""
    member_count: int
    total_market_cap: float
    total_liquidity: float
    total_volume_24h: float
    avg_age_hours: float


@dataclass
class TopicChanged:
    """Payload emitted when a topic is created or gains members."""
    topic_id: int
    name: str
    description: str
    keywords: List[str]
    hotness: float
    created: bool
    members: List[TopicMember] = field(default_factory=list)
    aggregates: Optional[TopicAggregates] = None
    new_members: List[str] = field(default_factory=list)


def to_dict(payload: Any) -> Dict[str, Any]:
    """Return a plain ``dict`` view of a payload dataclass."""
    if is_dataclass(payload) and not isinstance(payload, type):
        return asdict(payload)
    if isinstance(payload, dict):
        return dict(payload)
    raise TypeError(f"unsupported payload type {type(payload).__name__}")


def encode_event(topic: str, payload: Any) -> bytes:
    """Serialize ``{"topic": ..., "payload": ...}`` as JSON bytes."""
    return orjson.dumps({"topic": topic, "payload": to_dict(payload)})


__all__ = [
    "TopicMember",
    "TopicAggregates",
    "TopicChanged",
    "to_dict",
    "encode_event",
]
