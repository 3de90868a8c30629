"""Value types exchanged between providers, the aggregator and the pipeline."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(slots=True, frozen=True)
class TokenInfo:
    """Static token metadata as reported by a provider."""

    address: str
    name: str = ""
    symbol: str = ""
    decimals: Optional[int] = None
    icon: str = ""
    source: str = ""


@dataclass(slots=True, frozen=True)
class MarketReading:
    """One provider's market observation for a token."""

    address: str
    source: str
    name: str = ""
    symbol: str = ""
    decimals: Optional[int] = None
    icon: str = ""
    price: float = 0.0
    price_change_24h: float = 0.0
    market_cap: float = 0.0
    volume_24h: float = 0.0
    liquidity: float = 0.0
    holder_count: int = 0
    tx_count_24h: int = 0
    fdv: float = 0.0

    def is_all_zero(self) -> bool:
        """True when every numeric field is zero, i.e. the provider knows nothing."""
        return not any(
            (
                self.price,
                self.price_change_24h,
                self.market_cap,
                self.volume_24h,
                self.liquidity,
                self.holder_count,
                self.tx_count_24h,
                self.fdv,
            )
        )

    def snapshot_fields(self) -> Dict[str, Any]:
        """Columns written to a market snapshot row."""
        return {
            "price": self.price,
            "price_change_24h": self.price_change_24h,
            "market_cap": self.market_cap,
            "volume_24h": self.volume_24h,
            "liquidity": self.liquidity,
            "holder_count": self.holder_count,
            "tx_count_24h": self.tx_count_24h,
            "fdv": self.fdv,
            "source": self.source,
        }


@dataclass(slots=True, frozen=True)
class ListedToken:
    """A token surfaced by a provider's recent-listings feed."""

    address: str
    source: str
    name: str = ""
    symbol: str = ""
    decimals: Optional[int] = None
    icon: str = ""
    listed_at: Optional[datetime.datetime] = None
    price: float = 0.0
    price_change_24h: float = 0.0
    market_cap: float = 0.0
    volume_24h: float = 0.0
    liquidity: float = 0.0

    def as_reading(self) -> MarketReading:
        return MarketReading(
            address=self.address,
            source=self.source,
            name=self.name,
            symbol=self.symbol,
            decimals=self.decimals,
            icon=self.icon,
            price=self.price,
            price_change_24h=self.price_change_24h,
            market_cap=self.market_cap,
            volume_24h=self.volume_24h,
            liquidity=self.liquidity,
        )


@dataclass(slots=True, frozen=True)
class ClusterCandidate:
    """Minimal view of a token handed to the clustering stage."""

    address: str
    name: str
    symbol: str
    created_at: Optional[datetime.datetime] = None


__all__ = ["TokenInfo", "MarketReading", "ListedToken", "ClusterCandidate"]
