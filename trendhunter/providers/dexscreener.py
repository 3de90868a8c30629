"""Dexscreener REST adapter with defensive pair parsing."""

from __future__ import annotations

import datetime
import logging
import os
from typing import Any, Iterable, Mapping, MutableMapping, Sequence

from ..types import ListedToken, MarketReading
from ..util import coerce_float, coerce_int, parse_timestamp, utcnow
from .base import ProviderClient, as_mapping, clean_text

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.dexscreener.com"
_CHAIN_ID = "solana"


def _extract_pairs(payload: Any) -> Sequence[MutableMapping[str, Any]]:
    if isinstance(payload, Mapping):
        for key in ("pairs", "data", "results"):
            pairs = payload.get(key)
            if isinstance(pairs, Sequence):
                return [pair for pair in pairs if isinstance(pair, MutableMapping)]
        return []
    if isinstance(payload, Sequence):
        return [pair for pair in payload if isinstance(pair, MutableMapping)]
    return []


def _token_from_pair(pair: Mapping[str, Any], role: str) -> str:
    token = pair.get(f"{role}Token") or pair.get(f"{role}_token")
    if isinstance(token, Mapping):
        value = token.get("address") or token.get("id") or token.get("mint")
        if isinstance(value, str):
            return value
    if isinstance(token, str):
        return token
    return ""


def _pair_liquidity(pair: Mapping[str, Any]) -> float:
    liquidity = pair.get("liquidity")
    if isinstance(liquidity, Mapping):
        return coerce_float(liquidity.get("usd")) or 0.0
    return coerce_float(liquidity) or 0.0


def _pair_timestamp(pair: Mapping[str, Any]) -> float:
    for field in ("updatedAt", "pairCreatedAt"):
        ts = parse_timestamp(pair.get(field))
        if ts is not None:
            return ts.timestamp()
    return 0.0


def _select_pairs(
    pairs: Iterable[MutableMapping[str, Any]],
    token: str,
) -> list[MutableMapping[str, Any]]:
    """Pairs quoting *token* as base token, deepest liquidity first."""

    token_lower = token.lower()
    filtered = [
        pair for pair in pairs if _token_from_pair(pair, "base").lower() == token_lower
    ]
    return sorted(
        filtered,
        key=lambda item: (-_pair_liquidity(item), -_pair_timestamp(item)),
    )


def _tx_count(pair: Mapping[str, Any]) -> int:
    h24 = as_mapping(as_mapping(pair.get("txns")).get("h24"))
    return (coerce_int(h24.get("buys")) or 0) + (coerce_int(h24.get("sells")) or 0)


def _pair_fields(pair: Mapping[str, Any]) -> dict[str, Any]:
    base = as_mapping(pair.get("baseToken"))
    info = as_mapping(pair.get("info"))
    return {
        "name": clean_text(base.get("name")),
        "symbol": clean_text(base.get("symbol")),
        "icon": clean_text(info.get("imageUrl")),
        "price": coerce_float(pair.get("priceUsd")) or 0.0,
        "price_change_24h": coerce_float(as_mapping(pair.get("priceChange")).get("h24"))
        or 0.0,
        "market_cap": coerce_float(pair.get("marketCap")) or 0.0,
        "volume_24h": coerce_float(as_mapping(pair.get("volume")).get("h24")) or 0.0,
        "liquidity": _pair_liquidity(pair),
    }


class DexScreenerProvider(ProviderClient):
    """Keyless provider; fastest source of names and pair-level market data."""

    name = "dexscreener"
    supports_listings = True
    default_base_url = os.getenv("DEXSCREENER_BASE_URL") or _DEFAULT_BASE_URL

    async def full_info(self, address: str) -> MarketReading | None:
        payload = await self._get(f"/latest/dex/tokens/{address}")
        ranked = _select_pairs(_extract_pairs(payload), address)
        if not ranked:
            return None
        best = ranked[0]
        return MarketReading(
            address=address,
            source=self.name,
            fdv=coerce_float(best.get("fdv")) or 0.0,
            tx_count_24h=_tx_count(best),
            **_pair_fields(best),
        )

    async def recent_listings(self, window_hours: float) -> list[ListedToken]:
        payload = await self._get("/latest/dex/search", {"q": _CHAIN_ID})
        cutoff = utcnow() - datetime.timedelta(hours=float(window_hours))
        listings: list[ListedToken] = []
        seen: set[str] = set()
        for pair in _extract_pairs(payload):
            if clean_text(pair.get("chainId")).lower() not in {"", _CHAIN_ID}:
                continue
            address = _token_from_pair(pair, "base")
            if not address or address in seen:
                continue
            created = parse_timestamp(pair.get("pairCreatedAt"))
            if created is None or created < cutoff:
                continue
            seen.add(address)
            listings.append(
                ListedToken(
                    address=address,
                    source=self.name,
                    listed_at=created,
                    **_pair_fields(pair),
                )
            )
        logger.debug("dexscreener: %d listings inside %.1fh window", len(listings), window_hours)
        return listings


__all__ = ["DexScreenerProvider"]
