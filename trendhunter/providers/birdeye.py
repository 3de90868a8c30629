"""Birdeye public API adapter."""

from __future__ import annotations

import datetime
import logging
import os
from typing import Any, Mapping

from ..logging_utils import warn_once_per
from ..types import ListedToken, MarketReading
from ..util import coerce_float, coerce_int, parse_timestamp, utcnow
from .base import ProviderClient, ProviderUnavailable, as_mapping, clean_text

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://public-api.birdeye.so"
_LISTING_LIMIT = 50
_AUTH_STATUSES = (401, 403)


def _payload_data(payload: Any) -> Mapping[str, Any]:
    """Return ``payload["data"]`` when Birdeye reports success."""

    body = as_mapping(payload)
    if body.get("success") is False:
        return {}
    return as_mapping(body.get("data"))


def _icon(data: Mapping[str, Any]) -> str:
    return clean_text(data.get("logoURI") or data.get("logo") or data.get("icon"))


class BirdeyeProvider(ProviderClient):
    """Birdeye token overview, price and new-listing feeds (``X-API-KEY``)."""

    name = "birdeye"
    supports_listings = True
    requires_key = True
    default_base_url = os.getenv("BIRDEYE_BASE_URL") or _DEFAULT_BASE_URL

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["X-API-KEY"] = self.api_key
        headers["x-chain"] = "solana"
        return headers

    async def _overview(self, address: str) -> Mapping[str, Any]:
        """Token overview data; empty when the key is not allowed to read it."""

        try:
            payload = await self._get("/defi/token_overview", {"address": address})
        except ProviderUnavailable as exc:
            if exc.status not in _AUTH_STATUSES:
                raise
            warn_once_per(
                30,
                "birdeye-overview-auth",
                "birdeye: token_overview refused (HTTP %s); using /defi/price only",
                exc.status,
                logger=logger,
            )
            return {}
        return _payload_data(payload)

    async def full_info(self, address: str) -> MarketReading | None:
        data = await self._overview(address)
        if data:
            return MarketReading(
                address=address,
                source=self.name,
                name=clean_text(data.get("name")),
                symbol=clean_text(data.get("symbol")),
                decimals=coerce_int(data.get("decimals")),
                icon=_icon(data),
                price=coerce_float(data.get("price")) or 0.0,
                price_change_24h=coerce_float(data.get("priceChange24hPercent"))
                or coerce_float(data.get("priceChange24h"))
                or 0.0,
                market_cap=coerce_float(data.get("mc") or data.get("marketCap")) or 0.0,
                volume_24h=coerce_float(data.get("v24hUSD")) or 0.0,
                liquidity=coerce_float(data.get("liquidity")) or 0.0,
                holder_count=coerce_int(data.get("holder")) or 0,
                tx_count_24h=coerce_int(data.get("trade24h")) or 0,
                fdv=coerce_float(data.get("fdv")) or 0.0,
            )

        # Keys without overview access can still read /defi/price.
        price = _payload_data(await self._get("/defi/price", {"address": address}))
        if not price:
            return None
        return MarketReading(
            address=address,
            source=f"{self.name}_price",
            price=coerce_float(price.get("value")) or 0.0,
            price_change_24h=coerce_float(price.get("priceChange24h")) or 0.0,
            liquidity=coerce_float(price.get("liquidity")) or 0.0,
        )

    async def holder_count(self, address: str) -> int | None:
        data = await self._overview(address)
        return coerce_int(data.get("holder")) if data else None

    async def recent_listings(self, window_hours: float) -> list[ListedToken]:
        payload = await self._get(
            "/defi/v2/tokens/new_listing",
            {
                "sort_by": "listing_time",
                "sort_type": "desc",
                "offset": 0,
                "limit": _LISTING_LIMIT,
            },
        )
        items = _payload_data(payload).get("items") or []
        cutoff = utcnow() - datetime.timedelta(hours=float(window_hours))
        listings: list[ListedToken] = []
        for item in items:
            if not isinstance(item, Mapping):
                continue
            address = clean_text(item.get("address"))
            listed_at = parse_timestamp(item.get("listing_time") or item.get("listingTime"))
            if not address or listed_at is None or listed_at < cutoff:
                continue
            listings.append(
                ListedToken(
                    address=address,
                    source=self.name,
                    name=clean_text(item.get("name")),
                    symbol=clean_text(item.get("symbol")),
                    decimals=coerce_int(item.get("decimals")),
                    icon=_icon(item),
                    listed_at=listed_at,
                    price=coerce_float(item.get("price")) or 0.0,
                    market_cap=coerce_float(item.get("mc")) or 0.0,
                    liquidity=coerce_float(item.get("liquidity")) or 0.0,
                    volume_24h=coerce_float(item.get("v24hUSD") or item.get("v24h")) or 0.0,
                    price_change_24h=coerce_float(
                        item.get("priceChange24hPercent") or item.get("priceChange24h")
                    )
                    or 0.0,
                )
            )
        logger.debug("birdeye: %d of %d listings inside window", len(listings), len(items))
        return listings


__all__ = ["BirdeyeProvider"]
