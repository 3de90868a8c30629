"""Solscan Pro API (v2) adapter."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Mapping

from ..types import MarketReading
from ..util import coerce_float, coerce_int
from .base import ProviderClient, as_mapping, clean_text

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://pro-api.solscan.io/v2.0"


class SolscanProvider(ProviderClient):
    name = "solscan"
    requires_key = True
    default_base_url = os.getenv("SOLSCAN_BASE_URL") or _DEFAULT_BASE_URL

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["token"] = self.api_key
        return headers

    async def _data(self, path: str, address: str) -> Mapping[str, Any]:
        payload = as_mapping(await self._get(path, {"address": address}))
        if payload.get("success") is False:
            return {}
        data = payload.get("data")
        # /token/price answers with a list of daily points.
        if isinstance(data, list):
            data = data[-1] if data else {}
        return as_mapping(data)

    async def full_info(self, address: str) -> MarketReading | None:
        results = await asyncio.gather(
            self._data("/token/meta", address),
            self._data("/token/price", address),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        meta, price = results
        if not meta and not price:
            return None
        return MarketReading(
            address=address,
            source=self.name,
            name=clean_text(meta.get("name")),
            symbol=clean_text(meta.get("symbol")),
            decimals=coerce_int(meta.get("decimals")),
            icon=clean_text(meta.get("icon")),
            price=coerce_float(meta.get("price")) or coerce_float(price.get("price")) or 0.0,
            price_change_24h=coerce_float(meta.get("price_change_24h"))
            or coerce_float(price.get("price_change_24h"))
            or 0.0,
            market_cap=coerce_float(meta.get("market_cap")) or 0.0,
            volume_24h=coerce_float(meta.get("volume_24h")) or 0.0,
            liquidity=coerce_float(price.get("liquidity")) or 0.0,
            holder_count=coerce_int(meta.get("holder")) or 0,
            fdv=coerce_float(meta.get("fdv")) or 0.0,
        )

    async def holder_count(self, address: str) -> int | None:
        meta = await self._data("/token/meta", address)
        if not meta:
            return None
        return coerce_int(meta.get("holder"))


__all__ = ["SolscanProvider"]
