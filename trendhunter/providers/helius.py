"""Helius DAS (Digital Asset Standard) JSON-RPC adapter."""

from __future__ import annotations

import itertools
import logging
import os
from typing import Any, Mapping

from ..types import MarketReading, TokenInfo
from ..util import coerce_float, coerce_int
from .base import ProviderClient, ProviderUnavailable, as_mapping, clean_text

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://mainnet.helius-rpc.com"


def _asset_icon(content: Mapping[str, Any]) -> str:
    files = content.get("files")
    if isinstance(files, list):
        for entry in files:
            uri = clean_text(as_mapping(entry).get("uri") or as_mapping(entry).get("cdn_uri"))
            if uri:
                return uri
    return clean_text(as_mapping(content.get("links")).get("image"))


class HeliusProvider(ProviderClient):
    """On-chain metadata via ``getAsset``; holder totals via ``getTokenAccounts``."""

    name = "helius"
    requires_key = True
    default_base_url = os.getenv("HELIUS_RPC_URL") or _DEFAULT_BASE_URL

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._ids = itertools.count(1)

    async def _rpc(self, method: str, params: Mapping[str, Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": f"trendhunter-{next(self._ids)}",
            "method": method,
            "params": dict(params),
        }
        payload = await self._request(
            "POST",
            f"{self.base_url}/?api-key={self.api_key}",
            json=body,
        )
        data = as_mapping(payload)
        error = data.get("error")
        if error:
            message = clean_text(as_mapping(error).get("message")) or str(error)
            # Unknown mints come back as RPC errors rather than 404s.
            if "not found" in message.lower():
                return None
            raise ProviderUnavailable(self.name, f"{method}: {message}")
        return data.get("result")

    async def _asset(self, address: str) -> Mapping[str, Any]:
        return as_mapping(await self._rpc("getAsset", {"id": address}))

    async def basic_info(self, address: str) -> TokenInfo | None:
        asset = await self._asset(address)
        if not asset:
            return None
        content = as_mapping(asset.get("content"))
        metadata = as_mapping(content.get("metadata"))
        token_info = as_mapping(asset.get("token_info"))
        name = clean_text(metadata.get("name"))
        symbol = clean_text(metadata.get("symbol") or token_info.get("symbol"))
        if not (name or symbol):
            return None
        return TokenInfo(
            address=address,
            name=name,
            symbol=symbol,
            decimals=coerce_int(token_info.get("decimals")),
            icon=_asset_icon(content),
            source=self.name,
        )

    async def full_info(self, address: str) -> MarketReading | None:
        asset = await self._asset(address)
        if not asset:
            return None
        content = as_mapping(asset.get("content"))
        metadata = as_mapping(content.get("metadata"))
        token_info = as_mapping(asset.get("token_info"))
        price_info = as_mapping(token_info.get("price_info"))
        price = coerce_float(price_info.get("price_per_token")) or 0.0
        decimals = coerce_int(token_info.get("decimals"))
        supply = coerce_float(token_info.get("supply")) or 0.0
        market_cap = 0.0
        if price and supply and decimals is not None:
            market_cap = price * supply / (10 ** decimals)
        return MarketReading(
            address=address,
            source=self.name,
            name=clean_text(metadata.get("name")),
            symbol=clean_text(metadata.get("symbol") or token_info.get("symbol")),
            decimals=decimals,
            icon=_asset_icon(content),
            price=price,
            market_cap=market_cap,
        )

    async def holder_count(self, address: str) -> int | None:
        result = as_mapping(
            await self._rpc("getTokenAccounts", {"mint": address, "limit": 1})
        )
        if not result:
            return None
        return coerce_int(result.get("total"))


__all__ = ["HeliusProvider"]
