"""Multi-provider data acquisition with caching, rotation and fallback."""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any, Awaitable, Callable, Iterable, Sequence

from .cache import MISS, ResponseCache
from .logging_utils import warn_once_per
from .providers.base import ProviderClient, ProviderError
from .types import ListedToken, MarketReading, TokenInfo
from .util import utcnow

logger = logging.getLogger(__name__)

DEFAULT_ROTATION: tuple[str, ...] = ("birdeye", "dexscreener", "helius", "solscan")
DEFAULT_FALLBACK: tuple[str, ...] = ("dexscreener", "birdeye", "solscan", "helius")
DEFAULT_BASIC_ORDER: tuple[str, ...] = ("dexscreener", "birdeye")


def _ordered(
    providers: Sequence[ProviderClient], names: Iterable[str]
) -> list[ProviderClient]:
    """*providers* arranged by *names*, unnamed providers appended in their own order."""

    by_name = {p.name: p for p in providers}
    ordered: list[ProviderClient] = []
    for name in names:
        provider = by_name.pop(name, None)
        if provider is not None:
            ordered.append(provider)
    ordered.extend(p for p in providers if p.name in by_name)
    return ordered


class SourceAggregator:
    """Front door to every configured provider.

    The rotation counter and the response cache live on the instance; two
    aggregators never share state.
    """

    def __init__(
        self,
        providers: Sequence[ProviderClient],
        *,
        cache: ResponseCache | None = None,
        rotation_order: Iterable[str] = DEFAULT_ROTATION,
        fallback_order: Iterable[str] = DEFAULT_FALLBACK,
        basic_order: Iterable[str] = DEFAULT_BASIC_ORDER,
        batch_pause: float = 0.1,
        clock: Callable[[], datetime.datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        enabled = [p for p in providers if p.enabled]
        for provider in providers:
            if not provider.enabled:
                warn_once_per(
                    60.0,
                    f"provider-disabled-{provider.name}",
                    "Provider %s has no API key configured; skipping it",
                    provider.name,
                    logger=logger,
                )
        if not enabled:
            raise ValueError("at least one enabled provider is required")
        self.providers: list[ProviderClient] = _ordered(enabled, rotation_order)
        self._fallback: list[ProviderClient] = _ordered(enabled, fallback_order)
        self._basic: list[ProviderClient] = _ordered(enabled, basic_order)
        self.cache = cache if cache is not None else ResponseCache()
        self.batch_pause = max(0.0, float(batch_pause))
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._rotation = 0

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    def describe(self) -> dict[str, Any]:
        return {
            "rotation": self.provider_names,
            "fallback": [p.name for p in self._fallback],
            "basic": [p.name for p in self._basic],
            "cache_ttl": self.cache.ttl,
            "cache_hits": self.cache.hits,
            "cache_misses": self.cache.misses,
        }

    def _next_provider(self) -> ProviderClient:
        provider = self.providers[self._rotation % len(self.providers)]
        self._rotation += 1
        return provider

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_basic_info(self, address: str) -> TokenInfo | None:
        key = f"basic:{address}"
        cached = self.cache.lookup(key)
        if cached is not MISS:
            return cached
        responded = False
        for provider in self._basic:
            try:
                info = await provider.basic_info(address)
            except ProviderError as exc:
                logger.warning("basic info from %s failed for %s: %s", provider.name, address, exc)
                continue
            responded = True
            if info is not None:
                self.cache.store(key, info)
                return info
        if responded:
            self.cache.store(key, None)
        return None

    async def get_full_info(self, address: str) -> MarketReading | None:
        """Full market reading from the next provider in rotation.

        When that provider fails or has nothing useful, the remaining
        providers are tried in fallback order. ``None`` only after every
        provider was tried.
        """

        key = f"full:{address}"
        cached = self.cache.lookup(key)
        if cached is not MISS:
            return cached

        primary = self._next_provider()
        tried: set[str] = set()
        responded = False
        for provider in [primary, *self._fallback]:
            if provider.name in tried:
                continue
            tried.add(provider.name)
            try:
                reading = await provider.full_info(address)
            except ProviderError as exc:
                logger.warning("%s failed for %s: %s", provider.name, address, exc)
                continue
            responded = True
            if reading is None or reading.is_all_zero():
                logger.debug("%s has no usable data for %s", provider.name, address)
                continue
            if provider is not primary:
                logger.info(
                    "%s answered for %s after %s fell through", provider.name, address, primary.name
                )
            self.cache.store(key, reading)
            return reading

        if responded:
            self.cache.store(key, None)
        else:
            logger.warning("all providers failed for %s", address)
        return None

    async def get_batch(self, addresses: Sequence[str]) -> list[MarketReading]:
        """Fetch *addresses* in concurrent waves, one address per provider per wave."""

        results: list[MarketReading] = []
        wave = max(1, len(self.providers))
        for start in range(0, len(addresses), wave):
            if start:
                await self._sleep(self.batch_pause)
            group = addresses[start : start + wave]
            outcomes = await asyncio.gather(
                *(self.get_full_info(addr) for addr in group), return_exceptions=True
            )
            for addr, outcome in zip(group, outcomes):
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    logger.error("batch lookup for %s raised %r", addr, outcome)
                    continue
                if outcome is not None:
                    results.append(outcome)
        return results

    async def get_recent_listings(self, window_hours: float) -> list[ListedToken]:
        sources = [p for p in self.providers if p.supports_listings]
        if not sources:
            return []
        outcomes = await asyncio.gather(
            *(p.recent_listings(window_hours) for p in sources), return_exceptions=True
        )
        cutoff = self._clock() - datetime.timedelta(hours=float(window_hours))
        merged: list[ListedToken] = []
        seen: set[str] = set()
        for provider, outcome in zip(sources, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.warning("recent listings from %s failed: %s", provider.name, outcome)
                continue
            for token in outcome:
                if not token.address or token.address in seen:
                    continue
                if token.listed_at is not None and token.listed_at < cutoff:
                    continue
                seen.add(token.address)
                merged.append(token)
        return merged

    async def get_holder_count(self, address: str) -> int | None:
        for provider in self._fallback:
            try:
                count = await provider.holder_count(address)
            except ProviderError as exc:
                logger.warning("holder count from %s failed for %s: %s", provider.name, address, exc)
                continue
            if count:
                return count
        return None


__all__ = [
    "DEFAULT_ROTATION",
    "DEFAULT_FALLBACK",
    "DEFAULT_BASIC_ORDER",
    "SourceAggregator",
]
