"""Market-data provider adapters."""

from __future__ import annotations

from typing import Any, Dict, Type

from .base import ProviderClient, ProviderError, ProviderUnavailable, RateLimited
from .birdeye import BirdeyeProvider
from .dexscreener import DexScreenerProvider
from .helius import HeliusProvider
from .solscan import SolscanProvider

PROVIDER_CLASSES: Dict[str, Type[ProviderClient]] = {
    cls.name: cls
    for cls in (BirdeyeProvider, DexScreenerProvider, HeliusProvider, SolscanProvider)
}


def build_provider(name: str, **kwargs: Any) -> ProviderClient:
    """Instantiate the provider registered under *name*."""

    try:
        cls = PROVIDER_CLASSES[name.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown provider {name!r}") from None
    return cls(**kwargs)


__all__ = [
    "PROVIDER_CLASSES",
    "build_provider",
    "ProviderClient",
    "ProviderError",
    "ProviderUnavailable",
    "RateLimited",
    "BirdeyeProvider",
    "DexScreenerProvider",
    "HeliusProvider",
    "SolscanProvider",
]
