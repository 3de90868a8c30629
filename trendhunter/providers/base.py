"""Common contract and request plumbing for market-data providers."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Mapping

import aiohttp

from ..http import HostCircuitOpenError, HTTPError, fetch_json
from ..types import ListedToken, MarketReading, TokenInfo

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


class ProviderError(Exception):
    """Base class for provider failures."""

    def __init__(self, provider: str, message: str, *, status: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class ProviderUnavailable(ProviderError):
    """Network failure, timeout, auth problem or an unexpected status."""


class RateLimited(ProviderUnavailable):
    """The provider answered HTTP 429."""


class ProviderClient(ABC):
    """One external market-data backend.

    Every lookup returns ``None`` when the provider has nothing for the token
    and raises :class:`ProviderUnavailable` when it could not be asked.
    """

    name: str = ""
    supports_listings: bool = False
    requires_key: bool = False
    default_base_url: str = ""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 10.0,
        retry_delay: float = 2.0,
        session: aiohttp.ClientSession | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = float(timeout)
        self.retry_delay = max(0.0, float(retry_delay))
        self._session = session
        self._sleep: SleepFn = sleep or asyncio.sleep

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) or not self.requires_key

    def __repr__(self) -> str:
        state = "enabled" if self.enabled else "disabled"
        return f"<{type(self).__name__} {self.name} {state}>"

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Perform one call with a single delayed retry on 429 or timeout.

        A 404 is reported as ``None`` (no data) rather than as a failure.
        """

        last_error: ProviderUnavailable | None = None
        for attempt in range(2):
            try:
                return await fetch_json(
                    url,
                    method,
                    params=params,
                    headers=self._headers(),
                    json=json,
                    timeout=self.timeout,
                    session=self._session,
                )
            except HTTPError as exc:
                if exc.status == 404:
                    return None
                if exc.status != 429:
                    raise ProviderUnavailable(self.name, str(exc), status=exc.status) from exc
                last_error = RateLimited(self.name, "rate limited (HTTP 429)", status=429)
            except asyncio.TimeoutError as exc:
                last_error = ProviderUnavailable(self.name, f"timed out after {self.timeout}s")
                last_error.__cause__ = exc
            except (aiohttp.ClientError, HostCircuitOpenError, ValueError) as exc:
                raise ProviderUnavailable(self.name, str(exc) or type(exc).__name__) from exc
            if attempt == 0:
                logger.info(
                    "%s: %s, retrying in %.1fs", self.name, last_error, self.retry_delay
                )
                await self._sleep(self.retry_delay)
        assert last_error is not None
        raise last_error

    async def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self._request("GET", f"{self.base_url}{path}", params=params)

    async def basic_info(self, address: str) -> TokenInfo | None:
        reading = await self.full_info(address)
        if reading is None or not (reading.name or reading.symbol):
            return None
        return TokenInfo(
            address=address,
            name=reading.name,
            symbol=reading.symbol,
            decimals=reading.decimals,
            icon=reading.icon,
            source=reading.source,
        )

    @abstractmethod
    async def full_info(self, address: str) -> MarketReading | None:
        """Return a full market reading for *address*."""

    async def recent_listings(self, window_hours: float) -> list[ListedToken]:
        return []

    async def holder_count(self, address: str) -> int | None:
        return None


def as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


__all__ = [
    "ProviderError",
    "ProviderUnavailable",
    "RateLimited",
    "ProviderClient",
    "as_mapping",
    "clean_text",
]
