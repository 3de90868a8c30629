"""Shared aiohttp plumbing for the provider adapters.

One ``ClientSession`` per event loop, JSON decoding with orjson, and a small
per-host guard: a semaphore bounding concurrent calls and a breaker that
stops calling a host for a while after repeated failures.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import weakref
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Mapping
from urllib.parse import urlparse

import aiohttp
import orjson

from . import __version__
from .util import redact_url

logger = logging.getLogger(__name__)


class HTTPError(Exception):
    """Non-success HTTP status; ``status`` keeps the code for callers."""

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(message or f"HTTP {status}")
        self.status = int(status)


class HostCircuitOpenError(RuntimeError):
    """The host failed too often recently and is being left alone."""


def dumps(obj: object) -> bytes:
    return orjson.dumps(obj)


def loads(data: str | bytes) -> Any:
    if isinstance(data, str):
        data = data.encode()
    return orjson.loads(data)


_SESSIONS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, aiohttp.ClientSession]" = (
    weakref.WeakKeyDictionary()
)


async def get_session() -> aiohttp.ClientSession:
    """Session bound to the running loop, created on first use."""
    loop = asyncio.get_running_loop()
    session = _SESSIONS.get(loop)
    if session is not None and not session.closed:
        return session
    try:
        total = float(os.getenv("HTTP_TIMEOUT_SEC") or 15.0)
    except ValueError:
        total = 15.0
    session = aiohttp.ClientSession(
        headers={"User-Agent": os.getenv("HTTP_USER_AGENT") or f"trendhunter/{__version__}"},
        timeout=aiohttp.ClientTimeout(total=total),
        json_serialize=lambda obj: dumps(obj).decode(),
    )
    _SESSIONS[loop] = session
    return session


async def close_session() -> None:
    sessions = list(_SESSIONS.values())
    _SESSIONS.clear()
    for session in sessions:
        if not session.closed:
            await session.close()


# ---------------------------------------------------------------------------
# Per-host guards
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class HostLimits:
    concurrency: int = 4
    failure_threshold: int = 5
    open_seconds: float = 30.0


# Provider hosts; anything else gets the defaults.
PROVIDER_HOST_LIMITS: dict[str, HostLimits] = {
    "api.dexscreener.com": HostLimits(concurrency=8, open_seconds=20.0),
    "public-api.birdeye.so": HostLimits(concurrency=6),
    "pro-api.solscan.io": HostLimits(concurrency=4),
    "mainnet.helius-rpc.com": HostLimits(concurrency=4, open_seconds=20.0),
}


def limits_for(host: str) -> HostLimits:
    host = host.lower()
    for known, limits in PROVIDER_HOST_LIMITS.items():
        if host == known or host.endswith("." + known):
            return limits
    return HostLimits()


class _HostGuard:
    """Concurrency bound plus failure breaker for one host."""

    def __init__(
        self, host: str, limits: HostLimits, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.host = host
        self.limits = limits
        self.slots = asyncio.Semaphore(max(1, limits.concurrency))
        self._clock = clock
        self._recent: deque[float] = deque()
        self._open_until = 0.0

    @property
    def is_open(self) -> bool:
        return self._clock() < self._open_until

    def check(self) -> None:
        if self.is_open:
            raise HostCircuitOpenError(
                f"{self.host} paused for {self._open_until - self._clock():.1f}s after repeated failures"
            )

    def succeeded(self) -> None:
        self._recent.clear()
        self._open_until = 0.0

    def failed(self) -> None:
        now = self._clock()
        self._recent.append(now)
        while self._recent and self._recent[0] < now - self.limits.open_seconds:
            self._recent.popleft()
        if len(self._recent) >= self.limits.failure_threshold:
            self._open_until = now + self.limits.open_seconds
            self._recent.clear()
            logger.warning(
                "Pausing requests to %s for %.0fs after %d failures",
                self.host,
                self.limits.open_seconds,
                self.limits.failure_threshold,
            )


_GUARDS: dict[str, _HostGuard] = {}


def _guard_for(host: str) -> _HostGuard:
    guard = _GUARDS.get(host)
    if guard is None:
        guard = _GUARDS[host] = _HostGuard(host, limits_for(host))
    return guard


def reset_host_state() -> None:
    """Forget every host guard (between event loops and in tests)."""
    _GUARDS.clear()


@asynccontextmanager
async def host_request(url: str) -> AsyncIterator[HostLimits]:
    """Hold a concurrency slot for *url*'s host and feed the breaker.

    HTTP 429 leaves the breaker alone: the host is up, just busy, and the
    caller backs off for it already.
    """

    host = urlparse(url).hostname
    if not host:
        yield HostLimits()
        return
    guard = _guard_for(host)
    guard.check()
    async with guard.slots:
        try:
            yield guard.limits
        except HTTPError as exc:
            if exc.status != 429:
                guard.failed()
            raise
        except Exception:
            guard.failed()
            raise
        guard.succeeded()


async def fetch_json(
    url: str,
    method: str = "GET",
    *,
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    json: Any = None,
    timeout: float | None = None,
    session: aiohttp.ClientSession | None = None,
) -> Any:
    """Make one request and decode the JSON body (``None`` when empty).

    Statuses of 400 and above raise :class:`HTTPError`. Retrying is up to
    the caller.
    """

    session = session if session is not None else await get_session()
    options: dict[str, Any] = {}
    if params:
        options["params"] = dict(params)
    request_headers = dict(headers or {})
    if json is not None:
        options["data"] = dumps(json)
        request_headers.setdefault("Content-Type", "application/json")
    if request_headers:
        options["headers"] = request_headers
    if timeout is not None:
        options["timeout"] = aiohttp.ClientTimeout(total=float(timeout))

    async with host_request(url):
        async with session.request(method, url, **options) as resp:
            if resp.status >= 400:
                body = await resp.text()
                raise HTTPError(
                    resp.status, f"{method} {redact_url(url)} answered {resp.status}: {body[:300]}"
                )
            payload = await resp.read()
    return loads(payload) if payload else None


__all__ = [
    "HTTPError",
    "HostCircuitOpenError",
    "HostLimits",
    "PROVIDER_HOST_LIMITS",
    "close_session",
    "dumps",
    "fetch_json",
    "get_session",
    "host_request",
    "limits_for",
    "loads",
    "reset_host_state",
]
