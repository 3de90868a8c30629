import datetime
from typing import Any, Callable, Dict, List

import orjson
import pytest
import pytest_asyncio

from trendhunter.event_bus import EventBus
from trendhunter.http import reset_host_state
from trendhunter.logging_utils import reset_warn_once_cache
from trendhunter.providers.base import ProviderClient
from trendhunter.store import TrendStore
from trendhunter.types import ListedToken, MarketReading, TokenInfo

START = datetime.datetime(2024, 5, 1, 12, 0, 0)


class FakeClock:
    """Mutable naive-UTC clock."""

    def __init__(self, now: datetime.datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float = 0.0, **kwargs: float) -> datetime.datetime:
        self.now += datetime.timedelta(seconds=seconds, **kwargs)
        return self.now


class FakeProvider(ProviderClient):
    """Provider answering from a script.

    ``script`` maps an address to a reading, ``None`` or an exception
    instance (raised). A callable value is invoked with the address.
    """

    def __init__(
        self,
        name: str,
        script: Dict[str, Any] | None = None,
        *,
        default: Any = None,
        listings: List[ListedToken] | Exception | None = None,
        basic: Dict[str, Any] | None = None,
        holders: Dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__()
        self.name = name
        self.script = dict(script or {})
        self.default = default
        self.listings = listings
        self.supports_listings = listings is not None
        self.basic = basic
        self.holders = dict(holders or {})
        self._enabled = enabled
        self.calls: List[str] = []
        self.basic_calls: List[str] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _answer(self, table: Dict[str, Any], address: str, default: Any = None) -> Any:
        value = table.get(address, default)
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(address)
        return value

    async def full_info(self, address: str) -> MarketReading | None:
        self.calls.append(address)
        return self._answer(self.script, address, self.default)

    async def basic_info(self, address: str) -> TokenInfo | None:
        self.basic_calls.append(address)
        if self.basic is None:
            return await super().basic_info(address)
        return self._answer(self.basic, address)

    async def recent_listings(self, window_hours: float) -> List[ListedToken]:
        if isinstance(self.listings, BaseException):
            raise self.listings
        return list(self.listings or [])

    async def holder_count(self, address: str) -> int | None:
        return self._answer(self.holders, address)


def reading(address: str, source: str = "fake", **fields: Any) -> MarketReading:
    defaults = {"name": f"Token {address}", "symbol": address.upper()[:4], "price": 1.0}
    defaults.update(fields)
    return MarketReading(address=address, source=source, **defaults)


class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None) -> None:
        self.status = status
        self._body = b"" if payload is None else orjson.dumps(payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self) -> str:
        return self._body.decode()

    async def read(self) -> bytes:
        return self._body


class FakeSession:
    """Stands in for ``aiohttp.ClientSession``; routes by URL substring."""

    def __init__(self, routes: Dict[str, Any] | None = None) -> None:
        self.routes = dict(routes or {})
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        for fragment, answer in self.routes.items():
            if fragment in url:
                if isinstance(answer, list):
                    answer = answer.pop(0) if len(answer) > 1 else answer[0]
                if isinstance(answer, BaseException):
                    raise answer
                if isinstance(answer, FakeResponse):
                    return answer
                if callable(answer):
                    return answer(method, url, kwargs)
                return FakeResponse(200, answer)
        return FakeResponse(404, {"error": "not found"})


@pytest.fixture(autouse=True)
def _reset_module_state():
    reset_host_state()
    reset_warn_once_cache()
    yield
    reset_host_state()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest_asyncio.fixture
async def store(tmp_path):
    st = TrendStore(f"sqlite:///{tmp_path / 'trend.db'}")
    await st.ready()
    yield st
    await st.close()


@pytest.fixture
def no_sleep() -> Callable[[float], Any]:
    delays: List[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep
