import asyncio
import datetime
import logging
import time

import orjson
import pytest

from conftest import FakeResponse, FakeSession
from trendhunter.aggregator import SourceAggregator
from trendhunter.cache import ResponseCache
from trendhunter.providers import PROVIDER_CLASSES, build_provider
from trendhunter.providers import birdeye as birdeye_module
from trendhunter.providers.base import ProviderUnavailable, RateLimited
from trendhunter.providers.birdeye import BirdeyeProvider
from trendhunter.providers.dexscreener import DexScreenerProvider
from trendhunter.providers.helius import HeliusProvider
from trendhunter.providers.solscan import SolscanProvider

MINT = "So1aLa111111111111111111111111111111111111"


def _pair(base, liquidity, *, price="0.01", created_ms=None, chain="solana", name="Solala"):
    pair = {
        "chainId": chain,
        "pairAddress": f"pair-{base}-{liquidity}",
        "baseToken": {"address": base, "name": name, "symbol": "SOLA"},
        "quoteToken": {"address": "So11111111111111111111111111111111111111112"},
        "priceUsd": price,
        "priceChange": {"h24": 12.5},
        "marketCap": 250000,
        "fdv": 300000,
        "volume": {"h24": 42000},
        "liquidity": {"usd": liquidity},
        "txns": {"h24": {"buys": 30, "sells": 12}},
        "info": {"imageUrl": "https://img/sola.png"},
    }
    if created_ms is not None:
        pair["pairCreatedAt"] = created_ms
    return pair


@pytest.mark.asyncio
async def test_dexscreener_picks_deepest_pair():
    session = FakeSession(
        {
            "/latest/dex/tokens/": {
                "pairs": [
                    _pair(MINT, 1000, price="0.01"),
                    _pair(MINT, 90000, price="0.02"),
                    _pair("other", 500000, price="9"),
                ]
            }
        }
    )
    provider = DexScreenerProvider(session=session)
    result = await provider.full_info(MINT)
    assert result.source == "dexscreener"
    assert result.price == pytest.approx(0.02)
    assert result.liquidity == 90000
    assert result.tx_count_24h == 42
    assert result.icon == "https://img/sola.png"
    assert result.name == "Solala"


@pytest.mark.asyncio
async def test_dexscreener_without_pairs_returns_none():
    provider = DexScreenerProvider(session=FakeSession({"/latest/dex/tokens/": {"pairs": None}}))
    assert await provider.full_info(MINT) is None


@pytest.mark.asyncio
async def test_dexscreener_recent_listings_window():
    now_ms = int(time.time() * 1000)
    session = FakeSession(
        {
            "/latest/dex/search": {
                "pairs": [
                    _pair("fresh", 100, created_ms=now_ms - 60_000),
                    _pair("fresh", 200, created_ms=now_ms - 30_000),
                    _pair("old", 100, created_ms=now_ms - 10 * 3600 * 1000),
                    _pair("evm", 100, created_ms=now_ms, chain="ethereum"),
                    _pair("undated", 100),
                ]
            }
        }
    )
    provider = DexScreenerProvider(session=session)
    listings = await provider.recent_listings(6)
    assert [t.address for t in listings] == ["fresh"]
    assert listings[0].listed_at is not None


@pytest.mark.asyncio
async def test_http_404_means_no_data():
    provider = DexScreenerProvider(session=FakeSession())
    assert await provider.full_info(MINT) is None


@pytest.mark.asyncio
async def test_rate_limit_retried_once_then_raised(no_sleep):
    session = FakeSession({"/latest/dex/tokens/": FakeResponse(429, {"error": "slow down"})})
    provider = DexScreenerProvider(session=session, sleep=no_sleep, retry_delay=2)
    with pytest.raises(RateLimited):
        await provider.full_info(MINT)
    assert len(session.requests) == 2
    assert no_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_rate_limit_recovers_on_retry(no_sleep):
    session = FakeSession(
        {"/latest/dex/tokens/": [FakeResponse(429, {}), {"pairs": [_pair(MINT, 10)]}]}
    )
    provider = DexScreenerProvider(session=session, sleep=no_sleep)
    result = await provider.full_info(MINT)
    assert result is not None
    assert no_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_timeout_retried_once(no_sleep):
    session = FakeSession({"/latest/dex/tokens/": asyncio.TimeoutError()})
    provider = DexScreenerProvider(session=session, sleep=no_sleep, retry_delay=0.5)
    with pytest.raises(ProviderUnavailable):
        await provider.full_info(MINT)
    assert len(session.requests) == 2
    assert no_sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_server_error_is_not_retried(no_sleep):
    session = FakeSession({"/latest/dex/tokens/": FakeResponse(500, {"error": "boom"})})
    provider = DexScreenerProvider(session=session, sleep=no_sleep)
    with pytest.raises(ProviderUnavailable) as info:
        await provider.full_info(MINT)
    assert not isinstance(info.value, RateLimited)
    assert len(session.requests) == 1
    assert no_sleep.delays == []


@pytest.mark.asyncio
async def test_birdeye_overview_and_headers():
    session = FakeSession(
        {
            "/defi/token_overview": {
                "success": True,
                "data": {
                    "name": "Pepe King",
                    "symbol": "PEPEK",
                    "decimals": 6,
                    "logoURI": "https://img/pepek.png",
                    "price": 0.004,
                    "priceChange24hPercent": -3.5,
                    "mc": 120000,
                    "v24hUSD": 5000,
                    "liquidity": 8000,
                    "holder": 77,
                    "trade24h": 310,
                },
            }
        }
    )
    provider = BirdeyeProvider(api_key="secret", session=session)
    result = await provider.full_info(MINT)
    assert result.source == "birdeye"
    assert result.market_cap == 120000
    assert result.holder_count == 77
    assert result.tx_count_24h == 310
    assert result.decimals == 6
    headers = session.requests[0]["headers"]
    assert headers["X-API-KEY"] == "secret"
    assert headers["x-chain"] == "solana"
    assert session.requests[0]["params"] == {"address": MINT}


@pytest.mark.asyncio
async def test_birdeye_falls_back_to_price_endpoint():
    session = FakeSession(
        {
            "/defi/token_overview": {"success": False, "message": "plan"},
            "/defi/price": {"success": True, "data": {"value": 0.5, "liquidity": 1000}},
        }
    )
    provider = BirdeyeProvider(api_key="secret", session=session)
    result = await provider.full_info(MINT)
    assert result.source == "birdeye_price"
    assert result.price == 0.5
    assert result.liquidity == 1000


@pytest.mark.asyncio
async def test_birdeye_overview_forbidden_uses_price_endpoint():
    session = FakeSession(
        {
            "/defi/token_overview": FakeResponse(403, {"success": False, "message": "forbidden"}),
            "/defi/price": {"success": True, "data": {"value": 0.25, "priceChange24h": 1.5}},
        }
    )
    provider = BirdeyeProvider(api_key="secret", session=session)
    result = await provider.full_info(MINT)
    assert result.source == "birdeye_price"
    assert result.price == 0.25
    assert result.price_change_24h == 1.5
    assert await provider.holder_count(MINT) is None


@pytest.mark.asyncio
async def test_birdeye_overview_server_error_is_not_masked():
    session = FakeSession(
        {
            "/defi/token_overview": FakeResponse(500, {}),
            "/defi/price": {"success": True, "data": {"value": 0.25}},
        }
    )
    provider = BirdeyeProvider(api_key="secret", session=session)
    with pytest.raises(ProviderUnavailable) as info:
        await provider.full_info(MINT)
    assert info.value.status == 500
    assert all("/defi/price" not in r["url"] for r in session.requests)


@pytest.mark.asyncio
async def test_birdeye_new_listings_filtered_by_window():
    now = int(time.time())
    session = FakeSession(
        {
            "/defi/v2/tokens/new_listing": {
                "success": True,
                "data": {
                    "items": [
                        {"address": "new1", "name": "New", "symbol": "NEW", "listing_time": now - 120},
                        {"address": "old1", "name": "Old", "symbol": "OLD", "listing_time": now - 8 * 3600},
                        {"name": "no address", "listing_time": now},
                    ]
                },
            }
        }
    )
    provider = BirdeyeProvider(api_key="secret", session=session)
    listings = await provider.recent_listings(6)
    assert [t.address for t in listings] == ["new1"]
    params = session.requests[0]["params"]
    assert params["sort_by"] == "listing_time"
    assert params["limit"] == 50


@pytest.mark.asyncio
async def test_birdeye_listing_on_window_edge_is_kept(monkeypatch):
    now = datetime.datetime(2024, 5, 1, 12, 0, 0)
    monkeypatch.setattr(birdeye_module, "utcnow", lambda: now)
    edge = int((now - datetime.timedelta(hours=6)).replace(tzinfo=datetime.timezone.utc).timestamp())
    session = FakeSession(
        {
            "/defi/v2/tokens/new_listing": {
                "success": True,
                "data": {
                    "items": [
                        {"address": "edge", "name": "Edge", "listing_time": edge},
                        {"address": "late", "name": "Late", "listing_time": edge - 1},
                    ]
                },
            }
        }
    )
    provider = BirdeyeProvider(api_key="secret", session=session)
    listings = await provider.recent_listings(6)
    assert [t.address for t in listings] == ["edge"]


def test_birdeye_without_key_is_disabled():
    assert not BirdeyeProvider().enabled
    assert DexScreenerProvider().enabled


def _helius_routes(asset=None, accounts=None, error=None):
    def _answer(method, url, kwargs):
        body = orjson.loads(kwargs["data"])
        if error is not None:
            return FakeResponse(200, {"jsonrpc": "2.0", "id": body["id"], "error": error})
        result = asset if body["method"] == "getAsset" else accounts
        return FakeResponse(200, {"jsonrpc": "2.0", "id": body["id"], "result": result})

    return FakeSession({"helius-rpc.com": _answer})


@pytest.mark.asyncio
async def test_helius_asset_metadata_and_market_cap():
    asset = {
        "content": {
            "metadata": {"name": "索拉拉", "symbol": "SLL"},
            "files": [{"uri": "https://img/sll.png"}],
        },
        "token_info": {
            "decimals": 6,
            "supply": 1_000_000_000_000,
            "price_info": {"price_per_token": 0.002},
        },
    }
    session = _helius_routes(asset=asset)
    provider = HeliusProvider(api_key="k", session=session)
    result = await provider.full_info(MINT)
    assert result.name == "索拉拉"
    assert result.icon == "https://img/sll.png"
    assert result.market_cap == pytest.approx(2000.0)
    info = await provider.basic_info(MINT)
    assert info.symbol == "SLL"
    assert info.decimals == 6
    assert "api-key=k" in session.requests[0]["url"]


@pytest.mark.asyncio
async def test_helius_holder_total():
    provider = HeliusProvider(api_key="k", session=_helius_routes(accounts={"total": 1234}))
    assert await provider.holder_count(MINT) == 1234


@pytest.mark.asyncio
async def test_helius_unknown_asset_is_none():
    session = _helius_routes(error={"code": -32000, "message": "Asset Not Found"})
    provider = HeliusProvider(api_key="k", session=session)
    assert await provider.full_info(MINT) is None


@pytest.mark.asyncio
async def test_helius_rpc_error_raises():
    session = _helius_routes(error={"code": -32603, "message": "internal"})
    provider = HeliusProvider(api_key="k", session=session)
    with pytest.raises(ProviderUnavailable):
        await provider.full_info(MINT)


@pytest.mark.asyncio
async def test_helius_failure_log_hides_api_key(caplog, no_sleep):
    session = FakeSession({"helius-rpc.com": FakeResponse(500, {"error": "boom"})})
    provider = HeliusProvider(api_key="SUPERSECRETKEY", session=session, sleep=no_sleep)
    agg = SourceAggregator([provider], cache=ResponseCache(ttl=0))
    with caplog.at_level(logging.DEBUG):
        assert await agg.get_full_info(MINT) is None
    assert "SUPERSECRETKEY" in session.requests[0]["url"]
    assert "helius failed" in caplog.text
    assert "api-key=REDACTED" in caplog.text
    assert "SUPERSECRETKEY" not in caplog.text


@pytest.mark.asyncio
async def test_solscan_merges_meta_and_price():
    session = FakeSession(
        {
            "/token/meta": {
                "success": True,
                "data": {
                    "name": "Doge Inu",
                    "symbol": "DINU",
                    "decimals": 9,
                    "icon": "https://img/dinu.png",
                    "market_cap": 54000,
                    "volume_24h": 900,
                    "holder": 64,
                },
            },
            "/token/price": {
                "success": True,
                "data": [{"price": 0.0001}, {"price": 0.0002, "price_change_24h": 4.0}],
            },
        }
    )
    provider = SolscanProvider(api_key="tok", session=session)
    result = await provider.full_info(MINT)
    assert result.price == pytest.approx(0.0002)
    assert result.price_change_24h == 4.0
    assert result.holder_count == 64
    assert all(req["headers"]["token"] == "tok" for req in session.requests)


def test_build_provider_by_name():
    provider = build_provider("birdeye", api_key="x")
    assert isinstance(provider, BirdeyeProvider)
    assert set(PROVIDER_CLASSES) == {"birdeye", "dexscreener", "helius", "solscan"}
    with pytest.raises(ValueError):
        build_provider("coingecko")


@pytest.mark.asyncio
async def test_solscan_meta_failure_waits_for_price_call():
    finished = []

    class SlowPrice(FakeResponse):
        async def read(self) -> bytes:
            await asyncio.sleep(0.01)
            finished.append("price")
            return await super().read()

    session = FakeSession(
        {
            "/token/meta": FakeResponse(500, {}),
            "/token/price": SlowPrice(200, {"success": True, "data": [{"price": 0.1}]}),
        }
    )
    provider = SolscanProvider(api_key="tok", session=session)
    with pytest.raises(ProviderUnavailable) as info:
        await provider.full_info(MINT)
    assert info.value.status == 500
    assert finished == ["price"]
