import asyncio

import pytest

from conftest import FakeResponse, FakeSession
from trendhunter import http


@pytest.mark.asyncio
async def test_get_session_reused_within_loop():
    first = await http.get_session()
    second = await http.get_session()
    assert first is second
    await http.close_session()
    assert first.closed


@pytest.mark.asyncio
async def test_fetch_json_parses_body_and_sends_json():
    session = FakeSession({"example.test": {"ok": True}})
    result = await http.fetch_json(
        "https://example.test/rpc", "POST", json={"a": 1}, params={"q": "x"}, session=session
    )
    assert result == {"ok": True}
    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["params"] == {"q": "x"}
    assert request["headers"]["Content-Type"] == "application/json"
    assert http.loads(request["data"]) == {"a": 1}


@pytest.mark.asyncio
async def test_fetch_json_empty_body_is_none():
    session = FakeSession({"example.test": FakeResponse(200, None)})
    assert await http.fetch_json("https://example.test/x", session=session) is None


@pytest.mark.asyncio
async def test_fetch_json_raises_with_status():
    session = FakeSession({"example.test": FakeResponse(503, {"error": "down"})})
    with pytest.raises(http.HTTPError) as info:
        await http.fetch_json("https://example.test/x", session=session)
    assert info.value.status == 503


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    session = FakeSession({"api.dexscreener.com": FakeResponse(500, {})})
    url = "https://api.dexscreener.com/latest/dex/tokens/x"
    for _ in range(5):
        with pytest.raises(http.HTTPError):
            await http.fetch_json(url, session=session)
    with pytest.raises(http.HostCircuitOpenError):
        await http.fetch_json(url, session=session)
    assert len(session.requests) == 5


@pytest.mark.asyncio
async def test_rate_limits_do_not_open_circuit():
    session = FakeSession({"api.dexscreener.com": FakeResponse(429, {})})
    url = "https://api.dexscreener.com/latest/dex/tokens/x"
    for _ in range(6):
        with pytest.raises(http.HTTPError):
            await http.fetch_json(url, session=session)
    assert len(session.requests) == 6


@pytest.mark.asyncio
async def test_timeouts_surface_to_caller():
    session = FakeSession({"example.test": asyncio.TimeoutError()})
    with pytest.raises(asyncio.TimeoutError):
        await http.fetch_json("https://example.test/slow", session=session)


@pytest.mark.asyncio
async def test_error_message_redacts_secret_query_values():
    session = FakeSession({"example.test": FakeResponse(500, {})})
    with pytest.raises(http.HTTPError) as info:
        await http.fetch_json("https://example.test/?api-key=hunter2&cluster=main", "POST", session=session)
    message = str(info.value)
    assert "hunter2" not in message
    assert "api-key=REDACTED" in message
    assert "cluster=main" in message
