"""Tests for obd_loxone.relay -- redirect/auth handling and fetch guard."""

from __future__ import annotations

import asyncio
import base64
from typing import List

import httpx
import pytest
import respx

from obd_loxone.config import ServiceSettings
from obd_loxone.relay import UpstreamRelay, parse_gauge_payload, run_relay_loop

_CLOUD_URL = "http://dns.loxonecloud.com/504F94A00000/jdev/sps/io/spare-tank/state"
_MINISERVER_URL = "https://192-168-1-77.504f94a00000.dyndns.loxonecloud.com:443/jdev/sps/io/spare-tank/state"
_BODY = {
    "LL": {
        "control": "dev/sps/io/spare-tank/state",
        "value": "31.0 Liter",
        "Code": "200",
    }
}
_EXPECTED_AUTH = "Basic " + base64.b64encode(b"test:Test123").decode("ascii")


def _make_settings(**overrides) -> ServiceSettings:
    defaults = dict(
        miniserver_url=_CLOUD_URL,
        miniserver_username="test",
        miniserver_password="Test123",
        relay_timeout_seconds=1.0,
        preferences_path="unused.json",
    )
    defaults.update(overrides)
    return ServiceSettings(**defaults)


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


class TestParseGaugePayload:
    def test_liter_suffix(self) -> None:
        assert parse_gauge_payload(_BODY) == 31.0

    def test_bare_number(self) -> None:
        assert parse_gauge_payload({"LL": {"value": "12.5"}}) == 12.5

    def test_missing_ll(self) -> None:
        assert parse_gauge_payload({"value": "31.0 Liter"}) is None

    def test_missing_value(self) -> None:
        assert parse_gauge_payload({"LL": {"Code": "200"}}) is None

    def test_non_numeric_value(self) -> None:
        assert parse_gauge_payload({"LL": {"value": "off"}}) is None

    def test_not_an_object(self) -> None:
        assert parse_gauge_payload(["31.0 Liter"]) is None


# ---------------------------------------------------------------------------
# Fetch cycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@respx.mock
async def test_redirect_then_authenticated_request() -> None:
    first = respx.get(_CLOUD_URL).mock(
        return_value=httpx.Response(307, headers={"Location": _MINISERVER_URL})
    )
    second = respx.get(_MINISERVER_URL).mock(
        return_value=httpx.Response(200, json=_BODY)
    )
    received: List[float] = []
    relay = UpstreamRelay(_make_settings(), received.append)
    await relay.start()
    try:
        value = await relay.fetch_spare_tank_value()
    finally:
        await relay.close()

    assert value == 31.0
    assert received == [31.0]
    assert first.call_count == 1
    assert second.call_count == 1
    assert "authorization" not in first.calls.last.request.headers
    assert second.calls.last.request.headers["authorization"] == _EXPECTED_AUTH


@pytest.mark.asyncio
@respx.mock
async def test_relative_redirect_is_resolved() -> None:
    respx.get(_CLOUD_URL).mock(
        return_value=httpx.Response(302, headers={"Location": "/redirected/state"})
    )
    target = respx.get("http://dns.loxonecloud.com/redirected/state").mock(
        return_value=httpx.Response(200, json=_BODY)
    )
    relay = UpstreamRelay(_make_settings(), lambda v: None)
    await relay.start()
    try:
        assert await relay.fetch_spare_tank_value() == 31.0
    finally:
        await relay.close()
    assert target.calls.last.request.headers["authorization"] == _EXPECTED_AUTH


@pytest.mark.asyncio
@respx.mock
async def test_direct_response_sends_no_credentials() -> None:
    route = respx.get(_CLOUD_URL).mock(return_value=httpx.Response(200, json=_BODY))
    received: List[float] = []
    relay = UpstreamRelay(_make_settings(), received.append)
    await relay.start()
    try:
        assert await relay.fetch_spare_tank_value() == 31.0
    finally:
        await relay.close()
    assert received == [31.0]
    assert "authorization" not in route.calls.last.request.headers


@pytest.mark.asyncio
@respx.mock
async def test_malformed_payload_keeps_previous_value() -> None:
    respx.get(_CLOUD_URL).mock(
        return_value=httpx.Response(200, json={"LL": {"value": "n/a"}})
    )
    received: List[float] = []
    relay = UpstreamRelay(_make_settings(), received.append)
    await relay.start()
    try:
        assert await relay.fetch_spare_tank_value() is None
    finally:
        await relay.close()
    assert received == []
    assert relay.is_fetching is False


@pytest.mark.asyncio
@respx.mock
async def test_invalid_json_is_ignored() -> None:
    respx.get(_CLOUD_URL).mock(return_value=httpx.Response(200, text="<html>"))
    received: List[float] = []
    relay = UpstreamRelay(_make_settings(), received.append)
    await relay.start()
    try:
        assert await relay.fetch_spare_tank_value() is None
    finally:
        await relay.close()
    assert received == []


@pytest.mark.asyncio
@respx.mock
async def test_auth_rejected_on_miniserver() -> None:
    respx.get(_CLOUD_URL).mock(
        return_value=httpx.Response(307, headers={"Location": _MINISERVER_URL})
    )
    respx.get(_MINISERVER_URL).mock(return_value=httpx.Response(401))
    received: List[float] = []
    relay = UpstreamRelay(_make_settings(), received.append)
    await relay.start()
    try:
        assert await relay.fetch_spare_tank_value() is None
    finally:
        await relay.close()
    assert received == []


@pytest.mark.asyncio
@respx.mock
async def test_network_error_is_logged_not_raised() -> None:
    respx.get(_CLOUD_URL).mock(side_effect=httpx.ConnectError("no route"))
    received: List[float] = []
    relay = UpstreamRelay(_make_settings(), received.append)
    await relay.start()
    try:
        assert await relay.fetch_spare_tank_value() is None
        assert relay.is_fetching is False
    finally:
        await relay.close()
    assert received == []


@pytest.mark.asyncio
async def test_fetch_before_start_raises() -> None:
    relay = UpstreamRelay(_make_settings(), lambda v: None)
    with pytest.raises(RuntimeError, match="start"):
        await relay.fetch_spare_tank_value()
    assert relay.is_fetching is False


@pytest.mark.asyncio
async def test_url_override() -> None:
    relay = UpstreamRelay(_make_settings(), lambda v: None, url="http://saved.example/state")
    assert relay.url == "http://saved.example/state"


# ---------------------------------------------------------------------------
# Overlap guard
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_overlapping_fetch_is_skipped() -> None:
    """A second fetch while the first is outstanding does nothing."""
    gate = asyncio.Event()
    seen_auth: List[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "dns.loxonecloud.com":
            return httpx.Response(307, headers={"Location": _MINISERVER_URL})
        seen_auth.append(request.headers.get("authorization", ""))
        await gate.wait()
        return httpx.Response(200, json=_BODY)

    received: List[float] = []
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    relay = UpstreamRelay(_make_settings(), received.append, client=client)
    await relay.start()
    try:
        first = asyncio.create_task(relay.fetch_spare_tank_value())
        while not seen_auth:
            await asyncio.sleep(0)
        assert relay.is_fetching is True

        assert await relay.fetch_spare_tank_value() is None

        gate.set()
        assert await first == 31.0
    finally:
        await relay.close()
        await client.aclose()

    assert received == [31.0]
    assert seen_auth == [_EXPECTED_AUTH]


# ---------------------------------------------------------------------------
# Timer loop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@respx.mock
async def test_relay_loop_delivers_and_stops() -> None:
    respx.get(_CLOUD_URL).mock(
        return_value=httpx.Response(307, headers={"Location": _MINISERVER_URL})
    )
    respx.get(_MINISERVER_URL).mock(return_value=httpx.Response(200, json=_BODY))

    stop = asyncio.Event()
    received: List[float] = []

    def on_value(value: float) -> None:
        received.append(value)
        if len(received) >= 2:
            stop.set()

    relay = UpstreamRelay(_make_settings(), on_value)
    await relay.start()
    try:
        await asyncio.wait_for(run_relay_loop(relay, 0.01, stop), timeout=2.0)
    finally:
        await relay.close()

    assert received[:2] == [31.0, 31.0]
    assert relay.is_fetching is False


@pytest.mark.asyncio
@respx.mock
async def test_url_provider_is_read_on_each_fetch() -> None:
    saved = {"url": _CLOUD_URL}
    old = respx.get(_CLOUD_URL).mock(return_value=httpx.Response(200, json=_BODY))
    new_url = "http://dns.loxonecloud.com/504F94A11111/jdev/sps/io/spare-tank/state"
    new = respx.get(new_url).mock(
        return_value=httpx.Response(200, json={"LL": {"value": "12.0 Liter"}})
    )
    relay = UpstreamRelay(_make_settings(), lambda v: None, url_provider=lambda: saved["url"])
    await relay.start()
    try:
        assert await relay.fetch_spare_tank_value() == 31.0
        saved["url"] = new_url
        assert await relay.fetch_spare_tank_value() == 12.0
    finally:
        await relay.close()
    assert old.call_count == 1
    assert new.call_count == 1
