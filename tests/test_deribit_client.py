"""Tests for the Deribit client: payload validation and error mapping."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import aiohttp
import pytest

from hedgebot.models.position import OptionKind
from hedgebot.services.deribit_client import (
    DeribitClient,
    VenueError,
    VenueResponseError,
    VenueTimeoutError,
    build_instrument_name,
    expiry_from_timestamp,
    format_strike,
)


def _ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _instrument(name, expiry_ms, strike, option_type="put", **extra):
    return {
        "instrument_name": name,
        "expiration_timestamp": expiry_ms,
        "strike": strike,
        "option_type": option_type,
        "is_active": True,
        "kind": "option",
        **extra,
    }


class FakeResponse:
    def __init__(self, status=200, payload=None, json_error=None):
        self.status = status
        self._payload = payload
        self._json_error = json_error

    async def json(self, content_type=None):
        if self._json_error:
            raise self._json_error
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    closed = False

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        if self.error:
            raise self.error
        return self.response


def _client(response=None, error=None) -> DeribitClient:
    return DeribitClient(base_url="https://test.deribit.com/api/v2", session=FakeSession(response, error))


# ---------------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------------

def test_instrument_name_formatting():
    assert build_instrument_name("btc", "27dec24", 45000.0, OptionKind.PUT) == "BTC-27DEC24-45000-P"
    assert build_instrument_name("ETH", "5JAN24", 2500, "Call") == "ETH-5JAN24-2500-C"


def test_format_strike_keeps_fractions():
    assert format_strike(45000.0) == "45000"
    assert format_strike(0.5) == "0.5"


def test_expiry_from_timestamp_is_utc():
    assert expiry_from_timestamp(_ms(2024, 12, 27, 8, 0)) == "27DEC24"
    assert expiry_from_timestamp(_ms(2024, 1, 5, 8, 0)) == "5JAN24"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_instruments_maps_payload():
    client = _client()
    client._get = AsyncMock(return_value={"result": [
        _instrument("BTC-27DEC24-45000-P", _ms(2024, 12, 27, 8), 45000),
        _instrument("BTC-27DEC24-45000-C", _ms(2024, 12, 27, 8), 45000, option_type="call"),
    ]})

    instruments = await client.list_instruments("btc")

    client._get.assert_awaited_once_with(
        "/public/get_instruments", {"currency": "BTC", "kind": "option", "expired": "false"}
    )
    assert [i.name for i in instruments] == ["BTC-27DEC24-45000-P", "BTC-27DEC24-45000-C"]
    assert instruments[0].expiry == "27DEC24"
    assert instruments[0].option_kind is OptionKind.PUT
    assert instruments[1].option_kind is OptionKind.CALL


@pytest.mark.asyncio
async def test_list_expiries_in_expiry_order():
    client = _client()
    client._get = AsyncMock(return_value={"result": [
        _instrument("BTC-27DEC24-45000-P", _ms(2024, 12, 27, 8), 45000),
        _instrument("BTC-5JAN24-45000-P", _ms(2024, 1, 5, 8), 45000),
        _instrument("BTC-5JAN24-46000-P", _ms(2024, 1, 5, 8), 46000),
    ]})
    assert await client.list_expiries("BTC") == ["5JAN24", "27DEC24"]


@pytest.mark.asyncio
async def test_list_strikes_for_expiry():
    client = _client()
    client._get = AsyncMock(return_value={"result": [
        _instrument("BTC-5JAN24-46000-P", _ms(2024, 1, 5, 8), 46000),
        _instrument("BTC-5JAN24-44000-P", _ms(2024, 1, 5, 8), 44000),
        _instrument("BTC-5JAN24-44000-C", _ms(2024, 1, 5, 8), 44000, option_type="call"),
        _instrument("BTC-12JAN24-50000-P", _ms(2024, 1, 12, 8), 50000),
    ]})
    assert await client.list_strikes("BTC", "5jan24") == [44000, 46000]
    assert await client.list_strikes("BTC", "9FEB24") == []


@pytest.mark.asyncio
async def test_instrument_schema_mismatch_is_response_error():
    client = _client()
    client._get = AsyncMock(return_value={"result": [{"instrument_name": "BTC-X", "strike": "abc"}]})
    with pytest.raises(VenueResponseError):
        await client.list_instruments("BTC")


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_spot_price_reads_perpetual():
    client = _client()
    client._get = AsyncMock(return_value={"result": {"instrument_name": "BTC-PERPETUAL", "last_price": 42000.5}})
    assert await client.spot_price("BTC") == 42000.5
    client._get.assert_awaited_once_with("/public/ticker", {"instrument_name": "BTC-PERPETUAL"})


@pytest.mark.asyncio
async def test_spot_price_missing_is_error():
    client = _client()
    client._get = AsyncMock(return_value={"result": {"instrument_name": "BTC-PERPETUAL", "last_price": None}})
    with pytest.raises(VenueResponseError):
        await client.spot_price("BTC")


@pytest.mark.asyncio
async def test_ask_price_missing_is_zero():
    client = _client()
    client._get = AsyncMock(return_value={"result": {"instrument_name": "BTC-5JAN24-44000-P", "best_ask_price": None}})
    assert await client.ask_price("BTC-5JAN24-44000-P") == 0.0


@pytest.mark.asyncio
async def test_option_price_usd_multiplies_by_spot():
    client = _client()
    client._get = AsyncMock(side_effect=[
        {"result": {"instrument_name": "BTC-5JAN24-44000-P", "best_ask_price": 0.01}},
        {"result": {"instrument_name": "BTC-PERPETUAL", "last_price": 40000}},
    ])
    assert await client.option_price_usd("BTC", "BTC-5JAN24-44000-P") == pytest.approx(400.0)


@pytest.mark.asyncio
async def test_option_price_usd_unpriceable_skips_spot():
    client = _client()
    client._get = AsyncMock(return_value={"result": {"instrument_name": "BTC-5JAN24-44000-P", "best_ask_price": 0}})
    assert await client.option_price_usd("BTC", "BTC-5JAN24-44000-P") == 0.0
    assert client._get.await_count == 1


# ---------------------------------------------------------------------------
# Transport error mapping
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_returns_envelope():
    client = _client(FakeResponse(payload={"jsonrpc": "2.0", "result": []}))
    payload = await client._get("/public/get_instruments", {"currency": "BTC"})
    assert payload["result"] == []
    assert client._session.calls[0][0] == "https://test.deribit.com/api/v2/public/get_instruments"


@pytest.mark.asyncio
async def test_error_envelope_raises():
    client = _client(FakeResponse(status=400, payload={"error": {"code": 10009, "message": "bad_request"}}))
    with pytest.raises(VenueError, match="10009 bad_request"):
        await client._get("/public/ticker", {"instrument_name": "BTC-NOPE"})


@pytest.mark.asyncio
async def test_http_error_status_raises():
    client = _client(FakeResponse(status=503, payload={}))
    with pytest.raises(VenueError, match="HTTP 503"):
        await client._get("/public/ticker", {})


@pytest.mark.asyncio
async def test_non_json_raises_response_error():
    client = _client(FakeResponse(json_error=ValueError("not json")))
    with pytest.raises(VenueResponseError):
        await client._get("/public/ticker", {})


@pytest.mark.asyncio
async def test_timeout_maps_to_timeout_error():
    client = _client(error=asyncio.TimeoutError())
    with pytest.raises(VenueTimeoutError):
        await client._get("/public/ticker", {})


@pytest.mark.asyncio
async def test_connection_error_maps_to_venue_error():
    client = _client(error=aiohttp.ClientConnectionError("refused"))
    with pytest.raises(VenueError):
        await client._get("/public/ticker", {})


@pytest.mark.asyncio
async def test_close_leaves_injected_session_alone():
    session = FakeSession()
    session.close = AsyncMock()
    client = DeribitClient(session=session)
    await client.close()
    session.close.assert_not_awaited()
