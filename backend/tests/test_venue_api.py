"""
Tests for the venue REST client (venue_api.py).
"""
import asyncio
import json
import pytest

import aiohttp

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import ACCOUNT_ID, MARKET_ID
from config import O2API
from errors import NetworkError, VenueRejected
from venue_api import VenueApiClient, parse_markets

EVM_OWNER = "0x" + "ab" * 20


class FakeResponse:
    def __init__(self, status, payload):
        self.status = status
        self._text = payload if isinstance(payload, str) else json.dumps(payload)

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


class FakeSession:
    """Records requests and replays canned responses"""

    def __init__(self, status=200, payload=None, error=None):
        self.status = status
        self.payload = payload if payload is not None else {}
        self.error = error
        self.closed = False
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return FakeResponse(self.status, self.payload)


def client_with(session):
    return VenueApiClient("https://api.example/", session=session)


class TestRequests:
    """Tests for request shaping."""

    @pytest.mark.asyncio
    async def test_create_trading_account_pads_evm_owner(self):
        session = FakeSession(payload={"trade_account_id": ACCOUNT_ID})
        account_id = await client_with(session).create_trading_account(EVM_OWNER)

        method, url, kwargs = session.calls[0]
        owner_id = "0x" + "00" * 12 + "ab" * 20
        assert account_id == ACCOUNT_ID
        assert (method, url) == ("POST", f"https://api.example{O2API.ACCOUNTS}")
        assert kwargs["json"] == {"identity": {"Address": owner_id}}
        assert kwargs["headers"] == {O2API.OWNER_HEADER: owner_id}

    @pytest.mark.asyncio
    async def test_get_nonce(self):
        session = FakeSession(payload={"trade_account": {"nonce": "17"}})
        assert await client_with(session).get_nonce(ACCOUNT_ID, EVM_OWNER) == 17

    @pytest.mark.asyncio
    async def test_ticker_list_response(self):
        session = FakeSession(payload=[{"last": "1500000", "bid": "1499000"}])
        ticker = await client_with(session).get_ticker(MARKET_ID)
        assert ticker.last_price == "1500000"
        assert ticker.bid == "1499000"

    @pytest.mark.asyncio
    async def test_empty_ticker(self):
        assert await client_with(FakeSession(payload=[])).get_ticker(MARKET_ID) is None

    @pytest.mark.asyncio
    async def test_orders_parsed(self):
        session = FakeSession(payload={"orders": [
            {"order_id": "0xo1", "side": "buy", "price": "1", "quantity": "2", "quantity_fill": None},
        ]})
        orders = await client_with(session).get_orders(EVM_OWNER, market_id=MARKET_ID, is_open=True)

        assert orders[0].order_id == "0xo1"
        assert orders[0].quantity_fill == "0"
        params = session.calls[0][2]["params"]
        assert params["is_open"] == "true"
        assert params["market_id"] == MARKET_ID

    @pytest.mark.asyncio
    async def test_invite_code_uses_put(self):
        session = FakeSession(payload={"success": True})
        await client_with(session).assign_invite_code(EVM_OWNER, ACCOUNT_ID, "ABC")

        method, url, kwargs = session.calls[0]
        assert method == "PUT"
        assert url.endswith(O2API.ASSIGN_CODE)
        assert kwargs["json"]["invitation_code"] == "ABC"


class TestErrors:
    """Tests for error mapping."""

    @pytest.mark.asyncio
    async def test_non_2xx_is_venue_rejected(self):
        session = FakeSession(status=400, payload={"message": "Invalid nonce"})
        with pytest.raises(VenueRejected) as exc_info:
            await client_with(session).get_markets()
        assert exc_info.value.status == 400
        assert exc_info.value.message == "Invalid nonce"

    @pytest.mark.asyncio
    async def test_plain_text_error_body(self):
        session = FakeSession(status=502, payload="Bad Gateway")
        with pytest.raises(VenueRejected) as exc_info:
            await client_with(session).get_markets()
        assert exc_info.value.message == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        session = FakeSession(error=asyncio.TimeoutError())
        with pytest.raises(NetworkError):
            await client_with(session).get_markets()

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(NetworkError):
            await client_with(session).get_markets()


def test_parse_markets():
    markets = parse_markets({"markets": [{
        "market_id": MARKET_ID,
        "contract_id": "0xc1",
        "base": {"asset": "0xb", "symbol": "FUEL", "decimals": 9, "max_precision": 3},
        "quote": {"asset": "0xq", "symbol": "USDC", "decimals": 6},
    }]})
    assert markets[0].pair == "FUEL/USDC"
    assert markets[0].base.max_precision == 3
    assert markets[0].quote.max_precision == 6
