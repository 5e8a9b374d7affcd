"""
Pytest fixtures for the test suite.
"""
import pytest
import sys
import os
from unittest.mock import MagicMock, AsyncMock

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from durable_store import DurableStore
from models import AssetInfo, Market, Ticker
from scheduler import Clock
from venue_api import VenueApiClient
from wallet import EvmOwnerWallet, WalletConnection


OWNER_KEY = "0x" + "11" * 32
ACCOUNT_ID = "0x" + "ac" * 32
MARKET_ID = "0x" + "01" * 32
CONTRACT_ID = "0x" + "c1" * 32
BASE_ASSET = "0x" + "ba" * 32
QUOTE_ASSET = "0x" + "aa" * 32


class FakeClock(Clock):
    """Hand-stepped clock in milliseconds."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def now_ms(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_market(market_id: str = MARKET_ID, contract_id: str = CONTRACT_ID,
                base_symbol: str = "FUEL", quote_symbol: str = "USDC") -> Market:
    return Market(
        market_id=market_id,
        contract_id=contract_id,
        base=AssetInfo(asset=BASE_ASSET, symbol=base_symbol, decimals=9, max_precision=9),
        quote=AssetInfo(asset=QUOTE_ASSET, symbol=quote_symbol, decimals=6, max_precision=6),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite store per test."""
    return DurableStore(str(tmp_path / "o2_agent_test.db"))


@pytest.fixture
def market():
    return make_market()


@pytest.fixture
def ticker():
    return Ticker(market_id=MARKET_ID, last_price="1500000")


@pytest.fixture
def mock_api():
    """Venue client with every call mocked out."""
    api = MagicMock(spec=VenueApiClient)
    api.create_trading_account = AsyncMock(return_value=ACCOUNT_ID)
    api.get_account = AsyncMock(return_value={"trade_account": {"nonce": "0"}})
    api.get_nonce = AsyncMock(return_value=0)
    api.create_session = AsyncMock(return_value={"success": True})
    api.submit_actions = AsyncMock(return_value={"tx_id": "0xtx", "orders": [{"order_id": "0xorder1"}]})
    api.get_markets = AsyncMock(return_value={"markets": [], "books_whitelist_id": None})
    api.get_ticker = AsyncMock(return_value=None)
    api.get_balance = AsyncMock(return_value={})
    api.get_orders = AsyncMock(return_value=[])
    api.verify_access_queue = AsyncMock(return_value={"success": False})
    api.assign_invite_code = AsyncMock(return_value={"success": False})
    api.close = AsyncMock()
    return api


@pytest.fixture
def owner_wallet():
    return EvmOwnerWallet(OWNER_KEY)


@pytest.fixture
def wallets(owner_wallet):
    connection = WalletConnection()
    connection.connect(owner_wallet)
    return connection
