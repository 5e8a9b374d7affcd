"""
Tests for the HTTP API (server.py, routes/).

Tests cover:
- API key protection
- Auth flow endpoints and error mapping
- Engine start gating on a ready flow
- Strategy config CRUD
- Trade history
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from conftest import ACCOUNT_ID, MARKET_ID
import routes.deps as deps
from auth_flow import AuthFlowContext, AuthFlowService, AuthFlowState
from balance_service import BalanceService
from errors import NoWalletConnected
from market_service import MarketService
from models import Session, Trade, TradingAccount
from order_service import OrderService
from server import app
from strategy_config import MarketMakingConfig
from strategy_manager import StrategyManager
from trade_ledger import TradeLedger
from trading_engine import TradingEngine

API_KEY = "test-api-key"
HEADERS = {"X-API-Key": API_KEY}
OWNER = "0x" + "ab" * 20


@pytest.fixture
def auth_flow():
    flow = MagicMock(spec=AuthFlowService)
    flow.get_state = MagicMock(return_value=AuthFlowContext())
    flow.start_flow = AsyncMock()
    flow.accept_terms = AsyncMock()
    flow.assign_invitation_code = AsyncMock()
    return flow


@pytest.fixture
def engine():
    engine = MagicMock(spec=TradingEngine)
    engine.start = AsyncMock()
    engine.get_status = MagicMock(return_value={"is_running": False})
    return engine


@pytest.fixture
def markets(market):
    service = MagicMock(spec=MarketService)
    service.fetch_markets = AsyncMock(return_value=[market])
    return service


@pytest.fixture
def client(store, clock, auth_flow, engine, markets, wallets):
    manager = StrategyManager(
        store, markets, MagicMock(spec=BalanceService), MagicMock(spec=OrderService), clock,
    )
    components = {
        "store": store,
        "wallets": wallets,
        "accounts": MagicMock(),
        "markets": markets,
        "balances": MagicMock(spec=BalanceService),
        "sessions": MagicMock(),
        "auth_flow": auth_flow,
        "strategy_manager": manager,
        "trade_ledger": TradeLedger(store),
        "engine": engine,
    }
    saved = dict(deps._state)
    for key, value in components.items():
        deps.set_state(key, value)
    with patch("routes.deps.API_KEY", API_KEY):
        yield TestClient(app)
    deps._state.clear()
    deps._state.update(saved)


def ready_context():
    return AuthFlowContext(
        state=AuthFlowState.READY,
        trading_account=TradingAccount(id=ACCOUNT_ID, owner_address=OWNER),
        session_id="0xsession",
    )


class TestBasics:
    """Tests for root endpoints and API key checks."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_protected_endpoint_requires_key(self, client):
        assert client.post("/api/auth/start").status_code == 403
        assert client.post("/api/auth/start", headers={"X-API-Key": "wrong"}).status_code == 403

    def test_missing_component_is_503(self, client):
        deps.set_state("engine", None)
        assert client.get("/api/engine/status").status_code == 503


class TestAuthEndpoints:
    """Tests for /api/auth."""

    def test_context(self, client):
        response = client.get("/api/auth/context")
        assert response.json()["state"] == "idle"

    def test_wallet(self, client, owner_wallet):
        data = client.get("/api/auth/wallet").json()
        assert data["connected"] is True
        assert data["address"] == owner_wallet.address
        assert data["type"] == "evm"

    def test_start(self, client, auth_flow):
        response = client.post("/api/auth/start", headers=HEADERS)
        assert response.status_code == 200
        auth_flow.start_flow.assert_awaited_once()

    def test_start_without_wallet_maps_to_409(self, client, auth_flow):
        auth_flow.start_flow = AsyncMock(side_effect=NoWalletConnected())
        response = client.post("/api/auth/start", headers=HEADERS)
        assert response.status_code == 409
        assert response.json()["error"] == "NO_WALLET_CONNECTED"

    def test_invitation_code_is_trimmed(self, client, auth_flow):
        client.post("/api/auth/invitation", json={"code": " ABC "}, headers=HEADERS)
        auth_flow.assign_invitation_code.assert_awaited_once_with("ABC")

    def test_empty_invitation_code_rejected(self, client):
        response = client.post("/api/auth/invitation", json={"code": ""}, headers=HEADERS)
        assert response.status_code == 422

    def test_disconnect(self, client, engine, auth_flow, wallets):
        response = client.post("/api/auth/disconnect", headers=HEADERS)
        assert response.json() == {"disconnected": True}
        engine.stop.assert_called_once()
        auth_flow.reset.assert_called_once()
        assert wallets.get_connected_wallet() is None

    def test_clear_sessions(self, client, engine, auth_flow, store):
        store.put_session(Session(
            id="0x" + "5e" * 32, trade_account_id=ACCOUNT_ID, owner_address=OWNER,
            contract_ids=["0xc1"], expiry=2**62, created_at=0,
        ))
        response = client.post("/api/auth/sessions/clear", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["state"] == "idle"
        assert store.get_sessions_by_owner(OWNER) == []
        engine.stop.assert_called_once()
        auth_flow.reset.assert_called_once()

    def test_clear_sessions_requires_key(self, client):
        assert client.post("/api/auth/sessions/clear").status_code == 403


class TestEngineEndpoints:
    """Tests for /api/engine."""

    def test_start_requires_ready_flow(self, client, engine):
        response = client.post("/api/engine/start", headers=HEADERS)
        assert response.status_code == 409
        engine.start.assert_not_awaited()

    def test_start_initializes_from_context(self, client, engine, auth_flow):
        auth_flow.get_state = MagicMock(return_value=ready_context())
        response = client.post("/api/engine/start", headers=HEADERS)
        assert response.status_code == 200
        engine.initialize.assert_called_once_with(OWNER, ACCOUNT_ID)
        engine.start.assert_awaited_once()

    def test_stop(self, client, engine):
        assert client.post("/api/engine/stop", headers=HEADERS).status_code == 200
        engine.stop.assert_called_once()


class TestStrategyEndpoints:
    """Tests for /api/strategies."""

    def test_list_strategies(self, client):
        types = [s["type"] for s in client.get("/api/strategies").json()["strategies"]]
        assert "marketMaking" in types and "balanceThreshold" in types

    def test_defaults(self, client):
        data = client.get("/api/strategies/defaults/marketMaking", params={"market_id": MARKET_ID}).json()
        assert data["market_id"] == MARKET_ID
        assert data["type"] == "marketMaking"

    def test_unknown_default_is_404(self, client):
        assert client.get("/api/strategies/defaults/sniper").status_code == 404

    def test_save_get_toggle_delete(self, client):
        body = {"config": MarketMakingConfig().to_dict(), "is_active": True}
        response = client.put(f"/api/strategies/configs/{MARKET_ID}", json=body, headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["market_id"] == MARKET_ID

        assert client.get(f"/api/strategies/configs/{MARKET_ID}").json()["is_active"] is True

        response = client.post(f"/api/strategies/configs/{MARKET_ID}/active",
                               json={"is_active": False}, headers=HEADERS)
        assert response.json() == {"market_id": MARKET_ID, "is_active": False}
        assert client.get("/api/strategies/configs", params={"active_only": True}).json()["configs"] == []

        assert client.delete(f"/api/strategies/configs/{MARKET_ID}", headers=HEADERS).status_code == 200
        assert client.get(f"/api/strategies/configs/{MARKET_ID}").status_code == 404

    def test_invalid_config_is_400(self, client):
        body = {"config": {"type": "arbitrage"}}
        response = client.put(f"/api/strategies/configs/{MARKET_ID}", json=body, headers=HEADERS)
        assert response.status_code == 400


class TestDataEndpoints:
    """Tests for markets and trades."""

    def test_markets(self, client):
        markets = client.get("/api/markets").json()["markets"]
        assert markets[0]["market_id"] == MARKET_ID

    def test_trades_and_stats(self, client, store):
        TradeLedger(store).add_trade(Trade(
            timestamp=1, market_id=MARKET_ID, order_id="0xo1", side="Buy",
            price="1500000", quantity="1000000000", success=True, value_usd=1.5,
        ))
        trades = client.get("/api/trades").json()["trades"]
        assert trades[0]["order_id"] == "0xo1"
        assert client.get("/api/trades/stats").json()["successful"] == 1

    def test_balances_require_ready_flow(self, client):
        assert client.get("/api/balances", headers=HEADERS).status_code == 409
