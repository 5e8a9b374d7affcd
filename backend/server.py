#!/usr/bin/env python3
"""
HTTP + WebSocket server for the O2 trading agent.
Exposes the auth flow and trading engine, and streams their events.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional, Set

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from auth_flow import AuthFlowContext, AuthFlowService
from balance_service import BalanceService
from config import AgentConfig
from durable_store import DurableStore
from eligibility import EligibilityResolver
from errors import (
    AgentError,
    EmptyContractSet,
    InsufficientBalance,
    InvalidAddress,
    NetworkError,
    NoActiveSession,
    NoWalletConnected,
    SignatureDeclined,
    VenueRejected,
)
from fill_tracker import FillTracker
from market_service import MarketService
from order_service import OrderService
from routes import auth_router, engine_router
from routes.deps import set_state
from scheduler import Clock, Scheduler, SystemClock
from session_keys import SessionKeyManager
from strategy_manager import StrategyManager
from trade_ledger import TradeLedger
from trading_accounts import TradingAccountService
from trading_engine import TradingEngine, setup_logging
from user_storage import clear_user_storage_for_account_change
from venue_api import VenueApiClient
from wallet import WalletConnection, wallet_from_key
from whitelist import FuelWhitelistRegistry

logger = logging.getLogger(__name__)

# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="O2 Trading Agent API",
    description="Wallet auth flow, delegated sessions and scheduled strategy trading",
    version="1.0.0",
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(engine_router)

ERROR_STATUS = {
    NoWalletConnected: 409,
    NoActiveSession: 409,
    InvalidAddress: 400,
    EmptyContractSet: 400,
    InsufficientBalance: 400,
    SignatureDeclined: 403,
    VenueRejected: 502,
    NetworkError: 504,
}


@app.exception_handler(AgentError)
async def agent_error_handler(request: Request, exc: AgentError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content=exc.to_dict())


# ============================================================================
# GLOBAL STATE
# ============================================================================

agent_config: Optional[AgentConfig] = None
components: dict = {}

# WebSocket clients
ws_clients: Set[WebSocket] = set()


def build_components(config: AgentConfig, clock: Optional[Clock] = None) -> dict:
    """Construct and wire every agent component from one config"""
    clock = clock or SystemClock()
    store = DurableStore(config.db_path)
    api = VenueApiClient(config.api_url, timeout_sec=config.request_timeout_sec)
    wallets = WalletConnection()
    accounts = TradingAccountService(api, store, clock, trust_local_cache=config.trust_local_account_cache)
    markets = MarketService(api, clock)
    balances = BalanceService(api, clock)
    registry = FuelWhitelistRegistry(config.fuel_graphql_url, timeout_sec=config.request_timeout_sec)
    eligibility = EligibilityResolver(api, registry, invite_code=config.invite_code)
    sessions = SessionKeyManager(
        api, store, accounts, wallets, clock,
        chain_id=config.chain_id,
        session_expiry_ms=config.session_expiry_ms,
    )
    sessions.set_password(config.session_password)
    orders = OrderService(api, sessions, accounts)
    ledger = TradeLedger(store)
    fills = FillTracker(api, ledger, clock)
    strategy_manager = StrategyManager(store, markets, balances, orders, clock)
    auth_flow = AuthFlowService(
        wallets, accounts, markets, eligibility, sessions, store, clock,
        password=config.session_password,
    )
    engine = TradingEngine(
        strategy_manager, markets, fills, ledger,
        scheduler=Scheduler(clock), clock=clock, sessions=sessions,
    )
    return {
        "config": config,
        "api": api,
        "store": store,
        "wallets": wallets,
        "accounts": accounts,
        "markets": markets,
        "balances": balances,
        "eligibility": eligibility,
        "sessions": sessions,
        "orders": orders,
        "trade_ledger": ledger,
        "fills": fills,
        "strategy_manager": strategy_manager,
        "auth_flow": auth_flow,
        "engine": engine,
    }


def connect_owner_wallet(config: AgentConfig, parts: dict) -> None:
    """Connect the configured owner key; a different owner drops the previous one's data"""
    if not config.owner_private_key:
        return
    wallet = wallet_from_key(config.owner_private_key, config.owner_wallet_type)
    previous = parts["wallets"].connect(wallet)
    if previous is not None and previous.address != wallet.address:
        clear_user_storage_for_account_change(
            parts["sessions"], parts["accounts"], parts["store"], previous.address,
        )
        parts["fills"].reset()
        parts["auth_flow"].reset()


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================

@app.on_event("startup")
async def startup():
    """Build components and wire event broadcasting"""
    global agent_config, components

    agent_config = AgentConfig.from_env()
    setup_logging(agent_config.log_dir)
    components = build_components(agent_config)

    for key in ("config", "store", "wallets", "accounts", "markets", "balances",
                "sessions", "auth_flow", "strategy_manager", "trade_ledger", "engine"):
        set_state(key, components[key])

    components["auth_flow"].subscribe(
        lambda ctx: asyncio.create_task(broadcast({"type": "auth_context", "data": ctx.to_dict()}))
    )
    components["engine"].on_status(
        lambda message, status_type: asyncio.create_task(broadcast({
            "type": "engine_status",
            "data": {"message": message, "status": status_type, "timestamp": datetime.now().isoformat()},
        }))
    )
    components["engine"].on_trade_complete(
        lambda: asyncio.create_task(broadcast({"type": "trade_complete"}))
    )

    connect_owner_wallet(agent_config, components)
    logger.info(f"[Server] Started with config: {agent_config.to_dict()}")


@app.on_event("shutdown")
async def shutdown():
    """Stop trading and close the venue client"""
    if not components:
        return
    components["engine"].stop()
    await components["api"].close()
    logger.info("[Server] Shut down")


async def broadcast(message: dict):
    """Broadcast message to all connected WebSocket clients"""
    if not ws_clients:
        return

    disconnected = set()
    for ws in ws_clients:
        try:
            await ws.send_json(message)
        except Exception:
            disconnected.add(ws)

    for ws in disconnected:
        ws_clients.discard(ws)


# ============================================================================
# REST ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {"status": "ok", "timestamp": datetime.now().isoformat()}


@app.get("/health")
async def health():
    engine = components.get("engine")
    auth_flow = components.get("auth_flow")
    if engine is None or auth_flow is None:
        return {"status": "unhealthy", "reason": "components not initialized"}
    context: AuthFlowContext = auth_flow.get_state()
    return {
        "status": "degraded" if context.state.value == "error" else "healthy",
        "auth_state": context.state.value,
        "engine_running": engine.is_active(),
        "websocket_clients": len(ws_clients),
    }


@app.get("/api/config")
async def get_config():
    return agent_config.to_dict() if agent_config else {}


# ============================================================================
# WEBSOCKET
# ============================================================================

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    """
    WebSocket endpoint for real-time events.

    Clients receive:
    - auth_context: Full auth flow context after every change
    - engine_status: Engine status lines (info/success/error/warning)
    - trade_complete: A cycle placed orders
    """
    await ws.accept()
    ws_clients.add(ws)
    logger.info(f"[WS] Client connected. Total: {len(ws_clients)}")

    try:
        auth_flow = components.get("auth_flow")
        engine = components.get("engine")
        await ws.send_json({
            "type": "init",
            "auth_context": auth_flow.get_state().to_dict() if auth_flow else None,
            "engine": engine.get_status() if engine else None,
        })

        # Keep connection alive
        while True:
            try:
                data = await asyncio.wait_for(ws.receive_text(), timeout=30)
                msg = json.loads(data)

                if msg.get("type") == "ping":
                    await ws.send_json({"type": "pong"})

                elif msg.get("type") == "get_status" and engine:
                    await ws.send_json({"type": "engine_snapshot", "data": engine.get_status()})

            except asyncio.TimeoutError:
                # Send keepalive ping
                await ws.send_json({"type": "ping"})

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"[WS] Error: {e}")
    finally:
        ws_clients.discard(ws)
        logger.info(f"[WS] Client disconnected. Total: {len(ws_clients)}")


# ============================================================================
# MAIN
# ============================================================================

def main():
    """Run the server"""
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )


if __name__ == "__main__":
    main()
