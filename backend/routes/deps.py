"""
Shared dependencies for route modules.

This module provides access to the agent components and shared utilities.
"""

import os
import secrets

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

# =============================================================================
# SECURITY: API Key Authentication
# =============================================================================

ENV = os.getenv("ENV", "development").lower()
API_KEY = os.getenv("API_KEY")

if not API_KEY:
    if ENV == "production":
        import sys
        print("[Security] FATAL: API_KEY environment variable not set.")
        sys.exit(1)
    else:
        API_KEY = secrets.token_urlsafe(32)
        print(f"[Security] Generated temporary key: {API_KEY}")

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints"""
    if not api_key or api_key != API_KEY:
        raise HTTPException(
            status_code=403,
            detail="Invalid or missing API key. Include X-API-Key header."
        )
    return api_key


# =============================================================================
# COMPONENT ACCESSORS
# =============================================================================

# These will be set by server.py at startup
_state = {
    "config": None,
    "store": None,
    "wallets": None,
    "accounts": None,
    "markets": None,
    "balances": None,
    "sessions": None,
    "auth_flow": None,
    "strategy_manager": None,
    "trade_ledger": None,
    "engine": None,
}


def set_state(key: str, value):
    """Set a component (called from server.py)"""
    _state[key] = value


def _require(key: str):
    value = _state.get(key)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{key} not initialized")
    return value


def get_config():
    return _state["config"]


def get_store():
    return _require("store")


def get_wallets():
    return _require("wallets")


def get_accounts():
    return _require("accounts")


def get_markets():
    return _require("markets")


def get_balances():
    return _require("balances")


def get_sessions():
    return _require("sessions")


def get_auth_flow():
    return _require("auth_flow")


def get_strategy_manager():
    return _require("strategy_manager")


def get_trade_ledger():
    return _require("trade_ledger")


def get_engine():
    return _require("engine")
