"""
Trading engine, strategy config, market and trade history endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from auth_flow import AuthFlowState
from strategy_config import StrategyType, config_from_dict
from .deps import (
    get_auth_flow,
    get_balances,
    get_engine,
    get_markets,
    get_strategy_manager,
    get_trade_ledger,
    verify_api_key,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["engine"])


class SaveConfigRequest(BaseModel):
    config: dict
    is_active: bool = True


class SetActiveRequest(BaseModel):
    is_active: bool


def _ready_context():
    context = get_auth_flow().get_state()
    if context.state != AuthFlowState.READY or context.trading_account is None:
        raise HTTPException(status_code=409, detail=f"Auth flow not ready (state: {context.state.value})")
    return context


# ============================================================================
# ENGINE
# ============================================================================

@router.get("/engine/status")
async def engine_status():
    return get_engine().get_status()


@router.post("/engine/start", dependencies=[Depends(verify_api_key)])
async def start_engine():
    context = _ready_context()
    engine = get_engine()
    engine.initialize(context.trading_account.owner_address, context.trading_account.id)
    await engine.start()
    return engine.get_status()


@router.post("/engine/stop", dependencies=[Depends(verify_api_key)])
async def stop_engine():
    engine = get_engine()
    engine.stop()
    return engine.get_status()


# ============================================================================
# STRATEGIES
# ============================================================================

@router.get("/strategies")
async def list_strategies():
    return {"strategies": get_strategy_manager().available_strategies()}


@router.get("/strategies/defaults/{strategy_type}")
async def default_strategy_config(strategy_type: str, market_id: str = ""):
    try:
        config = get_strategy_manager().get_default_config(StrategyType(strategy_type), market_id)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown strategy type: {strategy_type}")
    return config.to_dict()


@router.get("/strategies/configs")
async def list_configs(active_only: bool = False):
    manager = get_strategy_manager()
    records = manager.get_active_configs() if active_only else manager.list_configs()
    return {"configs": [r.to_dict() for r in records]}


@router.get("/strategies/configs/{market_id}")
async def get_config(market_id: str):
    record = get_strategy_manager().get_config(market_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No strategy config for market {market_id}")
    return record.to_dict()


@router.put("/strategies/configs/{market_id}", dependencies=[Depends(verify_api_key)])
async def save_config(market_id: str, request: SaveConfigRequest):
    try:
        config = config_from_dict(request.config)
    except (ValueError, TypeError, KeyError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid strategy config: {e}")
    record = get_strategy_manager().save_config(market_id, config, request.is_active)
    return record.to_dict()


@router.post("/strategies/configs/{market_id}/active", dependencies=[Depends(verify_api_key)])
async def set_config_active(market_id: str, request: SetActiveRequest):
    if not get_strategy_manager().set_active(market_id, request.is_active):
        raise HTTPException(status_code=404, detail=f"No strategy config for market {market_id}")
    return {"market_id": market_id, "is_active": request.is_active}


@router.delete("/strategies/configs/{market_id}", dependencies=[Depends(verify_api_key)])
async def delete_config(market_id: str):
    if not get_strategy_manager().delete_config(market_id):
        raise HTTPException(status_code=404, detail=f"No strategy config for market {market_id}")
    return {"deleted": market_id}


# ============================================================================
# MARKETS & BALANCES
# ============================================================================

@router.get("/markets")
async def list_markets(refresh: bool = False):
    markets = await get_markets().fetch_markets(force=refresh)
    return {"markets": [m.to_dict() for m in markets]}


@router.get("/balances", dependencies=[Depends(verify_api_key)])
async def list_balances():
    context = _ready_context()
    markets = await get_markets().fetch_markets()
    balances = await get_balances().get_all_balances(
        markets, context.trading_account.id, context.trading_account.owner_address,
    )
    return {"balances": balances}


# ============================================================================
# TRADES
# ============================================================================

@router.get("/trades")
async def list_trades(market_id: Optional[str] = None, limit: int = Query(default=100, ge=1, le=1000)):
    trades = get_trade_ledger().get_trades(market_id=market_id, limit=limit)
    return {"trades": [t.to_dict() for t in trades]}


@router.get("/trades/stats")
async def trade_stats(market_id: Optional[str] = None):
    return get_trade_ledger().get_trade_stats(market_id)
