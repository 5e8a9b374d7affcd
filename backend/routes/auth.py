"""
Auth flow endpoints: read the context and drive its transitions.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from user_storage import clear_all_session_storage, clear_user_storage
from .deps import (
    get_accounts,
    get_auth_flow,
    get_engine,
    get_sessions,
    get_store,
    get_wallets,
    verify_api_key,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class InvitationRequest(BaseModel):
    code: str = Field(min_length=1)


@router.get("/context")
async def get_context():
    """Current auth flow context"""
    return get_auth_flow().get_state().to_dict()


@router.get("/wallet")
async def get_wallet():
    wallet = get_wallets().get_connected_wallet()
    return {
        "connected": wallet is not None,
        "address": wallet.address if wallet else None,
        "type": ("fuel" if wallet.is_fuel else "evm") if wallet else None,
    }


@router.post("/start", dependencies=[Depends(verify_api_key)])
async def start_flow():
    auth_flow = get_auth_flow()
    await auth_flow.start_flow()
    return auth_flow.get_state().to_dict()


@router.post("/accept-terms", dependencies=[Depends(verify_api_key)])
async def accept_terms():
    auth_flow = get_auth_flow()
    await auth_flow.accept_terms()
    return auth_flow.get_state().to_dict()


@router.post("/invitation", dependencies=[Depends(verify_api_key)])
async def assign_invitation(request: InvitationRequest):
    auth_flow = get_auth_flow()
    await auth_flow.assign_invitation_code(request.code.strip())
    return auth_flow.get_state().to_dict()


@router.post("/reset", dependencies=[Depends(verify_api_key)])
async def reset_flow():
    auth_flow = get_auth_flow()
    auth_flow.reset()
    return auth_flow.get_state().to_dict()


@router.post("/disconnect", dependencies=[Depends(verify_api_key)])
async def disconnect_wallet():
    """Stop trading, drop the wallet and in-memory user data"""
    get_engine().stop()
    previous = get_wallets().disconnect()
    clear_user_storage(get_sessions(), get_accounts())
    get_auth_flow().reset()
    logger.info(f"[Auth] Wallet disconnected: {previous.address if previous else None}")
    return {"disconnected": previous is not None}


@router.post("/sessions/clear", dependencies=[Depends(verify_api_key)])
async def clear_sessions():
    """Stop trading and delete every stored session and session key"""
    get_engine().stop()
    clear_all_session_storage(get_sessions(), get_store())
    auth_flow = get_auth_flow()
    auth_flow.reset()
    return auth_flow.get_state().to_dict()
