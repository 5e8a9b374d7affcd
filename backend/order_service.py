"""
Order Service - session-signed action batches.

Each batch is signed by the active session key over
u64(nonce) || u64(call count) || canonical(actions), submitted to
/session/actions, and the trading account nonce is advanced by one.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from errors import NoActiveSession, VenueRejected
from models import Market, OrderSide, OrderType
from session_keys import SessionKeyManager
from trading_accounts import TradingAccountService
from venue_api import VenueApiClient
from wallet import normalize_address

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    order_id: str
    tx_id: Optional[str] = None


def canonical_actions(actions: list[dict]) -> bytes:
    return json.dumps(actions, sort_keys=True, separators=(",", ":")).encode("utf-8")


class OrderService:
    def __init__(self, api: VenueApiClient, sessions: SessionKeyManager, accounts: TradingAccountService):
        self.api = api
        self.sessions = sessions
        self.accounts = accounts

    async def _submit(self, market: Market, market_actions: list[dict], owner_address: str) -> dict:
        owner = normalize_address(owner_address)
        session = self.sessions.get_active_session(owner)
        if session is None:
            raise NoActiveSession(f"No active session for {owner}")

        # Venue nonce is authoritative; local copy is only a cache
        nonce = await self.api.get_nonce(session.trade_account_id, owner)

        actions = [{"market_id": market.market_id, "actions": market_actions}]
        signature = self.sessions.sign(session.id, nonce, canonical_actions(actions), len(market_actions))

        request = {
            "actions": actions,
            "signature": {"Secp256k1": "0x" + signature.hex()},
            "nonce": str(nonce),
            "trade_account_id": session.trade_account_id,
            "session_id": {"Address": session.id},
            "variable_outputs": 0,
            "collect_orders": True,
        }
        response = await self.api.submit_actions(request, owner)
        self.accounts.update_nonce(session.trade_account_id, nonce + 1)
        return response or {}

    async def place_order(
        self,
        market: Market,
        side: OrderSide,
        order_type: OrderType,
        price: str,
        quantity: str,
        owner_address: str,
    ) -> OrderResult:
        """Settle this book's unlocked balance and create one order in the same batch"""
        session = self.sessions.get_active_session(owner_address)
        trade_account_id = session.trade_account_id if session else None

        market_actions = [
            {"SettleBalance": {"to": {"ContractId": trade_account_id}}},
            {"CreateOrder": {
                "side": OrderSide(side).value,
                "order_type": OrderType(order_type).value,
                "price": str(price),
                "quantity": str(quantity),
            }},
        ]
        response = await self._submit(market, market_actions, owner_address)

        orders = response.get("orders") or []
        if not orders:
            raise VenueRejected("Order batch accepted but no order was created", status=200, payload=response)

        order_id = str(orders[0].get("order_id", ""))
        logger.info(f"[Orders] {market.pair} {OrderSide(side).value} {quantity} @ {price} -> {order_id}")
        return OrderResult(order_id=order_id, tx_id=response.get("tx_id"))

    async def cancel_order(self, market: Market, order_id: str, owner_address: str) -> OrderResult:
        response = await self._submit(
            market, [{"CancelOrder": {"order_id": order_id}}], owner_address,
        )
        logger.info(f"[Orders] Cancelled {order_id} on {market.pair}")
        return OrderResult(order_id=order_id, tx_id=response.get("tx_id"))
