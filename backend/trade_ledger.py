"""
Trade Ledger - persistent history of every order placement attempt.

Backed by the durable store's trades collection. Trades are immutable
except for fill-derived fields attached later by order id.
"""

import logging
from typing import Optional

from durable_store import DurableStore
from models import Trade


logger = logging.getLogger("trade_ledger")


class TradeLedger:
    def __init__(self, store: DurableStore):
        self.store = store

    # -------------------------------------------------------------------------
    # WRITE OPERATIONS
    # -------------------------------------------------------------------------

    def add_trade(self, trade: Trade) -> int:
        """
        Record an order placement attempt.

        Returns:
            The store-assigned trade id
        """
        trade.id = self.store.add_trade(trade)
        status = "OK" if trade.success else f"FAILED ({trade.error})"
        logger.info(
            f"Recorded trade: #{trade.id} | {trade.market_id[:10]} | {trade.side} "
            f"{trade.quantity} @ {trade.price} | {status}"
        )
        return trade.id

    def update_trade_by_order_id(self, order_id: str, updates: dict) -> int:
        """Attach fill-derived fields (value_usd, fee_usd) to a recorded trade"""
        if not order_id:
            return 0
        count = self.store.update_trades_by_order_id(order_id, updates)
        if count:
            logger.debug(f"Updated {count} trade(s) for order {order_id}: {updates}")
        return count

    # -------------------------------------------------------------------------
    # QUERY OPERATIONS
    # -------------------------------------------------------------------------

    def get_trades(self, market_id: Optional[str] = None, limit: int = 100) -> list[Trade]:
        if market_id:
            return self.store.query_trades("market_id = ?", (market_id,), limit=limit)
        return self.store.query_trades(limit=limit)

    def get_trades_by_session(self, session_id: str) -> list[Trade]:
        return self.store.query_trades("session_id = ?", (session_id,))

    def get_recent_trades(self, since_ms: int, limit: int = 100) -> list[Trade]:
        return self.store.query_trades("timestamp >= ?", (since_ms,), limit=limit)

    def get_trade_by_order_id(self, order_id: str) -> Optional[Trade]:
        trades = self.store.query_trades("order_id = ?", (order_id,), limit=1)
        return trades[0] if trades else None

    def has_order(self, order_id: str) -> bool:
        return self.get_trade_by_order_id(order_id) is not None

    def get_trade_stats(self, market_id: Optional[str] = None) -> dict:
        stats = self.store.trade_stats(market_id)
        total = stats["total"]
        stats["success_rate"] = round(stats["successful"] / total * 100, 1) if total else 0.0
        return stats
