"""
Fill Tracker - detects order fills by polling and folds them into strategy state.

Filled quantity is tracked per order id. The first time an order is seen
it counts as a fill only if this agent placed it (it is in the trade
ledger); anything else is baselined so historic fills are not replayed.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from config import MAX_TRACKED_FILLS, MAX_TRACKED_ORDERS
from models import Market, Order
from scheduler import Clock, SystemClock
from strategy_config import FillRecord, StrategyConfig
from trade_ledger import TradeLedger
from venue_api import VenueApiClient

logger = logging.getLogger(__name__)


@dataclass
class FillEvent:
    order: Order
    previous_filled: int
    filled: int

    @property
    def delta(self) -> int:
        return self.filled - self.previous_filled


class FillTracker:
    def __init__(self, api: VenueApiClient, ledger: TradeLedger, clock: Optional[Clock] = None,
                 max_tracked: int = MAX_TRACKED_FILLS, max_orders: int = MAX_TRACKED_ORDERS):
        self.api = api
        self.ledger = ledger
        self.clock = clock or SystemClock()
        self.max_tracked = max_tracked
        self.max_orders = max_orders
        self._filled: dict[str, int] = {}  # order id -> last seen filled quantity (scaled)

    async def poll(self, market_id: str, owner_address: str) -> list[FillEvent]:
        """Fetch recent orders and return new fills since the last poll"""
        orders = await self.api.get_orders(owner_address, market_id=market_id, count=50)
        events = []
        for order in orders:
            if not order.order_id:
                continue
            filled = int(order.quantity_fill or 0)
            previous = self._filled.get(order.order_id)

            if previous is None:
                if not self.ledger.has_order(order.order_id):
                    self._remember(order.order_id, filled)
                    continue
                previous = 0

            if filled > previous:
                events.append(FillEvent(order=order, previous_filled=previous, filled=filled))
            self._remember(order.order_id, filled)

        if events:
            logger.info(f"[Fills] Detected {len(events)} fill(s) for market {market_id[:10]}")
        return events

    def _remember(self, order_id: str, filled: int) -> None:
        # Re-insert so dict order tracks recency
        self._filled.pop(order_id, None)
        self._filled[order_id] = filled
        while len(self._filled) > self.max_orders:
            del self._filled[next(iter(self._filled))]

    def apply_fills(self, config: StrategyConfig, market: Market, events: list[FillEvent]) -> StrategyConfig:
        """Record fill prices and recompute the weighted average per side"""
        state = config.fill_state
        quote_scale = Decimal(10) ** market.quote.decimals
        base_scale = Decimal(10) ** market.base.decimals

        for event in events:
            order = event.order
            price_scaled = Decimal(order.price_fill) if Decimal(order.price_fill or 0) > 0 else Decimal(order.price)
            price = price_scaled / quote_scale
            quantity = Decimal(event.delta) / base_scale

            record = FillRecord(price=str(price), quantity=str(quantity), timestamp=self.clock.now_ms())
            fills = state.buy if order.is_buy else state.sell
            fills.append(record)
            del fills[:-self.max_tracked]

            average = _weighted_average(fills)
            if order.is_buy:
                state.average_buy_price = average
            else:
                state.average_sell_price = average

            value_usd = float(price * Decimal(event.filled) / base_scale)
            self.ledger.update_trade_by_order_id(order.order_id, {"value_usd": round(value_usd, 6)})

        return config

    def reset(self) -> None:
        self._filled.clear()


def _weighted_average(fills: list[FillRecord]) -> Optional[str]:
    total_quantity = sum((Decimal(f.quantity) for f in fills), Decimal(0))
    if total_quantity <= 0:
        return None
    total_value = sum((Decimal(f.price) * Decimal(f.quantity) for f in fills), Decimal(0))
    return str(total_value / total_quantity)
