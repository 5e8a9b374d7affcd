"""
Strategy Base Classes

Provides a standardized interface for all trading strategies.
A strategy reads market and balance state, places its order intents through
the order service, and reports per-intent outcomes back to the engine.
Anticipated conditions (no ticker, insufficient balance) are reported as
executed=False, never raised.
"""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from typing import Callable, Optional

from balance_service import BalanceService
from errors import AgentError
from market_service import MarketService
from models import Market, OrderSide, OrderType
from order_service import OrderService
from scheduler import Clock, SystemClock
from strategy_config import StrategyConfig, StrategyType, default_config

logger = logging.getLogger(__name__)


@dataclass
class OrderExecution:
    """Outcome of one order intent - pure data"""
    order_id: str
    side: str
    success: bool
    price: Optional[str] = None             # Scaled
    quantity: Optional[str] = None          # Scaled
    price_human: Optional[str] = None
    quantity_human: Optional[str] = None
    market_pair: Optional[str] = None
    value_usd: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "side": self.side,
            "success": self.success,
            "price": self.price,
            "quantity": self.quantity,
            "price_human": self.price_human,
            "quantity_human": self.quantity_human,
            "market_pair": self.market_pair,
            "value_usd": self.value_usd,
            "error": self.error,
        }


@dataclass
class StrategyExecutionResult:
    executed: bool
    orders: list[OrderExecution] = field(default_factory=list)
    next_run_at: Optional[int] = None       # Unix ms hint for the scheduler

    def to_dict(self) -> dict:
        return {
            "executed": self.executed,
            "orders": [o.to_dict() for o in self.orders],
            "next_run_at": self.next_run_at,
        }


# ============================================================================
# PRECISION HELPERS
# ============================================================================

def jittered_delay(min_ms: int, max_ms: int, rng: Callable[[], float] = random.random) -> int:
    """Uniform delay in [min_ms, max_ms] inclusive"""
    return min_ms + int((max_ms - min_ms + 1) * rng())


def floor_to_decimals(amount: Decimal, places: int) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    return amount.quantize(quantum, rounding=ROUND_FLOOR)


def scale_up_and_truncate(amount: Decimal, decimals: int, max_precision: int) -> Decimal:
    """Scale a human amount to integer units, zeroing digits beyond max_precision"""
    scaled = amount * (Decimal(10) ** decimals)
    truncate_factor = Decimal(10) ** max(decimals - max_precision, 0)
    return (scaled / truncate_factor).to_integral_value(rounding=ROUND_FLOOR) * truncate_factor


def to_human(scaled, decimals: int) -> Decimal:
    return Decimal(str(scaled)) / (Decimal(10) ** decimals)


def to_scaled(human: Decimal, decimals: int) -> Decimal:
    return (human * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_FLOOR)


# ============================================================================
# STRATEGY
# ============================================================================

class Strategy(ABC):
    """
    Base class for all trading strategies.

    Collaborators are injected so a strategy can be exercised against mocks.
    """

    name: str = "base"
    description: str = "Base strategy class"
    strategy_type: StrategyType = None

    def __init__(
        self,
        markets: MarketService,
        balances: BalanceService,
        orders: OrderService,
        clock: Optional[Clock] = None,
        rng: Optional[Callable[[], float]] = None,
    ):
        self.markets = markets
        self.balances = balances
        self.orders = orders
        self.clock = clock or SystemClock()
        self.rng = rng or random.random

    @abstractmethod
    async def execute(
        self,
        market: Market,
        config: StrategyConfig,
        owner_address: str,
        trading_account_id: str,
    ) -> StrategyExecutionResult:
        """Compute and place this cycle's order intents"""
        pass

    def get_default_config(self, market_id: str = "") -> StrategyConfig:
        return default_config(self.strategy_type, market_id)

    def get_name(self) -> str:
        return self.name

    def get_description(self) -> str:
        return self.description

    def next_run_at(self, config: StrategyConfig) -> int:
        timing = config.timing
        return self.clock.now_ms() + jittered_delay(
            timing.cycle_interval_min_ms, timing.cycle_interval_max_ms, self.rng,
        )

    async def _place(
        self,
        market: Market,
        side: OrderSide,
        order_type: OrderType,
        price_scaled: Decimal,
        quantity_scaled: Decimal,
        owner_address: str,
    ) -> OrderExecution:
        """Place one intent; venue and signing failures stay local to this intent"""
        price = str(int(price_scaled))
        quantity = str(int(quantity_scaled))
        price_human = to_human(price, market.quote.decimals)
        quantity_human = to_human(quantity, market.base.decimals)
        execution = OrderExecution(
            order_id="",
            side=side.value,
            success=False,
            price=price,
            quantity=quantity,
            price_human=str(price_human),
            quantity_human=str(quantity_human),
            market_pair=market.pair,
            value_usd=float(price_human * quantity_human),
        )
        try:
            result = await self.orders.place_order(
                market, side, order_type, price, quantity, owner_address,
            )
            execution.order_id = result.order_id
            execution.success = True
        except AgentError as e:
            logger.error(f"[{self.name}] {side.value} order failed: {e}")
            execution.error = str(e)
        except Exception as e:
            logger.error(f"[{self.name}] {side.value} order failed unexpectedly: {e}", exc_info=True)
            execution.error = str(e) or type(e).__name__
        return execution
