"""
Strategy configuration variants.

Each strategy type has its own config dataclass carrying only its own
parameters plus the shared timing, order-management and fill-tracking
sections. Stored configs are tagged with "type" and dispatched on it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from config import MIN_ORDER_SIZE_USD
from models import OrderType


class StrategyType(str, Enum):
    MARKET_MAKING = "marketMaking"
    BALANCE_THRESHOLD = "balanceThreshold"


# ============================================================================
# SHARED SECTIONS
# ============================================================================

@dataclass
class TimingConfig:
    cycle_interval_min_ms: int = 3000
    cycle_interval_max_ms: int = 5000
    cooldown_after_fill_ms: Optional[int] = None

    def __post_init__(self):
        if self.cycle_interval_min_ms < 0 or self.cycle_interval_max_ms < self.cycle_interval_min_ms:
            raise ValueError(
                f"Invalid cycle interval [{self.cycle_interval_min_ms}, {self.cycle_interval_max_ms}]"
            )

    def to_dict(self) -> dict:
        return {
            "cycle_interval_min_ms": self.cycle_interval_min_ms,
            "cycle_interval_max_ms": self.cycle_interval_max_ms,
            "cooldown_after_fill_ms": self.cooldown_after_fill_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TimingConfig":
        return cls(
            cycle_interval_min_ms=int(data.get("cycle_interval_min_ms", 3000)),
            cycle_interval_max_ms=int(data.get("cycle_interval_max_ms", 5000)),
            cooldown_after_fill_ms=(
                int(data["cooldown_after_fill_ms"]) if data.get("cooldown_after_fill_ms") is not None else None
            ),
        )


@dataclass
class OrderManagementConfig:
    track_fill_prices: bool = True
    only_sell_above_buy_price: bool = False

    def to_dict(self) -> dict:
        return {
            "track_fill_prices": self.track_fill_prices,
            "only_sell_above_buy_price": self.only_sell_above_buy_price,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrderManagementConfig":
        return cls(
            track_fill_prices=bool(data.get("track_fill_prices", True)),
            only_sell_above_buy_price=bool(data.get("only_sell_above_buy_price", False)),
        )


@dataclass
class FillRecord:
    price: str          # Human units
    quantity: str       # Human units
    timestamp: int

    def to_dict(self) -> dict:
        return {"price": self.price, "quantity": self.quantity, "timestamp": self.timestamp}


@dataclass
class FillState:
    """Strategy-internal state maintained by fill tracking"""
    buy: list[FillRecord] = field(default_factory=list)
    sell: list[FillRecord] = field(default_factory=list)
    average_buy_price: Optional[str] = None
    average_sell_price: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "buy": [f.to_dict() for f in self.buy],
            "sell": [f.to_dict() for f in self.sell],
            "average_buy_price": self.average_buy_price,
            "average_sell_price": self.average_sell_price,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FillState":
        return cls(
            buy=[FillRecord(**f) for f in data.get("buy", [])],
            sell=[FillRecord(**f) for f in data.get("sell", [])],
            average_buy_price=data.get("average_buy_price"),
            average_sell_price=data.get("average_sell_price"),
        )


# ============================================================================
# VARIANTS
# ============================================================================

@dataclass
class MarketMakingConfig:
    """
    Aggressive two-sided market making around the last traded price.

    Buys slightly above mid and sells slightly below it so orders fill fast,
    using the full available balance on each side.
    """
    market_id: str = ""
    name: str = "Market Making"
    buy_price_adjustment_percent: float = 0.1
    sell_price_adjustment_percent: float = 0.1
    min_order_size_usd: float = MIN_ORDER_SIZE_USD
    order_type: OrderType = OrderType.MARKET
    timing: TimingConfig = field(default_factory=lambda: TimingConfig(3000, 5000))
    order_management: OrderManagementConfig = field(default_factory=OrderManagementConfig)
    fill_state: FillState = field(default_factory=FillState)

    type = StrategyType.MARKET_MAKING

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "market_id": self.market_id,
            "name": self.name,
            "buy_price_adjustment_percent": self.buy_price_adjustment_percent,
            "sell_price_adjustment_percent": self.sell_price_adjustment_percent,
            "min_order_size_usd": self.min_order_size_usd,
            "order_type": self.order_type.value,
            "timing": self.timing.to_dict(),
            "order_management": self.order_management.to_dict(),
            "fill_state": self.fill_state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MarketMakingConfig":
        return cls(
            market_id=data.get("market_id", ""),
            name=data.get("name", "Market Making"),
            buy_price_adjustment_percent=float(data.get("buy_price_adjustment_percent", 0.1)),
            sell_price_adjustment_percent=float(data.get("sell_price_adjustment_percent", 0.1)),
            min_order_size_usd=float(data.get("min_order_size_usd", MIN_ORDER_SIZE_USD)),
            order_type=OrderType(data.get("order_type", OrderType.MARKET.value)),
            timing=TimingConfig.from_dict(data.get("timing", {"cycle_interval_min_ms": 3000,
                                                              "cycle_interval_max_ms": 5000})),
            order_management=OrderManagementConfig.from_dict(data.get("order_management", {})),
            fill_state=FillState.from_dict(data.get("fill_state", {})),
        )


@dataclass
class BalanceThresholdConfig:
    """Sell base above a threshold, buy with quote above a threshold (human units)"""
    market_id: str = ""
    name: str = "Balance Threshold"
    base_threshold: float = 1000.0
    quote_threshold: float = 100.0
    sell_discount_percent: float = 1.0
    buy_premium_percent: float = 1.0
    min_order_size_usd: float = MIN_ORDER_SIZE_USD
    order_type: OrderType = OrderType.SPOT
    timing: TimingConfig = field(default_factory=lambda: TimingConfig(5000, 10000))
    order_management: OrderManagementConfig = field(
        default_factory=lambda: OrderManagementConfig(track_fill_prices=False)
    )
    fill_state: FillState = field(default_factory=FillState)

    type = StrategyType.BALANCE_THRESHOLD

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "market_id": self.market_id,
            "name": self.name,
            "base_threshold": self.base_threshold,
            "quote_threshold": self.quote_threshold,
            "sell_discount_percent": self.sell_discount_percent,
            "buy_premium_percent": self.buy_premium_percent,
            "min_order_size_usd": self.min_order_size_usd,
            "order_type": self.order_type.value,
            "timing": self.timing.to_dict(),
            "order_management": self.order_management.to_dict(),
            "fill_state": self.fill_state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BalanceThresholdConfig":
        return cls(
            market_id=data.get("market_id", ""),
            name=data.get("name", "Balance Threshold"),
            base_threshold=float(data.get("base_threshold", 1000.0)),
            quote_threshold=float(data.get("quote_threshold", 100.0)),
            sell_discount_percent=float(data.get("sell_discount_percent", 1.0)),
            buy_premium_percent=float(data.get("buy_premium_percent", 1.0)),
            min_order_size_usd=float(data.get("min_order_size_usd", MIN_ORDER_SIZE_USD)),
            order_type=OrderType(data.get("order_type", OrderType.SPOT.value)),
            timing=TimingConfig.from_dict(data.get("timing", {"cycle_interval_min_ms": 5000,
                                                              "cycle_interval_max_ms": 10000})),
            order_management=OrderManagementConfig.from_dict(
                data.get("order_management", {"track_fill_prices": False})
            ),
            fill_state=FillState.from_dict(data.get("fill_state", {})),
        )


StrategyConfig = Union[MarketMakingConfig, BalanceThresholdConfig]

CONFIG_CLASSES = {
    StrategyType.MARKET_MAKING: MarketMakingConfig,
    StrategyType.BALANCE_THRESHOLD: BalanceThresholdConfig,
}


def config_to_dict(config: StrategyConfig) -> dict:
    return config.to_dict()


def config_from_dict(data: dict) -> StrategyConfig:
    """Rebuild a config from its tagged dict form"""
    try:
        strategy_type = StrategyType(data.get("type"))
    except ValueError:
        raise ValueError(f"Unknown strategy type: {data.get('type')!r}")

    if strategy_type is StrategyType.MARKET_MAKING:
        return MarketMakingConfig.from_dict(data)
    elif strategy_type is StrategyType.BALANCE_THRESHOLD:
        return BalanceThresholdConfig.from_dict(data)
    raise ValueError(f"Unhandled strategy type: {strategy_type}")


def default_config(strategy_type: StrategyType, market_id: str = "") -> StrategyConfig:
    return CONFIG_CLASSES[StrategyType(strategy_type)](market_id=market_id)
