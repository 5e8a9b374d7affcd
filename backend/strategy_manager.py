"""
Strategy Manager - Loads and manages per-market strategy configurations.

Provides:
- Strategy registry (one instance per strategy type)
- Config CRUD keyed by market id (one config per market)
- Activate/deactivate per market
"""

import logging
from dataclasses import dataclass
from typing import Optional

from balance_service import BalanceService
from durable_store import DurableStore
from market_service import MarketService
from order_service import OrderService
from scheduler import Clock, SystemClock
from strategies import BalanceThresholdStrategy, MarketMakingStrategy
from strategy_base import Strategy
from strategy_config import StrategyConfig, StrategyType, config_from_dict, default_config

logger = logging.getLogger(__name__)

STRATEGY_CLASSES: dict[StrategyType, type] = {
    StrategyType.MARKET_MAKING: MarketMakingStrategy,
    StrategyType.BALANCE_THRESHOLD: BalanceThresholdStrategy,
}


@dataclass
class StrategyConfigRecord:
    """Persisted config for one market"""
    id: str
    market_id: str
    config: StrategyConfig
    is_active: bool
    created_at: int
    updated_at: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "market_id": self.market_id,
            "config": self.config.to_dict(),
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: dict) -> "StrategyConfigRecord":
        return cls(
            id=row["id"],
            market_id=row["market_id"],
            config=config_from_dict(row["config"]),
            is_active=row["is_active"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class StrategyManager:
    """
    Manages trading strategy configurations.

    Single source of truth for:
    - Which strategy runs on which market
    - Strategy parameters and fill-tracking state
    - Which configs the engine schedules (is_active)
    """

    def __init__(
        self,
        store: DurableStore,
        markets: MarketService,
        balances: BalanceService,
        orders: OrderService,
        clock: Optional[Clock] = None,
        rng=None,
    ):
        self.store = store
        self.markets = markets
        self.balances = balances
        self.orders = orders
        self.clock = clock or SystemClock()
        self.rng = rng
        self._strategies: dict[StrategyType, Strategy] = {}

    # -------------------------------------------------------------------------
    # Strategy Registry
    # -------------------------------------------------------------------------

    def create_strategy(self, strategy_type) -> Strategy:
        """Fresh strategy instance wired to this manager's collaborators"""
        strategy_type = StrategyType(strategy_type)
        cls = STRATEGY_CLASSES.get(strategy_type)
        if cls is None:
            raise ValueError(f"Unknown strategy type: {strategy_type}")
        return cls(self.markets, self.balances, self.orders, clock=self.clock, rng=self.rng)

    def get_strategy(self, strategy_type) -> Strategy:
        strategy_type = StrategyType(strategy_type)
        if strategy_type not in self._strategies:
            self._strategies[strategy_type] = self.create_strategy(strategy_type)
        return self._strategies[strategy_type]

    def available_strategies(self) -> list[dict]:
        return [
            {
                "type": strategy_type.value,
                "name": cls.name,
                "description": cls.description,
            }
            for strategy_type, cls in STRATEGY_CLASSES.items()
        ]

    def get_default_config(self, strategy_type, market_id: str = "") -> StrategyConfig:
        return default_config(StrategyType(strategy_type), market_id)

    # -------------------------------------------------------------------------
    # Config Queries
    # -------------------------------------------------------------------------

    def get_config(self, market_id: str) -> Optional[StrategyConfigRecord]:
        row = self.store.get_strategy_config(market_id)
        return StrategyConfigRecord.from_row(row) if row else None

    def list_configs(self) -> list[StrategyConfigRecord]:
        return [StrategyConfigRecord.from_row(r) for r in self.store.list_strategy_configs()]

    def get_active_configs(self) -> list[StrategyConfigRecord]:
        return [StrategyConfigRecord.from_row(r) for r in self.store.list_strategy_configs(active_only=True)]

    # -------------------------------------------------------------------------
    # Config Mutations
    # -------------------------------------------------------------------------

    def save_config(self, market_id: str, config: StrategyConfig, is_active: bool = True) -> StrategyConfigRecord:
        """Create or replace the config for a market"""
        now = self.clock.now_ms()
        existing = self.store.get_strategy_config(market_id)
        created_at = existing["created_at"] if existing else now
        config.market_id = market_id

        self.store.put_strategy_config(market_id, config.to_dict(), is_active, created_at, now)
        logger.info(f"[StrategyManager] Saved {config.type.value} config for market {market_id[:10]} "
                    f"(active={is_active})")
        return StrategyConfigRecord(
            id=market_id,
            market_id=market_id,
            config=config,
            is_active=is_active,
            created_at=created_at,
            updated_at=now,
        )

    def update_config(self, market_id: str, config: StrategyConfig) -> bool:
        """Replace parameters and tracked state, keeping is_active"""
        config.market_id = market_id
        return self.store.update_strategy_config(market_id, self.clock.now_ms(), config=config.to_dict())

    def set_active(self, market_id: str, is_active: bool) -> bool:
        updated = self.store.update_strategy_config(market_id, self.clock.now_ms(), is_active=is_active)
        if updated:
            logger.info(f"[StrategyManager] Market {market_id[:10]} {'activated' if is_active else 'deactivated'}")
        return updated

    def delete_config(self, market_id: str) -> bool:
        deleted = self.store.delete_strategy_config(market_id)
        if deleted:
            logger.info(f"[StrategyManager] Deleted config for market {market_id[:10]}")
        return deleted
