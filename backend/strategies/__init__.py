"""
Trading Strategies Package

All strategies inherit from strategy_base.Strategy and report per-intent
outcomes to the trading engine.
"""

from .balance_threshold import BalanceThresholdStrategy
from .market_making import MarketMakingStrategy

__all__ = [
    "BalanceThresholdStrategy",
    "MarketMakingStrategy",
]
