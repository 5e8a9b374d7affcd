"""
Balance Threshold Strategy

Keeps balances near configured thresholds: base above its threshold is sold
just below market, quote above its threshold is spent just above market.
Thresholds are in human units.
"""

import logging
from decimal import Decimal

from models import Market, OrderSide
from strategy_base import Strategy, StrategyExecutionResult, to_human, to_scaled
from strategy_config import BalanceThresholdConfig, StrategyType

logger = logging.getLogger(__name__)


class BalanceThresholdStrategy(Strategy):
    name = "Balance Threshold"
    description = (
        "Places orders when balance exceeds configured thresholds. If base balance > threshold, "
        "places sell order. If quote balance > threshold, places buy order."
    )
    strategy_type = StrategyType.BALANCE_THRESHOLD

    async def execute(
        self,
        market: Market,
        config: BalanceThresholdConfig,
        owner_address: str,
        trading_account_id: str,
    ) -> StrategyExecutionResult:
        balances = await self.balances.get_market_balances(market, trading_account_id, owner_address)
        base_balance = to_human(balances.base.unlocked, market.base.decimals)
        quote_balance = to_human(balances.quote.unlocked, market.quote.decimals)

        ticker = await self.markets.get_ticker(market.market_id)
        if ticker is None or not ticker.last_price:
            logger.warning(f"[BalanceThreshold] No ticker data for {market.pair}")
            return StrategyExecutionResult(executed=False)

        market_price = to_human(ticker.last_price, market.quote.decimals)
        min_notional = Decimal(str(config.min_order_size_usd))
        orders = []

        base_threshold = Decimal(str(config.base_threshold))
        if base_balance > base_threshold:
            sell_price = market_price * (1 - Decimal(str(config.sell_discount_percent)) / 100)
            excess_base = base_balance - base_threshold
            sell_quantity_scaled = to_scaled(excess_base, market.base.decimals)
            value = to_human(sell_quantity_scaled, market.base.decimals) * sell_price
            if sell_quantity_scaled > 0 and value >= min_notional:
                orders.append(await self._place(
                    market, OrderSide.SELL, config.order_type,
                    to_scaled(sell_price, market.quote.decimals), sell_quantity_scaled, owner_address,
                ))
            else:
                logger.info(f"[BalanceThreshold] Sell skipped: ${value:.2f} below minimum ${min_notional}")

        quote_threshold = Decimal(str(config.quote_threshold))
        if quote_balance > quote_threshold and market_price > 0:
            buy_price = market_price * (1 + Decimal(str(config.buy_premium_percent)) / 100)
            excess_quote = quote_balance - quote_threshold
            # Sized at the premium price so the order never needs more than the excess
            buy_quantity_scaled = to_scaled(excess_quote / buy_price, market.base.decimals)
            value = to_human(buy_quantity_scaled, market.base.decimals) * buy_price
            if buy_quantity_scaled > 0 and value >= min_notional:
                orders.append(await self._place(
                    market, OrderSide.BUY, config.order_type,
                    to_scaled(buy_price, market.quote.decimals), buy_quantity_scaled, owner_address,
                ))
            else:
                logger.info(f"[BalanceThreshold] Buy skipped: ${value:.2f} below minimum ${min_notional}")

        return StrategyExecutionResult(
            executed=len(orders) > 0,
            orders=orders,
            next_run_at=self.next_run_at(config),
        )
