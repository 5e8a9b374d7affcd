"""
Market Making Strategy

Quotes both sides around the last traded price, biased toward fast fills:
buy slightly above mid, sell slightly below it. Each side uses the full
available balance, truncated to the market's precision and floored to
3 human decimals so an order never asks for more than is available.
"""

import logging
from decimal import ROUND_FLOOR, Decimal
from typing import Optional

from config import QUANTITY_DISPLAY_DECIMALS
from models import Market, OrderSide
from strategy_base import (
    Strategy,
    StrategyExecutionResult,
    floor_to_decimals,
    scale_up_and_truncate,
    to_human,
    to_scaled,
)
from strategy_config import MarketMakingConfig, StrategyType

logger = logging.getLogger(__name__)


class MarketMakingStrategy(Strategy):
    name = "Market Making"
    description = (
        "Places buy and sell orders around the current market price to capture the spread. "
        "Maintains inventory balance by rebalancing when orders fill."
    )
    strategy_type = StrategyType.MARKET_MAKING

    async def execute(
        self,
        market: Market,
        config: MarketMakingConfig,
        owner_address: str,
        trading_account_id: str,
    ) -> StrategyExecutionResult:
        # Interval is measured between execution starts
        next_run_at = self.next_run_at(config)

        ticker = await self.markets.get_ticker(market.market_id)
        if ticker is None or not ticker.last_price:
            logger.warning(f"[MarketMaking] No ticker data for {market.pair}")
            return StrategyExecutionResult(executed=False)

        self.balances.clear_cache()
        balances = await self.balances.get_market_balances(market, trading_account_id, owner_address)

        quote = market.quote
        base = market.base
        mid_price = to_human(ticker.last_price, quote.decimals)
        buy_price_scaled = scale_up_and_truncate(
            mid_price * (1 + Decimal(str(config.buy_price_adjustment_percent)) / 100),
            quote.decimals, quote.max_precision,
        )
        sell_price_scaled = scale_up_and_truncate(
            mid_price * (1 - Decimal(str(config.sell_price_adjustment_percent)) / 100),
            quote.decimals, quote.max_precision,
        )
        min_notional = Decimal(str(config.min_order_size_usd))
        orders = []

        # Buy side: all available quote
        available_quote = Decimal(balances.quote.unlocked)
        buy_quantity_scaled = self.max_buy_quantity(available_quote, buy_price_scaled, base.decimals)
        if buy_quantity_scaled is not None:
            buy_price_human = to_human(buy_price_scaled, quote.decimals)
            buy_value = to_human(buy_quantity_scaled, base.decimals) * buy_price_human
            if buy_value >= min_notional:
                orders.append(await self._place(
                    market, OrderSide.BUY, config.order_type,
                    buy_price_scaled, buy_quantity_scaled, owner_address,
                ))
            else:
                logger.info(f"[MarketMaking] Buy skipped: ${buy_value:.2f} below minimum ${min_notional}")

        # Sell side: all available base
        base_human = floor_to_decimals(to_human(balances.base.unlocked, base.decimals), QUANTITY_DISPLAY_DECIMALS)
        sell_quantity_scaled = to_scaled(base_human, base.decimals)
        sell_price_human = to_human(sell_price_scaled, quote.decimals)
        sell_value = base_human * sell_price_human
        if sell_quantity_scaled <= 0 or sell_value < min_notional:
            logger.info(f"[MarketMaking] Sell skipped: ${sell_value:.2f} below minimum ${min_notional}")
        elif self._below_average_buy(config, sell_price_human):
            logger.info(
                f"[MarketMaking] Sell skipped: {sell_price_human} below average buy "
                f"{config.fill_state.average_buy_price}"
            )
        else:
            orders.append(await self._place(
                market, OrderSide.SELL, config.order_type,
                sell_price_scaled, sell_quantity_scaled, owner_address,
            ))

        logger.info(f"[MarketMaking] {market.pair}: {len(orders)} order(s) this cycle")
        return StrategyExecutionResult(executed=len(orders) > 0, orders=orders, next_run_at=next_run_at)

    @staticmethod
    def max_buy_quantity(available_quote_scaled: Decimal, buy_price_scaled: Decimal,
                         base_decimals: int) -> Optional[Decimal]:
        """
        Largest scaled buy quantity the quote balance covers, floored to
        3 human decimals. price * quantity / 10^base_decimals <= available.
        """
        if buy_price_scaled <= 0 or available_quote_scaled <= 0:
            return None
        raw = (available_quote_scaled * (Decimal(10) ** base_decimals) / buy_price_scaled).to_integral_value(
            rounding=ROUND_FLOOR
        )
        human = floor_to_decimals(to_human(raw, base_decimals), QUANTITY_DISPLAY_DECIMALS)
        quantity = to_scaled(human, base_decimals)
        return quantity if quantity > 0 else None

    @staticmethod
    def _below_average_buy(config: MarketMakingConfig, sell_price_human: Decimal) -> bool:
        management = config.order_management
        average = config.fill_state.average_buy_price
        if not management.only_sell_above_buy_price or not average:
            return False
        return sell_price_human < Decimal(average)
