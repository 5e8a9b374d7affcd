"""
Tests for the trading strategies (strategies/).

Tests cover:
- Market making sizing and price bias
- Minimum order notional
- Only-sell-above-average-buy guard
- Balance threshold sells and buys
- Precision helpers
"""
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import ACCOUNT_ID, MARKET_ID
from balance_service import BalanceService
from errors import VenueRejected
from market_service import MarketService
from models import AssetBalance, MarketBalances, Ticker
from order_service import OrderResult, OrderService
from strategies import BalanceThresholdStrategy, MarketMakingStrategy
from strategy_base import jittered_delay, scale_up_and_truncate, floor_to_decimals
from strategy_config import BalanceThresholdConfig, MarketMakingConfig

OWNER = "0x" + "ab" * 20


def balances_of(base_unlocked="0", quote_unlocked="0") -> MarketBalances:
    return MarketBalances(
        base=AssetBalance(unlocked=base_unlocked),
        quote=AssetBalance(unlocked=quote_unlocked),
    )


@pytest.fixture
def collaborators(ticker):
    markets = MagicMock(spec=MarketService)
    markets.get_ticker = AsyncMock(return_value=ticker)
    balances = MagicMock(spec=BalanceService)
    balances.get_market_balances = AsyncMock(return_value=balances_of())
    orders = MagicMock(spec=OrderService)
    orders.place_order = AsyncMock(side_effect=[OrderResult(order_id="0xo1"), OrderResult(order_id="0xo2")])
    return markets, balances, orders


def make_strategy(cls, collaborators, clock):
    markets, balances, orders = collaborators
    return cls(markets, balances, orders, clock=clock, rng=lambda: 0.0)


class TestHelpers:
    """Tests for the precision helpers."""

    def test_jitter_bounds(self):
        assert jittered_delay(3000, 5000, lambda: 0.0) == 3000
        assert jittered_delay(3000, 5000, lambda: 0.9999999) == 5000
        assert jittered_delay(4000, 4000, lambda: 0.5) == 4000

    def test_scale_up_and_truncate(self):
        assert scale_up_and_truncate(Decimal("1.23456789"), 9, 3) == Decimal("1234000000")
        assert scale_up_and_truncate(Decimal("1.5015"), 6, 6) == Decimal("1501500")

    def test_floor_to_decimals(self):
        assert floor_to_decimals(Decimal("66.6000666"), 3) == Decimal("66.600")
        assert floor_to_decimals(Decimal("0.0009"), 3) == Decimal("0.000")


class TestMarketMaking:
    """Tests for MarketMakingStrategy."""

    @pytest.mark.asyncio
    async def test_buy_uses_all_quote_without_overspending(self, collaborators, market, clock):
        _, balances, orders = collaborators
        balances.get_market_balances = AsyncMock(return_value=balances_of(quote_unlocked="100000000"))
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, MarketMakingConfig(), OWNER, ACCOUNT_ID)

        assert result.executed is True
        assert len(result.orders) == 1
        buy = result.orders[0]
        assert buy.side == "Buy"
        assert buy.price == "1501500"
        assert buy.quantity == "66600000000"
        assert int(buy.price) * int(buy.quantity) // 10**9 <= 100000000
        assert buy.success is True and buy.order_id == "0xo1"

    @pytest.mark.asyncio
    async def test_sell_below_mid(self, collaborators, market, clock):
        _, balances, orders = collaborators
        balances.get_market_balances = AsyncMock(return_value=balances_of(base_unlocked="10000000000"))
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, MarketMakingConfig(), OWNER, ACCOUNT_ID)

        sell = result.orders[0]
        assert sell.side == "Sell"
        assert sell.price == "1498500"
        assert sell.quantity == "10000000000"

    @pytest.mark.asyncio
    async def test_both_sides(self, collaborators, market, clock):
        _, balances, orders = collaborators
        balances.get_market_balances = AsyncMock(
            return_value=balances_of(base_unlocked="10000000000", quote_unlocked="100000000")
        )
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, MarketMakingConfig(), OWNER, ACCOUNT_ID)

        assert [o.side for o in result.orders] == ["Buy", "Sell"]
        balances.clear_cache.assert_called_once()

    @pytest.mark.asyncio
    async def test_below_min_notional_places_nothing(self, collaborators, market, clock):
        _, balances, orders = collaborators
        balances.get_market_balances = AsyncMock(
            return_value=balances_of(base_unlocked="3000000000", quote_unlocked="4000000")
        )
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, MarketMakingConfig(), OWNER, ACCOUNT_ID)

        assert result.executed is False
        assert result.orders == []
        assert result.next_run_at == clock.now_ms() + 3000
        orders.place_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sell_guard_against_average_buy(self, collaborators, market, clock):
        _, balances, orders = collaborators
        balances.get_market_balances = AsyncMock(return_value=balances_of(base_unlocked="10000000000"))
        config = MarketMakingConfig()
        config.order_management.only_sell_above_buy_price = True
        config.fill_state.average_buy_price = "2.0"
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, config, OWNER, ACCOUNT_ID)

        assert result.executed is False
        orders.place_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sell_guard_allows_profitable_sell(self, collaborators, market, clock):
        _, balances, _ = collaborators
        balances.get_market_balances = AsyncMock(return_value=balances_of(base_unlocked="10000000000"))
        config = MarketMakingConfig()
        config.order_management.only_sell_above_buy_price = True
        config.fill_state.average_buy_price = "1.2"
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, config, OWNER, ACCOUNT_ID)
        assert result.orders[0].side == "Sell"

    @pytest.mark.asyncio
    async def test_no_ticker(self, collaborators, market, clock):
        markets, _, orders = collaborators
        markets.get_ticker = AsyncMock(return_value=None)
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, MarketMakingConfig(), OWNER, ACCOUNT_ID)
        assert result.executed is False
        orders.place_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_order_is_reported_not_raised(self, collaborators, market, clock):
        _, balances, orders = collaborators
        balances.get_market_balances = AsyncMock(return_value=balances_of(quote_unlocked="100000000"))
        orders.place_order = AsyncMock(side_effect=VenueRejected("nonce mismatch", status=400))
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, MarketMakingConfig(), OWNER, ACCOUNT_ID)

        assert result.orders[0].success is False
        assert result.orders[0].error == "nonce mismatch"

    @pytest.mark.asyncio
    async def test_unexpected_error_on_buy_still_places_sell(self, collaborators, market, clock):
        _, balances, orders = collaborators
        balances.get_market_balances = AsyncMock(
            return_value=balances_of(base_unlocked="10000000000", quote_unlocked="100000000")
        )
        orders.place_order = AsyncMock(side_effect=[ValueError("invalid literal for int()"), OrderResult(order_id="0xsell")])
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, MarketMakingConfig(), OWNER, ACCOUNT_ID)

        assert orders.place_order.await_count == 2
        buy, sell = result.orders
        assert buy.success is False
        assert buy.error == "invalid literal for int()"
        assert sell.success is True and sell.order_id == "0xsell"
        assert result.executed is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quote_unlocked,last_price,expect_buy", [
        ("100000000", "1500000", True),
        ("5010000", "1500000", True),       # $5.009 after flooring
        ("5001000", "1500000", False),      # floors to $4.999995
        ("123456789", "33333", True),
        ("7777777", "987654321", True),
        ("6000000", "987654321", True),
        ("5500000", "987654321", False),    # 0.005 * 988.64 < $5
    ])
    async def test_buy_never_exceeds_quote_balance(self, collaborators, market, clock,
                                                   quote_unlocked, last_price, expect_buy):
        markets, balances, orders = collaborators
        markets.get_ticker = AsyncMock(return_value=Ticker(market_id=MARKET_ID, last_price=last_price))
        balances.get_market_balances = AsyncMock(return_value=balances_of(quote_unlocked=quote_unlocked))
        strategy = make_strategy(MarketMakingStrategy, collaborators, clock)

        result = await strategy.execute(market, MarketMakingConfig(), OWNER, ACCOUNT_ID)

        buys = [o for o in result.orders if o.side == "Buy"]
        assert bool(buys) is expect_buy
        for buy in buys:
            assert int(buy.price) * int(buy.quantity) <= int(quote_unlocked) * 10**market.base.decimals
            assert Decimal(buy.price_human) * Decimal(buy.quantity_human) >= Decimal("5")


class TestBalanceThreshold:
    """Tests for BalanceThresholdStrategy."""

    @pytest.mark.asyncio
    async def test_sells_excess_base(self, collaborators, market, clock):
        _, balances, _ = collaborators
        balances.get_market_balances = AsyncMock(return_value=balances_of(base_unlocked="1500000000000"))
        strategy = make_strategy(BalanceThresholdStrategy, collaborators, clock)

        result = await strategy.execute(market, BalanceThresholdConfig(), OWNER, ACCOUNT_ID)

        sell = result.orders[0]
        assert sell.side == "Sell"
        assert sell.price == "1485000"
        assert sell.quantity == "500000000000"

    @pytest.mark.asyncio
    async def test_buys_with_excess_quote(self, collaborators, market, clock):
        _, balances, _ = collaborators
        balances.get_market_balances = AsyncMock(return_value=balances_of(quote_unlocked="250000000"))
        strategy = make_strategy(BalanceThresholdStrategy, collaborators, clock)

        result = await strategy.execute(market, BalanceThresholdConfig(), OWNER, ACCOUNT_ID)

        buy = result.orders[0]
        assert buy.side == "Buy"
        assert buy.price == "1515000"
        assert int(buy.price) * int(buy.quantity) // 10**9 <= 150000000
        assert int(buy.quantity) > 99_000_000_000

    @pytest.mark.asyncio
    async def test_under_thresholds_does_nothing(self, collaborators, market, clock):
        _, balances, orders = collaborators
        balances.get_market_balances = AsyncMock(
            return_value=balances_of(base_unlocked="900000000000", quote_unlocked="90000000")
        )
        strategy = make_strategy(BalanceThresholdStrategy, collaborators, clock)

        result = await strategy.execute(market, BalanceThresholdConfig(), OWNER, ACCOUNT_ID)

        assert result.executed is False
        assert result.next_run_at == clock.now_ms() + 5000
        orders.place_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_small_excess_below_min_notional(self, collaborators, market, clock):
        _, balances, orders = collaborators
        # 2 FUEL over threshold at ~1.485 is under $5
        balances.get_market_balances = AsyncMock(return_value=balances_of(base_unlocked="1002000000000"))
        strategy = make_strategy(BalanceThresholdStrategy, collaborators, clock)

        result = await strategy.execute(market, BalanceThresholdConfig(), OWNER, ACCOUNT_ID)
        assert result.executed is False
        orders.place_order.assert_not_awaited()
