"""
Balance Service - per-asset balances with a short TTL cache.

A failed fetch falls back to the last cached value, even if stale.
"""

import asyncio
import logging
from typing import Optional

from config import BALANCE_CACHE_TTL_MS
from errors import AgentError
from models import AssetBalance, AssetInfo, Market, MarketBalances
from scheduler import Clock, SystemClock
from venue_api import VenueApiClient

logger = logging.getLogger(__name__)


class BalanceService:
    def __init__(self, api: VenueApiClient, clock: Optional[Clock] = None,
                 cache_ttl_ms: int = BALANCE_CACHE_TTL_MS):
        self.api = api
        self.clock = clock or SystemClock()
        self.cache_ttl_ms = cache_ttl_ms
        self._cache: dict[str, tuple[int, dict]] = {}  # "account-asset" -> (fetched_at, response)

    async def get_balance(self, asset_id: str, trading_account_id: str, owner_address: str) -> dict:
        cache_key = f"{trading_account_id}-{asset_id}"
        cached = self._cache.get(cache_key)
        now = self.clock.now_ms()

        if cached and now - cached[0] < self.cache_ttl_ms:
            return cached[1]

        try:
            balance = await self.api.get_balance(asset_id, trading_account_id, owner_address)
        except AgentError as e:
            if cached:
                logger.warning(f"[Balances] Fetch failed for {asset_id[:10]}, using stale cache: {e}")
                return cached[1]
            raise

        self._cache[cache_key] = (now, balance or {})
        return balance or {}

    async def get_market_balances(self, market: Market, trading_account_id: str,
                                  owner_address: str) -> MarketBalances:
        """
        Balances usable for one market's next order batch.

        Available = trading account balance + this order book's unlocked
        amount, which is what a SettleBalance in the same batch frees up.
        """
        base_resp, quote_resp = await asyncio.gather(
            self.get_balance(market.base.asset, trading_account_id, owner_address),
            self.get_balance(market.quote.asset, trading_account_id, owner_address),
        )
        return MarketBalances(
            base=_market_balance(base_resp, market.contract_id),
            quote=_market_balance(quote_resp, market.contract_id),
        )

    async def get_all_balances(self, markets: list[Market], trading_account_id: str,
                               owner_address: str) -> list[dict]:
        assets: dict[str, AssetInfo] = {}
        for market in markets:
            assets[market.base.asset] = market.base
            assets[market.quote.asset] = market.quote

        balances = []
        for asset_id, info in assets.items():
            try:
                resp = await self.get_balance(asset_id, trading_account_id, owner_address)
            except AgentError as e:
                logger.error(f"[Balances] Failed to fetch balance for {info.symbol}: {e}")
                continue
            trading_balance = int(resp.get("trading_account_balance") or 0)
            total_unlocked = int(resp.get("total_unlocked") or 0)
            balances.append({
                "asset_id": asset_id,
                "symbol": info.symbol,
                "decimals": info.decimals,
                "unlocked": str(resp.get("total_unlocked") or "0"),
                "locked": str(resp.get("total_locked") or "0"),
                "total": str(trading_balance + total_unlocked),
            })
        return balances

    def clear_cache(self) -> None:
        self._cache.clear()


def _market_balance(resp: dict, contract_id: str) -> AssetBalance:
    trading_balance = int(resp.get("trading_account_balance") or 0)
    total_unlocked = int(resp.get("total_unlocked") or 0)
    book = (resp.get("order_books") or {}).get(contract_id) or {}
    book_unlocked = int(book.get("unlocked") or 0)
    return AssetBalance(
        unlocked=str(trading_balance + book_unlocked),
        locked=str(resp.get("total_locked") or "0"),
        total=str(trading_balance + total_unlocked),
    )
