"""
Market catalogue with a short-lived cache.

Also exposes the registry contract ids that come with the markets listing
(books whitelist id, chain id).
"""

import logging
from typing import Optional

from config import MARKETS_CACHE_TTL_MS
from errors import AgentError
from models import Market, Ticker
from scheduler import Clock, SystemClock
from venue_api import VenueApiClient, parse_markets

logger = logging.getLogger(__name__)


class MarketService:
    def __init__(self, api: VenueApiClient, clock: Optional[Clock] = None,
                 cache_ttl_ms: int = MARKETS_CACHE_TTL_MS):
        self.api = api
        self.clock = clock or SystemClock()
        self.cache_ttl_ms = cache_ttl_ms
        self._markets: list[Market] = []
        self._raw: dict = {}
        self._fetched_at: Optional[int] = None

    async def fetch_markets(self, force: bool = False) -> list[Market]:
        now = self.clock.now_ms()
        fresh = self._fetched_at is not None and now - self._fetched_at < self.cache_ttl_ms
        # A listing without the whitelist id is refetched
        if fresh and not force and self._raw.get("books_whitelist_id"):
            return self._markets

        data = await self.api.get_markets()
        self._raw = data or {}
        self._markets = parse_markets(self._raw)
        self._fetched_at = now
        logger.info(f"[Markets] Loaded {len(self._markets)} market(s)")
        return self._markets

    async def get_market(self, market_id: str) -> Optional[Market]:
        for market in await self.fetch_markets():
            if market.market_id == market_id:
                return market
        return None

    async def get_contract_ids(self) -> list[str]:
        return [m.contract_id for m in await self.fetch_markets()]

    def get_books_whitelist_id(self) -> Optional[str]:
        return self._raw.get("books_whitelist_id")

    def get_chain_id(self) -> Optional[int]:
        chain_id = self._raw.get("chain_id")
        return int(chain_id, 0) if isinstance(chain_id, str) else chain_id

    async def get_ticker(self, market_id: str) -> Optional[Ticker]:
        """Latest ticker, or None when the venue has none"""
        try:
            return await self.api.get_ticker(market_id)
        except AgentError as e:
            logger.warning(f"[Markets] No ticker for {market_id}: {e}")
            return None

    def clear_cache(self) -> None:
        self._markets = []
        self._raw = {}
        self._fetched_at = None
