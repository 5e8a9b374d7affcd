"""
Tests for the market catalogue cache (market_service.py).
"""
import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import CONTRACT_ID, MARKET_ID
from market_service import MarketService

LISTING = {
    "markets": [{
        "market_id": MARKET_ID,
        "contract_id": CONTRACT_ID,
        "base": {"asset": "0xb", "symbol": "FUEL", "decimals": 9, "max_precision": 3},
        "quote": {"asset": "0xq", "symbol": "USDC", "decimals": 6},
    }],
    "books_whitelist_id": "0x" + "77" * 32,
    "chain_id": "0x2691",
}


class TestMarketService:
    """Tests for listing fields and cache refreshes."""

    @pytest.mark.asyncio
    async def test_listing_fields(self, mock_api, clock):
        mock_api.get_markets = AsyncMock(return_value=LISTING)
        service = MarketService(mock_api, clock)

        assert await service.get_contract_ids() == [CONTRACT_ID]
        assert service.get_books_whitelist_id() == LISTING["books_whitelist_id"]
        assert service.get_chain_id() == 9873

    @pytest.mark.asyncio
    async def test_numeric_chain_id(self, mock_api, clock):
        mock_api.get_markets = AsyncMock(return_value={**LISTING, "chain_id": 9889})
        service = MarketService(mock_api, clock)
        await service.fetch_markets()
        assert service.get_chain_id() == 9889

    @pytest.mark.asyncio
    async def test_missing_chain_id(self, mock_api, clock):
        mock_api.get_markets = AsyncMock(return_value={"markets": []})
        service = MarketService(mock_api, clock)
        await service.fetch_markets()
        assert service.get_chain_id() is None

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self, mock_api, clock):
        mock_api.get_markets = AsyncMock(return_value=LISTING)
        service = MarketService(mock_api, clock, cache_ttl_ms=60000)

        await service.fetch_markets()
        clock.advance(59999)
        await service.fetch_markets()
        assert mock_api.get_markets.await_count == 1

        clock.advance(1)
        await service.fetch_markets()
        assert mock_api.get_markets.await_count == 2

    @pytest.mark.asyncio
    async def test_listing_without_whitelist_id_is_refetched(self, mock_api, clock):
        mock_api.get_markets = AsyncMock(return_value={"markets": LISTING["markets"]})
        service = MarketService(mock_api, clock)

        await service.fetch_markets()
        await service.fetch_markets()
        assert mock_api.get_markets.await_count == 2
