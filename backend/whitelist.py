"""
On-chain whitelist registry reads.

An account is whitelisted when the whitelist contract holds a positive
balance of the asset sha256(whitelist_id || account_id).
"""

import asyncio
import hashlib
import logging

import aiohttp

from config import VENUE_TIMEOUT_SEC
from errors import NetworkError, VenueRejected
from wallet import hex_to_bytes

logger = logging.getLogger(__name__)

CONTRACT_BALANCE_QUERY = """
query ContractBalance($contract: ContractId!, $asset: AssetId!) {
  contractBalance(contract: $contract, asset: $asset) {
    amount
  }
}
"""


def whitelist_asset_id(whitelist_id: str, account_id: str) -> str:
    digest = hashlib.sha256(hex_to_bytes(whitelist_id) + hex_to_bytes(account_id)).hexdigest()
    return "0x" + digest


class FuelWhitelistRegistry:
    def __init__(self, graphql_url: str, timeout_sec: float = VENUE_TIMEOUT_SEC):
        self.graphql_url = graphql_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)

    async def _contract_balance(self, contract_id: str, asset_id: str) -> int:
        body = {
            "query": CONTRACT_BALANCE_QUERY,
            "variables": {"contract": contract_id, "asset": asset_id},
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.graphql_url, json=body, timeout=self.timeout) as resp:
                    if resp.status != 200:
                        raise VenueRejected(f"GraphQL HTTP {resp.status}", status=resp.status)
                    data = await resp.json()
        except ValueError as e:
            raise VenueRejected(f"Malformed whitelist response: {e}", status=200) from e
        except asyncio.TimeoutError as e:
            raise NetworkError("Whitelist query timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Whitelist query failed: {e}") from e

        try:
            if data.get("errors"):
                raise VenueRejected(str(data["errors"][0].get("message", "GraphQL error")), status=200,
                                    payload=data["errors"])
            balance = (data.get("data") or {}).get("contractBalance") or {}
            return int(balance.get("amount") or 0)
        except (AttributeError, TypeError, ValueError, IndexError) as e:
            raise VenueRejected(f"Malformed whitelist response: {e}", status=200, payload=data) from e

    async def is_whitelisted(self, account_id: str, whitelist_id: str) -> bool:
        """Raises on transport errors so callers can fall back"""
        asset_id = whitelist_asset_id(whitelist_id, account_id)
        amount = await self._contract_balance(whitelist_id, asset_id)
        logger.debug(f"[Whitelist] {account_id[:10]} balance of {asset_id[:10]}: {amount}")
        return amount > 0
