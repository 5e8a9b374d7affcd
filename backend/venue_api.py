"""
O2 Venue API client.

Thin aiohttp wrapper around the venue REST API. Every call carries a fixed
client-side timeout; failures surface as NetworkError (timeout/unreachable)
or VenueRejected (non-2xx with the decoded body). No retries at this layer.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from config import O2API, VENUE_TIMEOUT_SEC
from errors import NetworkError, VenueRejected
from models import Market, Order, Ticker
from wallet import to_owner_id_b256

logger = logging.getLogger(__name__)


class VenueApiClient:
    def __init__(
        self,
        base_url: str = O2API.MAINNET,
        timeout_sec: float = VENUE_TIMEOUT_SEC,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
        owner_id: Optional[str] = None,
    ) -> Any:
        """Send one request and decode the JSON body"""
        headers = {}
        if owner_id:
            headers[O2API.OWNER_HEADER] = owner_id

        url = f"{self.base_url}{path}"
        session = await self._get_session()

        try:
            async with session.request(
                method,
                url,
                params=params,
                json=body,
                headers=headers,
                timeout=self.timeout,
            ) as resp:
                text = await resp.text()
                payload = _decode(text)

                if resp.status < 200 or resp.status >= 300:
                    message = _error_message(payload) or f"HTTP {resp.status}"
                    logger.warning(f"[VenueAPI] {method} {path} rejected ({resp.status}): {message}")
                    raise VenueRejected(message, status=resp.status, payload=payload)

                return payload

        except asyncio.TimeoutError as e:
            raise NetworkError(f"{method} {path} timed out after {self.timeout.total}s") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    # -------------------------------------------------------------------------
    # ACCOUNTS
    # -------------------------------------------------------------------------

    async def create_trading_account(self, owner_address: str) -> str:
        """Idempotent: the same identity always yields the same account id"""
        owner_id = to_owner_id_b256(owner_address)
        data = await self._request(
            "POST", O2API.ACCOUNTS,
            body={"identity": {"Address": owner_id}},
            owner_id=owner_id,
        )
        return data["trade_account_id"]

    async def get_account(self, trade_account_id: str, owner_address: str) -> dict:
        data = await self._request(
            "GET", O2API.ACCOUNTS,
            params={"trade_account_id": trade_account_id},
            owner_id=to_owner_id_b256(owner_address),
        )
        return data or {}

    async def get_nonce(self, trade_account_id: str, owner_address: str) -> int:
        data = await self.get_account(trade_account_id, owner_address)
        account = data.get("trade_account") or {}
        return int(account.get("nonce") or 0)

    # -------------------------------------------------------------------------
    # SESSIONS
    # -------------------------------------------------------------------------

    async def create_session(self, registration: dict, owner_address: str) -> Any:
        body = {
            "nonce": registration["nonce"],
            "contract_id": registration["contract_id"],
            "session_id": registration["session_id"],
            "contract_ids": registration["contract_ids"],
            "signature": registration["signature"],
            "expiry": registration["expiry"],
        }
        return await self._request(
            "PUT", O2API.SESSION,
            body=body,
            owner_id=to_owner_id_b256(owner_address),
        )

    async def submit_actions(self, request: dict, owner_address: str) -> dict:
        """POST /session/actions. Returns {tx_id, orders}."""
        return await self._request(
            "POST", O2API.SESSION_ACTIONS,
            body=request,
            owner_id=to_owner_id_b256(owner_address),
        )

    # -------------------------------------------------------------------------
    # MARKETS
    # -------------------------------------------------------------------------

    async def get_markets(self) -> dict:
        """Raw markets response: {markets[], books_whitelist_id?, chain_id?, ...}"""
        return await self._request("GET", O2API.MARKETS)

    async def get_ticker(self, market_id: str) -> Optional[Ticker]:
        data = await self._request("GET", O2API.TICKER, params={"market_id": market_id})
        row = data[0] if isinstance(data, list) and data else data
        if not row or not isinstance(row, dict):
            return None
        return Ticker.from_api(market_id, row)

    # -------------------------------------------------------------------------
    # BALANCES, ORDERS
    # -------------------------------------------------------------------------

    async def get_balance(self, asset_id: str, contract_id: str, owner_address: str) -> dict:
        return await self._request(
            "GET", O2API.BALANCE,
            params={"asset_id": asset_id, "contract": contract_id},
            owner_id=to_owner_id_b256(owner_address),
        )

    async def get_orders(
        self,
        owner_address: str,
        market_id: Optional[str] = None,
        contract: Optional[str] = None,
        is_open: Optional[bool] = None,
        direction: str = "desc",
        count: int = 50,
    ) -> list[Order]:
        params: dict[str, Any] = {"direction": direction, "count": count}
        if market_id:
            params["market_id"] = market_id
        if contract:
            params["contract"] = contract
        if is_open is not None:
            params["is_open"] = "true" if is_open else "false"

        data = await self._request(
            "GET", O2API.ORDERS,
            params=params,
            owner_id=to_owner_id_b256(owner_address),
        )
        return [Order.from_api(o) for o in (data or {}).get("orders", [])]

    # -------------------------------------------------------------------------
    # ACCESS QUEUE
    # -------------------------------------------------------------------------

    async def verify_access_queue(self, owner_address: str, trade_account_id: Optional[str]) -> dict:
        return await self._request(
            "POST", O2API.ACCESS_QUEUE_VERIFY,
            body={"trading_account": trade_account_id, "wallet_address": owner_address},
            owner_id=owner_address,
        )

    async def assign_invite_code(self, owner_address: str, trade_account_id: Optional[str], code: str) -> dict:
        return await self._request(
            "PUT", O2API.ASSIGN_CODE,
            body={
                "invitation_code": code,
                "trade_account_id": trade_account_id,
                "wallet_address": owner_address,
            },
            owner_id=owner_address,
        )


def parse_markets(data: dict) -> list[Market]:
    return [Market.from_dict(m) for m in (data or {}).get("markets", [])]


def _decode(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"raw": text}


def _error_message(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        for key in ("message", "error", "reason", "raw"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return None
