"""
Trading account lookup and lazy creation.

One trading account per normalized owner address. Lookups go through an
in-memory owner -> account id cache, then the durable store, and only then
the venue (whose create call is idempotent).
"""

import logging
from typing import Optional

from durable_store import DurableStore
from errors import InvalidAddress
from models import TradingAccount
from scheduler import Clock, SystemClock
from venue_api import VenueApiClient
from wallet import normalize_address

logger = logging.getLogger(__name__)


class TradingAccountService:
    def __init__(
        self,
        api: VenueApiClient,
        store: DurableStore,
        clock: Optional[Clock] = None,
        trust_local_cache: bool = True,
    ):
        self.api = api
        self.store = store
        self.clock = clock or SystemClock()
        # When False, a cached/stored account is re-confirmed against the venue
        self.trust_local_cache = trust_local_cache
        self._address_cache: dict[str, str] = {}  # owner -> account id

    async def get_or_create_trading_account(self, owner_address: str) -> TradingAccount:
        owner = normalize_address(owner_address)

        local = self._lookup_local(owner)
        if local is not None:
            if self.trust_local_cache:
                return local
            return await self._verify_with_venue(local)

        # Idempotent on the venue side: returns the existing id if there is one
        account_id = await self.api.create_trading_account(owner)
        account = TradingAccount(
            id=account_id,
            owner_address=owner,
            nonce=0,  # Fetched from the venue when a signed operation needs it
            created_at=self.clock.now_ms(),
        )
        self.store.put_trading_account(account)
        self._address_cache[owner] = account.id
        logger.info(f"[TradingAccounts] Trading account {account.id} bound to {owner}")
        return account

    def _lookup_local(self, owner: str) -> Optional[TradingAccount]:
        cached_id = self._address_cache.get(owner)
        if cached_id:
            stored = self.store.get_trading_account(cached_id)
            if stored:
                return stored
            # Cache points at a row that no longer exists
            del self._address_cache[owner]

        stored = self.store.get_trading_account_by_owner(owner)
        if stored:
            self._address_cache[owner] = stored.id
        return stored

    async def _verify_with_venue(self, local: TradingAccount) -> TradingAccount:
        account_id = await self.api.create_trading_account(local.owner_address)
        if account_id == local.id:
            return local

        logger.warning(
            f"[TradingAccounts] Local account {local.id} for {local.owner_address} "
            f"superseded by venue account {account_id}"
        )
        account = TradingAccount(
            id=account_id,
            owner_address=local.owner_address,
            nonce=0,
            created_at=self.clock.now_ms(),
        )
        self.store.put_trading_account(account)
        self._address_cache[local.owner_address] = account.id
        return account

    def get_trading_account(self, owner_address: str) -> Optional[TradingAccount]:
        """Stored account for this owner, without contacting the venue"""
        try:
            owner = normalize_address(owner_address)
        except InvalidAddress:
            return None
        return self._lookup_local(owner)

    def update_nonce(self, account_id: str, nonce: int) -> None:
        self.store.update_nonce(account_id, nonce)

    def clear_cache(self) -> None:
        self._address_cache.clear()
