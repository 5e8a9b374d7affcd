"""
Clearing user data on disconnect and account switches.

Disconnect keeps terms acceptance so a returning user is not asked again.
Switching to a different owner also drops the previous owner's sessions,
session keys and terms acceptance.
"""

import logging
from typing import Optional

from durable_store import DurableStore
from session_keys import SessionKeyManager
from trading_accounts import TradingAccountService
from wallet import normalize_address

logger = logging.getLogger(__name__)


def clear_user_storage(sessions: SessionKeyManager, accounts: TradingAccountService) -> None:
    """Drop in-memory sessions, decrypted keys and account mappings"""
    sessions.clear_cache()
    accounts.clear_cache()
    logger.info("[UserStorage] User data cleared (terms acceptance kept)")


def clear_user_storage_for_account_change(
    sessions: SessionKeyManager,
    accounts: TradingAccountService,
    store: DurableStore,
    previous_address: Optional[str] = None,
) -> None:
    clear_user_storage(sessions, accounts)

    if previous_address:
        previous = normalize_address(previous_address)
        removed = sessions.delete_sessions_for_owner(previous)
        store.delete_terms_acceptance(previous)
        logger.info(f"[UserStorage] Removed {removed} session(s) and terms acceptance for {previous}")


def clear_all_session_storage(sessions: SessionKeyManager, store: DurableStore) -> None:
    sessions.clear_cache()
    store.delete_all_sessions()
    logger.info("[UserStorage] All sessions and session keys deleted")
