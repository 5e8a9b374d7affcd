"""
Session Key Manager - delegated signing sessions.

A session is a fresh secp256k1 key that the owner wallet authorizes to act
on a set of contracts until an expiry. The owner signs the registration
once; every later action batch is signed by the session key together with
the trading account nonce.

Private keys never reach the store in plaintext: {privateKey, address} is
JSON-encoded and encrypted with the in-process password first.
"""

import json
import logging
import struct
from typing import Optional

from config import DEFAULT_CHAIN_ID, DEFAULT_SESSION_EXPIRY_MS
from durable_store import DurableStore
from encryption import decrypt, encrypt
from errors import AgentError, EmptyContractSet, EncryptionFailure, PersistenceFailure
from models import Session, SessionKeyRecord, TradingAccount
from scheduler import Clock, SystemClock
from trading_accounts import TradingAccountService
from venue_api import VenueApiClient
from wallet import (
    OwnerWallet,
    Secp256k1Signer,
    WalletConnection,
    hex_to_bytes,
    normalize_address,
)

logger = logging.getLogger(__name__)

SET_SESSION_SELECTOR = b"set_session"


# ============================================================================
# CANONICAL ENCODING
# ============================================================================

def u64(value: int) -> bytes:
    return struct.pack(">Q", int(value))


def encode_session_registration(nonce: int, chain_id: int, session_address: str,
                                expiry: int, contract_ids: list[str]) -> bytes:
    """Bytes the owner signs to authorize a session key"""
    parts = [
        u64(nonce),
        u64(chain_id),
        SET_SESSION_SELECTOR,
        hex_to_bytes(session_address),
        u64(expiry),
        u64(len(contract_ids)),
    ]
    parts.extend(hex_to_bytes(cid) for cid in contract_ids)
    return b"".join(parts)


def encode_session_payload(nonce: int, data: bytes, length: Optional[int] = None) -> bytes:
    """u64(nonce) || [u64(length)] || data, signed by the session key"""
    prefix = u64(nonce)
    if length:
        prefix += u64(length)
    return prefix + data


# ============================================================================
# SESSION KEY MANAGER
# ============================================================================

class SessionKeyManager:
    def __init__(
        self,
        api: VenueApiClient,
        store: DurableStore,
        accounts: TradingAccountService,
        wallets: WalletConnection,
        clock: Optional[Clock] = None,
        chain_id: Optional[int] = None,
        session_expiry_ms: int = DEFAULT_SESSION_EXPIRY_MS,
    ):
        self.api = api
        self.store = store
        self.accounts = accounts
        self.wallets = wallets
        self.clock = clock or SystemClock()
        self.chain_id = chain_id
        self.session_expiry_ms = session_expiry_ms
        self._password: Optional[str] = None
        self._sessions: dict[str, Session] = {}             # trade account id -> session
        self._signers: dict[str, Secp256k1Signer] = {}      # session id -> decrypted signer

    def set_password(self, password: Optional[str]) -> None:
        self._password = password or None

    def use_venue_chain_id(self, venue_chain_id: Optional[int]) -> int:
        """Adopt the chain id from the markets listing unless one is configured"""
        if self.chain_id is None:
            self.chain_id = venue_chain_id if venue_chain_id is not None else DEFAULT_CHAIN_ID
            logger.info(f"[Sessions] Using chain id {self.chain_id}")
        return self.chain_id

    @property
    def has_password(self) -> bool:
        return self._password is not None

    def _require_password(self, action: str) -> str:
        if not self._password:
            raise EncryptionFailure(f"Password not set for session {action}")
        return self._password

    # -------------------------------------------------------------------------
    # KEY GENERATION & SIGNING
    # -------------------------------------------------------------------------

    def generate(self) -> Secp256k1Signer:
        """Fresh keypair; keys are never reused across sessions"""
        return Secp256k1Signer.generate()

    async def build_session_registration(
        self,
        owner_wallet: OwnerWallet,
        session_signer: Secp256k1Signer,
        trade_account_id: str,
        nonce: int,
        contract_ids: list[str],
        expiry: int,
    ) -> dict:
        """Registration payload signed by the owner wallet"""
        if not contract_ids:
            raise EmptyContractSet()

        message = encode_session_registration(
            nonce, self.use_venue_chain_id(None), session_signer.address, expiry, contract_ids,
        )
        signature = await owner_wallet.sign_message(message)

        return {
            "nonce": str(nonce),
            "contract_id": trade_account_id,
            "contract_ids": list(contract_ids),
            "session_id": {"Address": session_signer.address},
            "signature": {"Secp256k1": "0x" + signature.hex()},
            "expiry": str(expiry),
        }

    def sign(self, session_id: str, nonce: int, data: bytes, length: Optional[int] = None) -> bytes:
        """Sign an action batch with the session key (not the owner wallet)"""
        signer = self.get_session_signer(session_id)
        return signer.sign(encode_session_payload(nonce, data, length))

    # -------------------------------------------------------------------------
    # SESSION CREATION
    # -------------------------------------------------------------------------

    async def create_session(
        self,
        owner_address: str,
        contract_ids: list[str],
        expiry: Optional[int] = None,
        trading_account: Optional[TradingAccount] = None,
    ) -> Session:
        password = self._require_password("encryption")
        if not contract_ids:
            raise EmptyContractSet()

        owner = normalize_address(owner_address)
        owner_wallet = self.wallets.require_wallet()
        account = trading_account or await self.accounts.get_or_create_trading_account(owner)

        session_signer = self.generate()
        nonce = await self.api.get_nonce(account.id, owner)
        expiry = expiry or self.clock.now_ms() + self.session_expiry_ms

        registration = await self.build_session_registration(
            owner_wallet, session_signer, account.id, nonce, contract_ids, expiry,
        )
        await self.api.create_session(registration, owner)
        logger.info(f"[Sessions] Registered session {session_signer.address[:12]}... for {owner}")

        try:
            self.accounts.update_nonce(account.id, nonce + 1)
        except AgentError as e:
            # Venue holds the authoritative nonce; it is refetched before each batch
            logger.error(f"[Sessions] Failed to update nonce: {e}")

        now = self.clock.now_ms()
        key_data = json.dumps({
            "privateKey": session_signer.private_key_hex,
            "address": session_signer.address,
        })
        try:
            encrypted = encrypt(key_data, password)
            self.store.put_session_key(SessionKeyRecord(
                id=session_signer.address,
                encrypted_private_key=encrypted.encrypted_data,
                salt=encrypted.salt,
                iv=encrypted.iv,
                created_at=now,
            ))
        except (EncryptionFailure, PersistenceFailure) as e:
            raise PersistenceFailure(f"Failed to store session key: {e.message}") from e

        session = Session(
            id=session_signer.address,
            trade_account_id=account.id,
            owner_address=owner,
            contract_ids=list(contract_ids),
            expiry=expiry,
            created_at=now,
            is_active=True,
        )
        try:
            self.store.put_session(session)
        except PersistenceFailure as e:
            raise PersistenceFailure(f"Failed to store session metadata: {e.message}") from e

        self._sessions[account.id] = session
        self._signers[session.id] = session_signer
        return session

    # -------------------------------------------------------------------------
    # QUERIES
    # -------------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.store.get_session(session_id)

    def get_active_session(self, owner_address: str) -> Optional[Session]:
        """Most recently created unexpired active session for this owner"""
        owner = normalize_address(owner_address)
        now = self.clock.now_ms()
        live = [s for s in self.store.get_sessions_by_owner(owner) if s.is_live(now)]
        if not live:
            return None
        live.sort(key=lambda s: s.created_at, reverse=True)
        session = live[0]
        self._sessions[session.trade_account_id] = session
        return session

    def has_active_session(self, owner_address: str) -> bool:
        return self.get_active_session(owner_address) is not None

    def get_cached_session(self, trade_account_id: str) -> Optional[Session]:
        return self._sessions.get(trade_account_id)

    def get_session_key(self, session_id: str) -> Optional[dict]:
        """Decrypted {private_key, address}, or None if no key is stored"""
        password = self._require_password("decryption")
        record = self.store.get_session_key(session_id)
        if record is None:
            return None
        plaintext = decrypt(record.encrypted_private_key, password, record.salt, record.iv)
        key_data = json.loads(plaintext)
        return {"private_key": key_data["privateKey"], "address": key_data["address"]}

    def get_session_signer(self, session_id: str) -> Secp256k1Signer:
        signer = self._signers.get(session_id)
        if signer is not None:
            return signer
        key = self.get_session_key(session_id)
        if key is None:
            raise EncryptionFailure(f"No stored key for session {session_id}")
        signer = Secp256k1Signer.from_hex(key["private_key"])
        self._signers[session_id] = signer
        return signer

    # -------------------------------------------------------------------------
    # HOUSEKEEPING
    # -------------------------------------------------------------------------

    def deactivate_session(self, session_id: str) -> None:
        self.store.set_session_active(session_id, False)
        self._forget(session_id)

    def delete_session(self, session_id: str) -> None:
        """Remove a session and its encrypted key together"""
        self.store.delete_session(session_id)
        self._forget(session_id)

    def delete_sessions_for_owner(self, owner_address: str) -> int:
        owner = normalize_address(owner_address)
        for session in self.store.get_sessions_by_owner(owner):
            self._forget(session.id)
        return self.store.delete_sessions_by_owner(owner)

    def _forget(self, session_id: str) -> None:
        self._signers.pop(session_id, None)
        for account_id, session in list(self._sessions.items()):
            if session.id == session_id:
                del self._sessions[account_id]

    def clear_cache(self) -> None:
        """Drop in-memory sessions and decrypted keys"""
        self._sessions.clear()
        self._signers.clear()
