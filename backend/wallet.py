"""
Owner wallets, session signers and address normalization.

Two owner signing schemes are supported:
- Native (Fuel): secp256k1 key, 32-byte address = sha256(public key),
  messages hashed with the "\\x19Fuel Signed Message" prefix.
- EVM: 20-byte address, EIP-191 personal_sign through eth-account, the
  65-byte r||s||v signature compacted to 64 bytes for the venue.

Both produce the same 64-byte compact form: r || (s | yParity << 255).
"""

import hashlib
import logging
import os
import re
from typing import Callable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys

from errors import InvalidAddress, NoWalletConnected, SignatureDeclined

logger = logging.getLogger(__name__)

_HEX_ADDRESS = re.compile(r"^0x([0-9a-f]{40}|[0-9a-f]{64})$")

FUEL_MESSAGE_PREFIX = b"\x19Fuel Signed Message:\n"

# Called with the bytes about to be signed; returning False means the user declined
ApproveCallback = Callable[[bytes], bool]


# ============================================================================
# ADDRESS HELPERS
# ============================================================================

def normalize_address(address: str) -> str:
    """Lowercase a 20- or 32-byte hex address, rejecting anything else"""
    if not isinstance(address, str):
        raise InvalidAddress(f"Address must be a string, got {type(address).__name__}")
    normalized = address.strip().lower()
    if not normalized.startswith("0x"):
        normalized = "0x" + normalized
    if not _HEX_ADDRESS.match(normalized):
        raise InvalidAddress(f"Invalid address: {address}")
    return normalized


def is_evm_address(address: str) -> bool:
    return len(normalize_address(address)) == 42


def to_owner_id_b256(address: str) -> str:
    """
    Canonical 32-byte owner id for the O2-Owner-Id header.

    EVM addresses are left-padded to 32 bytes; native addresses pass through.
    """
    normalized = normalize_address(address)
    return "0x" + normalized[2:].rjust(64, "0")


def hex_to_bytes(value: str) -> bytes:
    value = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(value)


def compact_signature(r: int, s: int, y_parity: int) -> bytes:
    """64-byte compact signature with the recovery bit folded into s"""
    return r.to_bytes(32, "big") + (s | (y_parity << 255)).to_bytes(32, "big")


def fuel_message_hash(message: bytes) -> bytes:
    payload = FUEL_MESSAGE_PREFIX + str(len(message)).encode("ascii") + message
    return hashlib.sha256(payload).digest()


# ============================================================================
# SECP256K1 SIGNER (native addresses, session keys)
# ============================================================================

class Secp256k1Signer:
    """Raw secp256k1 key with a sha256-derived 32-byte address"""

    def __init__(self, private_key: Optional[bytes] = None):
        if private_key is None:
            private_key = os.urandom(32)
        self._key = keys.PrivateKey(private_key)

    @classmethod
    def generate(cls) -> "Secp256k1Signer":
        return cls()

    @classmethod
    def from_hex(cls, private_key_hex: str) -> "Secp256k1Signer":
        return cls(hex_to_bytes(private_key_hex))

    @property
    def private_key_hex(self) -> str:
        return "0x" + self._key.to_bytes().hex()

    @property
    def address(self) -> str:
        public_key = self._key.public_key.to_bytes()  # 64 bytes, no prefix
        return "0x" + hashlib.sha256(public_key).hexdigest()

    def sign_hash(self, digest: bytes) -> bytes:
        signature = self._key.sign_msg_hash(digest)
        return compact_signature(signature.r, signature.s, signature.v)

    def sign(self, data: bytes) -> bytes:
        """Sign sha256(data)"""
        return self.sign_hash(hashlib.sha256(data).digest())


# ============================================================================
# OWNER WALLETS
# ============================================================================

class OwnerWallet:
    """Wallet that authorizes sessions on behalf of the owner"""

    is_fuel: bool = False

    def __init__(self, approve: Optional[ApproveCallback] = None):
        self.approve = approve

    @property
    def address(self) -> str:
        raise NotImplementedError

    def _sign(self, message: bytes) -> bytes:
        raise NotImplementedError

    async def sign_message(self, message: bytes) -> bytes:
        if self.approve is not None and not self.approve(message):
            logger.info(f"[Wallet] Signature declined for {self.address}")
            raise SignatureDeclined()
        return self._sign(message)


class FuelOwnerWallet(OwnerWallet):
    is_fuel = True

    def __init__(self, private_key_hex: str, approve: Optional[ApproveCallback] = None):
        super().__init__(approve)
        self._signer = Secp256k1Signer.from_hex(private_key_hex)

    @property
    def address(self) -> str:
        return self._signer.address

    def _sign(self, message: bytes) -> bytes:
        return self._signer.sign_hash(fuel_message_hash(message))


class EvmOwnerWallet(OwnerWallet):
    """EVM wallet adapted to the venue's compact signature format"""

    is_fuel = False

    def __init__(self, private_key_hex: str, approve: Optional[ApproveCallback] = None):
        super().__init__(approve)
        self._account = Account.from_key(private_key_hex)

    @property
    def address(self) -> str:
        return self._account.address.lower()

    def _sign(self, message: bytes) -> bytes:
        signed = self._account.sign_message(encode_defunct(primitive=message))
        # v is 27/28 for personal_sign
        y_parity = signed.v - 27 if signed.v >= 27 else signed.v
        return compact_signature(signed.r, signed.s, y_parity)


def wallet_from_key(private_key_hex: str, wallet_type: str = "evm",
                    approve: Optional[ApproveCallback] = None) -> OwnerWallet:
    if wallet_type == "fuel":
        return FuelOwnerWallet(private_key_hex, approve)
    if wallet_type == "evm":
        return EvmOwnerWallet(private_key_hex, approve)
    raise ValueError(f"Unknown wallet type: {wallet_type}")


# ============================================================================
# CONNECTION
# ============================================================================

class WalletConnection:
    """Holds the currently connected owner wallet"""

    def __init__(self):
        self._wallet: Optional[OwnerWallet] = None

    def connect(self, wallet: OwnerWallet) -> Optional[OwnerWallet]:
        """Connect a wallet. Returns the previously connected one, if any."""
        previous = self._wallet
        self._wallet = wallet
        logger.info(f"[Wallet] Connected {wallet.address} ({'fuel' if wallet.is_fuel else 'evm'})")
        return previous

    def disconnect(self) -> Optional[OwnerWallet]:
        previous = self._wallet
        self._wallet = None
        if previous:
            logger.info(f"[Wallet] Disconnected {previous.address}")
        return previous

    def get_connected_wallet(self) -> Optional[OwnerWallet]:
        return self._wallet

    def require_wallet(self) -> OwnerWallet:
        if self._wallet is None:
            raise NoWalletConnected()
        return self._wallet

    @property
    def is_connected(self) -> bool:
        return self._wallet is not None
