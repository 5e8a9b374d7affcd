"""
Password-based encryption for session keys at rest.

AES-256-GCM with a PBKDF2-HMAC-SHA256 derived key. Each record gets its own
random salt and IV; all three outputs are base64 strings.
"""

import base64
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import PBKDF2_ITERATIONS
from errors import EncryptionFailure

SALT_LENGTH = 16
IV_LENGTH = 12      # 96 bits for GCM
KEY_LENGTH = 32     # AES-256


@dataclass
class EncryptedPayload:
    encrypted_data: str
    salt: str
    iv: str


def _derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt(data: str, password: str) -> EncryptedPayload:
    if not password:
        raise EncryptionFailure("Password not set for session encryption")

    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = _derive_key(password, salt)
    ciphertext = AESGCM(key).encrypt(iv, data.encode("utf-8"), None)

    return EncryptedPayload(
        encrypted_data=base64.b64encode(ciphertext).decode("ascii"),
        salt=base64.b64encode(salt).decode("ascii"),
        iv=base64.b64encode(iv).decode("ascii"),
    )


def decrypt(encrypted_data: str, password: str, salt: str, iv: str) -> str:
    if not password:
        raise EncryptionFailure("Password not set for session decryption")

    try:
        salt_bytes = base64.b64decode(salt)
        iv_bytes = base64.b64decode(iv)
        ciphertext = base64.b64decode(encrypted_data)
    except ValueError as e:
        raise EncryptionFailure(f"Encrypted payload is not valid base64: {e}") from e

    if len(salt_bytes) != SALT_LENGTH or len(iv_bytes) != IV_LENGTH:
        raise EncryptionFailure("Encrypted payload has invalid salt or IV length")

    key = _derive_key(password, salt_bytes)
    try:
        plaintext = AESGCM(key).decrypt(iv_bytes, ciphertext, None)
    except InvalidTag as e:
        raise EncryptionFailure("Failed to decrypt: wrong password or corrupted data") from e
    return plaintext.decode("utf-8")
