"""OAuth token encryption.

Tokens are encrypted with AES-256-GCM using a key derived from the master
key (ACCOUNTING_ENCRYPTION_KEY, 64 hex chars) with PBKDF2-SHA512 and a fresh
random salt per token.

Storage format: base64(salt + iv + auth_tag + ciphertext)
"""

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from gym_accounting.core.config import get_settings
from gym_accounting.core.errors import TokenEncryptionError

IV_LENGTH = 16
SALT_LENGTH = 64
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000

TAG_POSITION = SALT_LENGTH + IV_LENGTH
ENCRYPTED_POSITION = TAG_POSITION + TAG_LENGTH


def _master_key(master_key: str | None = None) -> bytes:
    key = master_key if master_key is not None else get_settings().accounting_encryption_key
    if not key:
        raise TokenEncryptionError("ACCOUNTING_ENCRYPTION_KEY environment variable not set")
    if len(key) != 64:
        raise TokenEncryptionError("ACCOUNTING_ENCRYPTION_KEY must be 64 hex characters (32 bytes)")
    try:
        return bytes.fromhex(key)
    except ValueError as e:
        raise TokenEncryptionError(f"ACCOUNTING_ENCRYPTION_KEY is not valid hex: {e}") from e


def _derive_key(master: bytes, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(master)


def encrypt_token(plaintext: str, master_key: str | None = None) -> str:
    """Encrypt an OAuth token for storage."""
    if not plaintext:
        raise TokenEncryptionError("Cannot encrypt empty token")

    master = _master_key(master_key)
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)

    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(_derive_key(master, salt)).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt_token(encrypted: str, master_key: str | None = None) -> str:
    """Decrypt a token produced by encrypt_token."""
    if not encrypted:
        raise TokenEncryptionError("Cannot decrypt empty token")

    master = _master_key(master_key)
    try:
        data = base64.b64decode(encrypted)
    except ValueError as e:
        raise TokenEncryptionError(f"Encrypted token is not valid base64: {e}") from e

    if len(data) <= ENCRYPTED_POSITION:
        raise TokenEncryptionError("Encrypted token is too short")

    salt = data[:SALT_LENGTH]
    iv = data[SALT_LENGTH:TAG_POSITION]
    tag = data[TAG_POSITION:ENCRYPTED_POSITION]
    ciphertext = data[ENCRYPTED_POSITION:]

    try:
        plaintext = AESGCM(_derive_key(master, salt)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise TokenEncryptionError("Token decryption failed: data is corrupted or the key is wrong") from e

    return plaintext.decode("utf-8")
