"""
Cache Crypto Core — Key derivation, encryption/decryption, and serialization.

Implements the symmetric primitive shared by both cache layers:
- Persistent layer: PBKDF2-HMAC-SHA256(password, salt) → AES-256-CBC/PKCS7,
  fresh IV on every save.
- Session layer: random 256-bit key held in process memory → AES-256-CBC,
  ``[iv 16B][ciphertext]`` per entry.

Security Note:
    Never log plaintext, passwords, keys or ciphertext values.
    CBC carries no authentication tag: a wrong key is detected by the
    PKCS7 padding check in most cases and by the payload decoder otherwise,
    both reported as ``DecryptionError``.
"""
import os
import logging
from typing import Any

import orjson
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..exceptions import DecryptionError
from ..models import VaultRecord

logger = logging.getLogger("keyvault_index.crypto")

KEY_LENGTH = 32  # AES-256
BLOCK_SIZE = 16  # 128-bit block, also the IV size
SALT_SIZE = 32
DEFAULT_ITERATIONS = 100_000


# ---------------------------------------------------------------------------
# Random material
# ---------------------------------------------------------------------------

def generate_salt(size: int = SALT_SIZE) -> bytes:
    """Return ``size`` cryptographically secure random bytes."""
    return os.urandom(size)


def generate_iv() -> bytes:
    """Return a fresh 128-bit IV."""
    return os.urandom(BLOCK_SIZE)


def generate_key() -> bytes:
    """Return a random 256-bit key (session layer)."""
    return os.urandom(KEY_LENGTH)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: str,
    salt: bytes,
    iterations: int = DEFAULT_ITERATIONS,
) -> bytes:
    """Derive a 32-byte encryption key using PBKDF2-HMAC-SHA256.

    Args:
        password: User supplied cache password.
        salt: Per-installation salt (see ``generate_salt``).
        iterations: PBKDF2 iteration count.

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def _cipher(key: bytes, iv: bytes) -> Cipher:
    if len(key) != KEY_LENGTH:
        raise ValueError(f"key must be {KEY_LENGTH} bytes, got {len(key)}")
    if len(iv) != BLOCK_SIZE:
        raise ValueError(f"iv must be {BLOCK_SIZE} bytes, got {len(iv)}")
    return Cipher(algorithms.AES(key), modes.CBC(iv))


def encrypt(plaintext: bytes, key: bytes, iv: bytes | None = None) -> tuple[bytes, bytes]:
    """Encrypt plaintext with AES-256-CBC and PKCS7 padding.

    Args:
        plaintext: Data to encrypt, may be empty.
        key: 32-byte key.
        iv: Optional IV; a fresh one is generated when omitted.

    Returns:
        Tuple of (ciphertext, iv).
    """
    iv = iv or generate_iv()
    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = _cipher(key, iv).encryptor()
    return encryptor.update(padded) + encryptor.finalize(), iv


def decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """Decrypt AES-256-CBC ciphertext and strip PKCS7 padding.

    Args:
        ciphertext: Output of ``encrypt``.
        key: 32-byte key used for encryption.
        iv: IV used for encryption.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        DecryptionError: Wrong key, wrong IV, truncated or corrupted data.
    """
    if not ciphertext or len(ciphertext) % BLOCK_SIZE:
        raise DecryptionError(
            f"ciphertext length {len(ciphertext)} is not a positive "
            f"multiple of {BLOCK_SIZE}"
        )
    try:
        decryptor = _cipher(key, iv).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as err:
        raise DecryptionError("Unable to decrypt payload") from err


def seal(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt with a fresh IV and return ``[iv 16B][ciphertext]``."""
    ciphertext, iv = encrypt(plaintext, key)
    return iv + ciphertext


def unseal(sealed: bytes, key: bytes) -> bytes:
    """Reverse ``seal``.

    Raises:
        DecryptionError: If the payload is too short or fails to decrypt.
    """
    _min = BLOCK_SIZE * 2  # iv + one block
    if len(sealed) < _min:
        raise DecryptionError(
            f"sealed payload too short: {len(sealed)} bytes (minimum {_min})"
        )
    return decrypt(sealed[BLOCK_SIZE:], key, sealed[:BLOCK_SIZE])


# ---------------------------------------------------------------------------
# Record serialization
# ---------------------------------------------------------------------------

def serialize_record(record: VaultRecord, include_values: bool = True) -> bytes:
    """Serialize a VaultRecord to JSON bytes.

    Args:
        record: Record to serialize.
        include_values: When False, secret and certificate values are
            dropped from the output.

    Returns:
        orjson-encoded bytes.
    """
    if not include_values:
        record = record.metadata_only()
    return orjson.dumps(record.model_dump(mode="json"))


def deserialize_record(data: bytes) -> VaultRecord:
    """Deserialize bytes produced by ``serialize_record``.

    Raises:
        DecryptionError: If the payload is not a valid record.
    """
    try:
        return VaultRecord.model_validate(orjson.loads(data))
    except ValueError as err:
        raise DecryptionError("Decrypted payload is not a vault record") from err


def serialize_record_map(records: dict[str, VaultRecord]) -> bytes:
    """Serialize a ``vault_identifier -> VaultRecord`` map, metadata only."""
    payload: dict[str, Any] = {
        identifier: record.metadata_only().model_dump(mode="json")
        for identifier, record in records.items()
    }
    return orjson.dumps(payload)


def deserialize_record_map(data: bytes) -> dict[str, VaultRecord]:
    """Deserialize bytes produced by ``serialize_record_map``.

    Raises:
        DecryptionError: If the payload is not a JSON object of records.
    """
    try:
        parsed = orjson.loads(data)
        if not isinstance(parsed, dict):
            raise ValueError(f"expected an object, got {type(parsed).__name__}")
        return {
            identifier: VaultRecord.model_validate(raw)
            for identifier, raw in parsed.items()
        }
    except ValueError as err:
        raise DecryptionError("Decrypted payload is not a record map") from err
