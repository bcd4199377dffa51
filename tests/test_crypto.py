"""
Tests for the cache crypto core.

Tests cover:
- PBKDF2 key derivation
- AES-CBC encrypt/decrypt round trips, including empty payloads
- Failure modes reported as DecryptionError
- Record and record-map serialization
"""
import pytest

from keyvault_index.exceptions import DecryptionError
from keyvault_index.store.crypto import (
    BLOCK_SIZE,
    KEY_LENGTH,
    decrypt,
    derive_key,
    deserialize_record,
    deserialize_record_map,
    encrypt,
    generate_iv,
    generate_key,
    generate_salt,
    seal,
    serialize_record,
    serialize_record_map,
    unseal,
)


# --- Test Key Derivation ---

class TestKeyDerivation:
    """Tests for derive_key."""

    def test_key_length(self):
        """Derived keys are 256 bits."""
        key = derive_key("password", generate_salt(), iterations=1_000)
        assert len(key) == KEY_LENGTH

    def test_deterministic(self):
        """Same password, salt and iterations give the same key."""
        salt = generate_salt()
        assert derive_key("pw", salt, 1_000) == derive_key("pw", salt, 1_000)

    def test_salt_changes_key(self):
        """A different salt gives a different key."""
        assert derive_key("pw", b"a" * 32, 1_000) != derive_key("pw", b"b" * 32, 1_000)

    def test_password_changes_key(self):
        """A different password gives a different key."""
        salt = generate_salt()
        assert derive_key("pw1", salt, 1_000) != derive_key("pw2", salt, 1_000)


# --- Test Random Material ---

class TestRandomMaterial:
    """Tests for salts, IVs and session keys."""

    def test_salt_default_size(self):
        assert len(generate_salt()) == 32

    def test_salt_custom_size(self):
        assert len(generate_salt(16)) == 16

    def test_iv_size(self):
        assert len(generate_iv()) == BLOCK_SIZE

    def test_values_are_random(self):
        assert generate_iv() != generate_iv()
        assert generate_key() != generate_key()


# --- Test Encryption ---

class TestEncryption:
    """Tests for encrypt/decrypt."""

    @pytest.mark.parametrize("payload", [b"", b"x", b"a" * 16, b"\x00\xff" * 100])
    def test_round_trip(self, payload):
        """decrypt(encrypt(x)) == x for any payload, including empty."""
        key = generate_key()
        ciphertext, iv = encrypt(payload, key)
        assert decrypt(ciphertext, key, iv) == payload

    def test_ciphertext_is_padded(self):
        """PKCS7 always adds at least one byte of padding."""
        ciphertext, _ = encrypt(b"a" * 16, generate_key())
        assert len(ciphertext) == 32

    def test_fresh_iv_each_call(self):
        """Two encryptions of the same payload differ."""
        key = generate_key()
        first, iv1 = encrypt(b"same payload", key)
        second, iv2 = encrypt(b"same payload", key)
        assert iv1 != iv2
        assert first != second

    def test_explicit_iv(self):
        """A caller supplied IV is used as is."""
        key, iv = generate_key(), generate_iv()
        _, used = encrypt(b"data", key, iv)
        assert used == iv

    def test_truncated_ciphertext(self):
        """Ciphertext that is not a multiple of the block size is rejected."""
        key = generate_key()
        ciphertext, iv = encrypt(b"some data", key)
        with pytest.raises(DecryptionError):
            decrypt(ciphertext[:-1], key, iv)

    def test_empty_ciphertext(self):
        with pytest.raises(DecryptionError):
            decrypt(b"", generate_key(), generate_iv())

    def test_bad_iv_length(self):
        key = generate_key()
        ciphertext, _ = encrypt(b"some data", key)
        with pytest.raises(DecryptionError):
            decrypt(ciphertext, key, b"short")

    def test_bad_key_length(self):
        with pytest.raises(ValueError):
            encrypt(b"data", b"short-key")


# --- Test Sealed Payloads ---

class TestSeal:
    """Tests for the [iv][ciphertext] session format."""

    def test_round_trip(self):
        key = generate_key()
        assert unseal(seal(b"payload", key), key) == b"payload"

    def test_layout(self):
        """The IV is prepended to the ciphertext."""
        sealed = seal(b"payload", generate_key())
        assert len(sealed) == BLOCK_SIZE * 2

    def test_too_short(self):
        with pytest.raises(DecryptionError):
            unseal(b"x" * 10, generate_key())

    def test_wrong_key_never_yields_a_record(self, record):
        """A wrong key fails at the padding check or at decoding."""
        sealed = seal(serialize_record(record), generate_key())
        with pytest.raises(DecryptionError):
            deserialize_record(unseal(sealed, generate_key()))


# --- Test Serialization ---

class TestSerialization:
    """Tests for record (de)serialization."""

    def test_record_round_trip(self, record):
        assert deserialize_record(serialize_record(record)).model_dump() == record.model_dump()

    def test_record_without_values(self, record):
        restored = deserialize_record(serialize_record(record, include_values=False))
        assert restored.has_values() is False
        assert restored.secrets[0].name == "db-password"
        assert b"hunter2" not in serialize_record(record, include_values=False)

    def test_record_map_strips_values(self, record):
        """Maps for the persistent cache never carry values."""
        payload = serialize_record_map({record.vault_identifier: record})
        assert b"hunter2" not in payload
        assert b"MIIBcertificate" not in payload
        restored = deserialize_record_map(payload)
        assert (
            restored[record.vault_identifier].model_dump()
            == record.metadata_only().model_dump()
        )

    def test_record_map_rejects_garbage(self):
        with pytest.raises(DecryptionError):
            deserialize_record_map(b"\x00\x01not json")

    def test_record_map_rejects_non_object(self):
        with pytest.raises(DecryptionError):
            deserialize_record_map(b"[1, 2, 3]")

    def test_record_rejects_invalid_record(self):
        with pytest.raises(DecryptionError):
            deserialize_record(b'{"name": "missing identifier"}')
