"""
Tests for the EphemeralSessionIndex.

Tests cover:
- Encrypted set/get round trips
- Value retention and the metadata-only mode
- Ranked search with filters and limits
- Staleness, removal and clearing
"""
import pytest

from keyvault_index.exceptions import DecryptionError
from keyvault_index.models import ResourceType, SecretMeta
from keyvault_index.store import EphemeralSessionIndex

from conftest import make_record, vault_url


@pytest.fixture
def index():
    return EphemeralSessionIndex()


# --- Test Set / Get ---

class TestSetGet:
    """Tests for set and get."""

    def test_round_trip(self, index, record):
        index.set(record.vault_identifier, record)
        assert index.get(record.vault_identifier).model_dump() == record.model_dump()

    def test_keeps_values(self, index, record):
        index.set(record.vault_identifier, record)
        assert index.get(record.vault_identifier).secrets[0].value == "hunter2"

    def test_entries_are_encrypted(self, index, record):
        index.set(record.vault_identifier, record)
        sealed = index._cache[record.vault_identifier]
        assert b"hunter2" not in sealed
        assert b"db-password" not in sealed

    def test_same_record_different_ciphertext(self, index, record):
        """Every entry gets its own IV."""
        index.set("a", record)
        index.set("b", record)
        assert index._cache["a"][:16] != index._cache["b"][:16]

    def test_missing(self, index):
        assert index.get("missing") is None

    def test_set_copies_record(self, index, record):
        index.set(record.vault_identifier, record)
        record.secrets.clear()
        assert len(index.get(record.vault_identifier).secrets) == 1

    def test_corrupt_entry_raises(self, index, record):
        index.set(record.vault_identifier, record)
        index._cache[record.vault_identifier] = b"\x00" * 48
        with pytest.raises(DecryptionError):
            index.get(record.vault_identifier)

    def test_keys_are_per_instance(self, record):
        first, second = EphemeralSessionIndex(), EphemeralSessionIndex()
        first.set(record.vault_identifier, record)
        second._cache[record.vault_identifier] = first._cache[record.vault_identifier]
        with pytest.raises(DecryptionError):
            second.get(record.vault_identifier)

    def test_find_by_name(self, index, record):
        index.set(record.vault_identifier, record)
        assert index.find("alpha").vault_identifier == vault_url("alpha")
        assert index.find(vault_url("alpha")) is not None
        assert index.find("missing") is None

    def test_contains(self, index, record):
        index.set(record.vault_identifier, record)
        assert record.vault_identifier in index
        assert "missing" not in index


class TestWithoutValues:
    """Tests for an index created with include_values=False."""

    def test_drops_values(self, record):
        index = EphemeralSessionIndex(include_values=False)
        index.set(record.vault_identifier, record)
        assert index.get(record.vault_identifier).has_values() is False

    def test_no_value_search(self, record):
        index = EphemeralSessionIndex(include_values=False)
        index.set(record.vault_identifier, record)
        assert index.search("hunter2") == []


# --- Test Search ---

class TestSearch:
    """Tests for ranked search."""

    def test_ranked_across_vaults(self, index):
        index.set(vault_url("a"), make_record("a", secrets=["my-db-conn"]))
        index.set(vault_url("b"), make_record("b", secrets=["db", "dxb"]))
        index.set(vault_url("c"), make_record("c", secrets=["db-conn", "other"]))
        assert [h.name for h in index.search("db")] == ["db", "db-conn", "my-db-conn", "dxb"]

    def test_value_search(self, index, record):
        index.set(record.vault_identifier, record)
        hits = index.search("hunter2")
        assert [h.name for h in hits] == ["db-password"]
        assert hits[0].matched_field == "value"

    def test_blank_query(self, index, record):
        index.set(record.vault_identifier, record)
        assert index.search("") == []
        assert index.search("   ") == []

    def test_type_filter(self, index, record):
        index.set(record.vault_identifier, record)
        hits = index.search("web", resource_type=ResourceType.CERTIFICATE)
        assert [h.name for h in hits] == ["web-tls"]
        assert index.search("web", resource_type=ResourceType.SECRET) == []

    def test_vault_filter(self, index):
        index.set(vault_url("a"), make_record("a", secrets=["db-one"]))
        index.set(vault_url("b"), make_record("b", secrets=["db-two"]))
        assert [h.name for h in index.search("db", vault="b")] == ["db-two"]
        assert [h.name for h in index.search("db", vault=vault_url("a"))] == ["db-one"]

    def test_default_limit(self):
        index = EphemeralSessionIndex(search_limit=5)
        index.set(vault_url("a"), make_record("a", secrets=[f"db-{i:03}" for i in range(20)]))
        assert len(index.search("db")) == 5
        assert len(index.search("db", limit=12)) == 12

    def test_hits_expose_no_values(self, index, record):
        index.set(record.vault_identifier, record)
        for hit in index.search("hunter"):
            assert "value" not in hit.to_dict()["resource"]

    def test_reindex_replaces_hits(self, index):
        index.set(vault_url("a"), make_record("a", secrets=["old-secret"]))
        index.set(vault_url("a"), make_record("a", secrets=["new-secret"]))
        assert [h.name for h in index.search("secret")] == ["new-secret"]


# --- Test Lifecycle ---

class TestLifecycle:
    """Tests for staleness, removal and clearing."""

    def test_stale(self, index, record):
        assert index.is_stale(record) is True
        index.set(record.vault_identifier, record)
        assert index.is_stale(record) is False
        changed = record.model_copy(deep=True)
        changed.secrets.append(SecretMeta(name="extra"))
        assert index.is_stale(changed) is True

    def test_remove(self, index, record):
        index.set(record.vault_identifier, record)
        assert index.remove(record.vault_identifier) is True
        assert index.get(record.vault_identifier) is None
        assert index.search("db-password") == []
        assert index.remove(record.vault_identifier) is False

    def test_clear(self, index, record):
        index.set(record.vault_identifier, record)
        index.clear()
        assert index.size() == 0
        assert len(index) == 0
        assert index.vaults() == {}
        assert index.search("db-password") == []

    def test_vaults(self, index, record):
        index.set(record.vault_identifier, record)
        assert list(index.vaults()) == [record.vault_identifier]
