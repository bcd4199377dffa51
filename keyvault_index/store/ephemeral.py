"""
EphemeralSessionIndex — In-memory encrypted index bound to the process.

Provides the session-scoped store filled by every indexing pass:
- ``set(vault_identifier, record)`` — encrypt and store a vault record
- ``get(vault_identifier)`` — decrypt and return a record, or None
- ``search(query, ...)`` — ranked name/value search across vaults
- ``clear()`` / ``size()`` / ``vaults()``

Security Note:
    The key is random per process, held only in memory and never derived
    from a password. Records may carry secret values, so they must never
    be handed to the persistent cache without ``metadata_only()``.
    A memory dump of the process exposes the key (see the threat model
    in ``keyvault_index/store/__init__.py``).
"""
import logging
import threading
from typing import Optional
from datetime import datetime

from ..models import ResourceType, VaultRecord, utcnow
from ..search import SearchEngine, SearchHit, VaultSearchIndex
from .crypto import (
    deserialize_record,
    generate_key,
    seal,
    serialize_record,
    unseal,
)

logger = logging.getLogger("keyvault_index.session")

_DEFAULT_SEARCH_LIMIT = 100


class EphemeralSessionIndex:
    """Encrypted per-vault store rebuilt on every run.

    Each entry is kept as ``[iv][ciphertext]`` under the session key;
    a search index per vault is rebuilt whenever the vault is set.
    """

    def __init__(
        self,
        engine: Optional[SearchEngine] = None,
        include_values: bool = True,
        search_limit: int = _DEFAULT_SEARCH_LIMIT,
    ):
        self._key = generate_key()
        self._engine = engine or SearchEngine()
        self._include_values = include_values
        self._search_limit = search_limit
        self._cache: dict[str, bytes] = {}  # vault_identifier -> sealed record
        self._indexes: dict[str, VaultSearchIndex] = {}
        self._last_indexed: dict[str, datetime] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set(self, vault_identifier: str, record: VaultRecord) -> None:
        """Encrypt and store a record, then rebuild its search index.

        Values are dropped first when the index was created with
        ``include_values=False``.
        """
        stored = record.model_copy(deep=True)
        stored.vault_identifier = vault_identifier
        sealed = seal(
            serialize_record(stored, include_values=self._include_values),
            self._key,
        )
        if not self._include_values:
            stored = stored.metadata_only()
        index = VaultSearchIndex(
            stored, engine=self._engine, include_values=self._include_values,
        )
        with self._lock:
            self._cache[vault_identifier] = sealed
            self._indexes[vault_identifier] = index
            self._last_indexed[vault_identifier] = utcnow()
        logger.debug(
            "Session index set: vault=%s resources=%d",
            vault_identifier, stored.resource_count,
        )

    def get(self, vault_identifier: str) -> Optional[VaultRecord]:
        """Decrypt and return a record.

        Returns:
            The record, or None if the vault is not indexed.

        Raises:
            DecryptionError: If the stored entry cannot be decrypted; the
                session layer has no plaintext fallback.
        """
        with self._lock:
            sealed = self._cache.get(vault_identifier)
        if sealed is None:
            return None
        return deserialize_record(unseal(sealed, self._key))

    def find(self, name: str) -> Optional[VaultRecord]:
        """Look a vault up by identifier or by bare vault name."""
        record = self.get(name)
        if record is not None:
            return record
        with self._lock:
            identifier = next(
                (k for k, idx in self._indexes.items() if _vault_name(k) == name),
                None,
            )
        return self.get(identifier) if identifier else None

    def remove(self, vault_identifier: str) -> bool:
        with self._lock:
            self._indexes.pop(vault_identifier, None)
            self._last_indexed.pop(vault_identifier, None)
            return self._cache.pop(vault_identifier, None) is not None

    def is_stale(self, record: VaultRecord) -> bool:
        """True when the stored index was not built from ``record``."""
        with self._lock:
            index = self._indexes.get(record.vault_identifier)
        return index is None or index.is_stale(record)

    def search(
        self,
        query: str,
        resource_type: Optional[ResourceType] = None,
        vault: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[SearchHit]:
        """Ranked search over names (and values) of every indexed vault.

        Args:
            query: Search text; blank queries return no hits.
            resource_type: Restrict hits to one resource type.
            vault: Restrict hits to one vault, by identifier or name.
            limit: Maximum number of hits, defaults to the index limit.
        """
        if not query or not query.strip():
            return []
        with self._lock:
            indexes = list(self._indexes.items())
        hits: list[SearchHit] = []
        for identifier, index in indexes:
            if vault and vault not in (identifier, _vault_name(identifier)):
                continue
            hits.extend(index.search(query, resource_type=resource_type))
        return self._engine.rank(hits, limit or self._search_limit)

    def vaults(self) -> dict[str, datetime]:
        """Map of indexed vault identifiers to their last indexing time."""
        with self._lock:
            return dict(self._last_indexed)

    def clear(self) -> None:
        """Drop every entry and search index."""
        with self._lock:
            self._cache.clear()
            self._indexes.clear()
            self._last_indexed.clear()
        logger.info("Session index cleared")

    def size(self) -> int:
        with self._lock:
            return len(self._cache)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, vault_identifier: object) -> bool:
        with self._lock:
            return vault_identifier in self._cache


def _vault_name(identifier: str) -> str:
    """``https://name.vault.azure.net/`` -> ``name``."""
    host = identifier.split("://", 1)[-1]
    return host.split(".", 1)[0].rstrip("/")
