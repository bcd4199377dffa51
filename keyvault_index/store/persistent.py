"""
PersistentVaultCache — Password-encrypted, metadata-only cache of vaults.

Provides the durable cache used between runs:
- ``load(password)`` / ``save(password)`` — decrypt from / encrypt to disk
- ``upsert(vault_identifier, record)`` — whole-record replace
- ``global_search(term)`` — cross-vault name search
- ``expiring_certificates(days)`` / ``certificate_alerts()`` — expiry queries
- ``clear()`` — drop the map and every on-disk artifact

On-disk layout, three files in the cache directory:
    cache.salt  raw salt bytes, generated once and reused
    cache.iv    raw IV bytes, replaced on every save
    cache.dat   AES-256-CBC/PKCS7 of the JSON map ``vault_identifier -> record``

Security Note:
    The cache never stores secret, key or certificate material: records
    are reduced with ``VaultRecord.metadata_only()`` on the way in and
    again when serialized. Never log the password or the derived key.
"""
import os
import asyncio
import logging
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime, timedelta, timezone

from ..conf import IndexConfig
from ..exceptions import DecryptionError, PersistenceError
from ..expiration import ExpirationStatus, as_utc, classify
from ..models import ResourceType, VaultRecord
from ..search import SearchEngine, SearchHit
from .crypto import (
    decrypt,
    derive_key,
    deserialize_record_map,
    encrypt,
    generate_salt,
    serialize_record_map,
)

logger = logging.getLogger("keyvault_index.cache")


class PersistentVaultCache:
    """Durable encrypted cache of vault metadata.

    A single lock guards the in-memory map for every read and write; an
    asyncio lock serializes load, save and clear against each other.
    The cache is a soft cache: any failure to read it results in an empty
    map, never in an error surfaced to the caller.
    """

    def __init__(
        self,
        config: Optional[IndexConfig] = None,
        engine: Optional[SearchEngine] = None,
    ):
        self.config = config or IndexConfig()
        self._engine = engine or SearchEngine(self.config.fuzzy_threshold)
        self._cache: dict[str, VaultRecord] = {}
        self._lock = threading.Lock()
        self._io_lock = asyncio.Lock()
        self._salt: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def cache_file(self) -> Path:
        return self.config.cache_file

    @property
    def salt_file(self) -> Path:
        return self.config.salt_file

    @property
    def iv_file(self) -> Path:
        return self.config.iv_file

    def _artifacts(self) -> tuple[Path, Path, Path]:
        return self.salt_file, self.iv_file, self.cache_file

    # ------------------------------------------------------------------
    # Disk helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _read_artifacts(self) -> tuple[Optional[bytes], Optional[tuple[bytes, bytes]]]:
        """Return (salt, (iv, ciphertext)); the pair is None when a file is missing."""
        salt = self.salt_file.read_bytes() if self.salt_file.exists() else None
        if salt is None or not (self.iv_file.exists() and self.cache_file.exists()):
            return salt, None
        return salt, (self.iv_file.read_bytes(), self.cache_file.read_bytes())

    def _write_artifacts(self, salt: Optional[bytes], iv: bytes, ciphertext: bytes) -> None:
        """Write through temporary files; the IV is swapped in last."""
        self.config.cache_dir.mkdir(parents=True, exist_ok=True)
        if salt is not None:
            _atomic_write(self.salt_file, salt)
        _atomic_write(self.cache_file, ciphertext)
        _atomic_write(self.iv_file, iv)

    def _remove_artifacts(self) -> None:
        for path in self._artifacts():
            path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def load(self, password: str) -> int:
        """Decrypt the on-disk cache into memory.

        A missing artifact means first run and yields an empty cache.
        A wrong password, corrupted file or format change also yields an
        empty cache; nothing is raised.

        Args:
            password: Cache password.

        Returns:
            Number of vaults loaded.
        """
        async with self._io_lock:
            try:
                salt, artifacts = await asyncio.to_thread(self._read_artifacts)
            except OSError as err:
                logger.warning("Unable to read cache files, starting fresh: %s", err)
                salt, artifacts = None, None
            if salt is not None:
                self._salt = salt

            if artifacts is None:
                with self._lock:
                    self._cache = {}
                logger.debug("No cache found in %s", self.config.cache_dir)
                return 0

            iv, ciphertext = artifacts
            try:
                key = await asyncio.to_thread(
                    derive_key, password, salt, self.config.kdf_iterations,
                )
                plaintext = decrypt(ciphertext, key, iv)
                records = deserialize_record_map(plaintext)
            except DecryptionError as err:
                logger.warning(
                    "Cache unreadable (wrong password or corrupted), starting fresh: %s",
                    err,
                )
                records = {}

            with self._lock:
                self._cache = records
        logger.info("Cache loaded: %d vault(s)", len(records))
        return len(records)

    async def save(self, password: str) -> None:
        """Encrypt the whole map with a fresh IV and write it to disk.

        The salt is generated and written on the first save only. Saves,
        loads and clears run one at a time, so the IV on disk always
        belongs to the ciphertext next to it.

        Args:
            password: Cache password.

        Raises:
            PersistenceError: If the files cannot be written. The in-memory
                cache is left untouched and stays usable.
        """
        async with self._io_lock:
            new_salt: Optional[bytes] = None
            if self._salt is None:
                new_salt = generate_salt()
            salt = self._salt or new_salt

            with self._lock:
                payload = serialize_record_map(self._cache)
                count = len(self._cache)

            key = await asyncio.to_thread(
                derive_key, password, salt, self.config.kdf_iterations,
            )
            ciphertext, iv = encrypt(payload, key)
            try:
                await asyncio.to_thread(self._write_artifacts, new_salt, iv, ciphertext)
            except OSError as err:
                logger.error("Failed to save encrypted cache: %s", err)
                raise PersistenceError(f"Failed to save encrypted cache: {err}") from err
            self._salt = salt
        logger.info("Cache saved: %d vault(s)", count)

    def upsert(self, vault_identifier: str, record: VaultRecord) -> None:
        """Replace the whole record of a vault, stripped of any value."""
        stored = record.metadata_only()
        stored.vault_identifier = vault_identifier
        with self._lock:
            self._cache[vault_identifier] = stored
        logger.debug(
            "Cache upsert: vault=%s resources=%d",
            vault_identifier, stored.resource_count,
        )

    def remove(self, vault_identifier: str) -> bool:
        with self._lock:
            return self._cache.pop(vault_identifier, None) is not None

    def get(self, vault_identifier: str) -> Optional[VaultRecord]:
        """Return a copy of a vault record, or None."""
        with self._lock:
            record = self._cache.get(vault_identifier)
            return record.model_copy(deep=True) if record else None

    def vaults(self) -> dict[str, datetime]:
        """Map of cached vault identifiers to their last indexing time."""
        with self._lock:
            return {k: v.last_indexed for k, v in self._cache.items()}

    def size(self) -> int:
        with self._lock:
            return len(self._cache)

    def __len__(self) -> int:
        return self.size()

    def global_search(
        self,
        term: str,
        resource_type: Optional[ResourceType] = None,
    ) -> list[SearchHit]:
        """Match ``term`` against every cached resource name.

        Returns:
            All hits, unordered; use ``SearchEngine.rank`` to order them.
        """
        hits: list[SearchHit] = []
        with self._lock:
            for record in self._cache.values():
                hits.extend(
                    self._engine.search_record(
                        record, term, resource_type=resource_type,
                    )
                )
        return hits

    def expiring_certificates(
        self,
        days_threshold: int = 30,
        now: Optional[datetime] = None,
    ) -> list[SearchHit]:
        """Enabled certificates expiring within ``days_threshold`` days.

        Already expired certificates are included.

        Returns:
            Hits sorted by ascending expiry.
        """
        now = as_utc(now) if now else datetime.now(timezone.utc)
        threshold = now + timedelta(days=days_threshold)
        hits: list[SearchHit] = []
        with self._lock:
            for identifier, record in self._cache.items():
                for cert in record.certificates:
                    if (
                        cert.enabled
                        and cert.expires_on is not None
                        and as_utc(cert.expires_on) <= threshold
                    ):
                        hits.append(
                            SearchHit(
                                vault_identifier=identifier,
                                resource_type=ResourceType.CERTIFICATE,
                                name=cert.name,
                                score=0.0,
                                source=cert.model_copy(deep=True),
                            )
                        )
        hits.sort(key=lambda hit: as_utc(hit.source.expires_on))
        return hits

    def certificate_alerts(
        self,
        now: Optional[datetime] = None,
    ) -> dict[str, list[SearchHit]]:
        """Split expiring certificates into ``critical`` and ``warning``.

        Expired certificates are reported as critical.
        """
        alerts: dict[str, list[SearchHit]] = {"critical": [], "warning": []}
        for hit in self.expiring_certificates(self.config.warning_days, now=now):
            status = classify(
                hit.source.expires_on,
                now,
                critical_days=self.config.critical_days,
                warning_days=self.config.warning_days,
            )
            if status == ExpirationStatus.WARNING:
                alerts["warning"].append(hit)
            else:
                alerts["critical"].append(hit)
        return alerts

    async def clear(self) -> None:
        """Empty the map and delete the salt, IV and ciphertext files."""
        async with self._io_lock:
            with self._lock:
                self._cache.clear()
            self._salt = None
            try:
                await asyncio.to_thread(self._remove_artifacts)
            except OSError as err:
                logger.error("Failed to remove cache files: %s", err)
                raise PersistenceError(f"Failed to remove cache files: {err}") from err
        logger.info("Cache cleared")


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` next to ``path`` and rename it into place."""
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
