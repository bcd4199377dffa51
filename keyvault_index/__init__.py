"""KeyVault Index — Encrypted cache and search index for cloud vaults.

Security Note (Threat Model):
    Secret values only ever live in the session index, encrypted with a
    random per-process key. The persistent cache holds metadata only.
    Neither layer protects against an attacker able to read the memory of
    the running process.
"""
from .version import __version__
from .conf import IndexConfig
from .datasource import VaultDataSource
from .exceptions import (
    VaultIndexError,
    DecryptionError,
    PersistenceError,
    AlreadyRunningError,
    PerVaultIndexError,
    SubscriptionEnumerationError,
    DiscoveryError,
)
from .expiration import ExpirationStatus, classify
from .indexer import IndexingCoordinator, IndexingJob, IndexingReport, JobStatus
from .models import (
    CertMeta,
    KeyMeta,
    ResourceType,
    SecretMeta,
    Subscription,
    VaultInfo,
    VaultRecord,
)
from .search import SearchEngine, SearchHit, VaultSearchIndex
from .service import VaultIndexService
from .store import EphemeralSessionIndex, PersistentVaultCache

__all__ = [
    "__version__",
    "IndexConfig",
    "VaultDataSource",
    "VaultIndexError",
    "DecryptionError",
    "PersistenceError",
    "AlreadyRunningError",
    "PerVaultIndexError",
    "SubscriptionEnumerationError",
    "DiscoveryError",
    "ExpirationStatus",
    "classify",
    "IndexingCoordinator",
    "IndexingJob",
    "IndexingReport",
    "JobStatus",
    "CertMeta",
    "KeyMeta",
    "ResourceType",
    "SecretMeta",
    "Subscription",
    "VaultInfo",
    "VaultRecord",
    "SearchEngine",
    "SearchHit",
    "VaultSearchIndex",
    "VaultIndexService",
    "EphemeralSessionIndex",
    "PersistentVaultCache",
]
