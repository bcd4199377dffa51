"""
Error taxonomy for the cache and indexing subsystem.

None of these errors is fatal to the process. The worst outcome of any
of them is an empty or stale cache:

- ``DecryptionError``: wrong password or corrupted payload.
- ``PerVaultIndexError``: one vault could not be crawled; it is skipped.
- ``SubscriptionEnumerationError``: one subscription could not be listed.
- ``DiscoveryError``: no subscription could be enumerated at all.
- ``PersistenceError``: the encrypted cache could not be written to disk.
- ``AlreadyRunningError``: an indexing pass is already in progress.
"""


class VaultIndexError(Exception):
    """Base class for every error raised by keyvault_index."""


class DecryptionError(VaultIndexError):
    """Ciphertext could not be decrypted or decoded with the given key."""


class PersistenceError(VaultIndexError):
    """Writing or removing the on-disk cache artifacts failed."""


class AlreadyRunningError(VaultIndexError):
    """An indexing pass was requested while another one is running."""

    def __init__(self, message: str = "Indexing already in progress"):
        super().__init__(message)


class PerVaultIndexError(VaultIndexError):
    """Crawling a single vault failed (unreachable, unauthorized, timeout)."""

    def __init__(self, vault: str, reason: str):
        self.vault = vault
        self.reason = reason
        super().__init__(f"Failed to index vault {vault}: {reason}")


class SubscriptionEnumerationError(VaultIndexError):
    """Listing the vaults of one subscription failed."""

    def __init__(self, subscription_id: str, reason: str):
        self.subscription_id = subscription_id
        self.reason = reason
        super().__init__(
            f"Failed to list vaults of subscription {subscription_id}: {reason}"
        )


class DiscoveryError(VaultIndexError):
    """Subscriptions could not be enumerated; the pass cannot proceed."""
