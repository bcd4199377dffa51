"""
VaultDataSource — The narrow interface to the vault provider.

The indexing core only ever talks to vaults through this interface, so it
never depends on a specific cloud SDK. Implementations wrap the provider
client (and subscription/vault discovery) and translate its objects into
the models of ``keyvault_index.models``.

Listing methods return lazy async iterators so paged provider responses
are consumed one page at a time.
"""
from abc import ABC, abstractmethod
from typing import Optional
from collections.abc import AsyncIterator

from .models import CertMeta, KeyMeta, SecretMeta, Subscription, VaultInfo


class VaultDataSource(ABC):
    """Read-only access to subscriptions, vaults and their resources."""

    @abstractmethod
    async def list_subscriptions(self) -> list[Subscription]:
        """Every subscription visible to the current credentials."""

    @abstractmethod
    async def list_vaults(self, subscription_id: str) -> list[VaultInfo]:
        """Every vault of one subscription."""

    @abstractmethod
    def list_secrets(self, vault: VaultInfo) -> AsyncIterator[SecretMeta]:
        """Metadata of the secrets of a vault, without values."""

    @abstractmethod
    def list_keys(self, vault: VaultInfo) -> AsyncIterator[KeyMeta]:
        """Metadata of the keys of a vault."""

    @abstractmethod
    def list_certificates(self, vault: VaultInfo) -> AsyncIterator[CertMeta]:
        """Metadata of the certificates of a vault."""

    async def get_secret_value(self, vault: VaultInfo, name: str) -> Optional[str]:
        """Current value of a secret; only used to fill the session index."""
        return None

    async def get_certificate_value(self, vault: VaultInfo, name: str) -> Optional[str]:
        """Public certificate material (e.g. base64 DER); session index only."""
        return None
