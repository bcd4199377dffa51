"""
Data model for cached vault resources.

A ``VaultRecord`` describes one tracked vault and the metadata of its
secrets, keys and certificates. Resource models may carry a ``value``
only inside the ephemeral session index; ``VaultRecord.metadata_only()``
strips it and is what the persistent cache stores.
"""
from enum import Enum
from typing import Optional, Union
from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceType(str, Enum):
    SECRET = "secret"
    KEY = "key"
    CERTIFICATE = "certificate"


class Subscription(BaseModel):
    """A cloud subscription grouping vaults."""

    id: str
    name: str = ""


class VaultInfo(BaseModel):
    """A vault as returned by discovery."""

    name: str
    location: str = ""
    resource_group: str = ""
    subscription_id: str = ""

    @property
    def url(self) -> str:
        """Vault URL, used as the vault identifier across both caches."""
        return f"https://{self.name}.vault.azure.net/"


class ResourceMeta(BaseModel):
    """Fields shared by secrets, keys and certificates."""

    name: str
    enabled: bool = True
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    expires_on: Optional[datetime] = None
    version: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)


class SecretMeta(ResourceMeta):
    content_type: Optional[str] = None
    value: Optional[str] = None


class KeyMeta(ResourceMeta):
    key_type: str = ""
    key_size: Optional[int] = None


class CertMeta(ResourceMeta):
    subject: str = ""
    issuer: str = ""
    thumbprint: Optional[str] = None
    value: Optional[str] = None


Resource = Union[SecretMeta, KeyMeta, CertMeta]


class VaultRecord(BaseModel):
    """All cached resources of one vault.

    A record is replaced as a whole on every re-index of its vault, so
    resources deleted upstream disappear from the cache.
    """

    vault_identifier: str
    name: str = ""
    location: str = ""
    resource_group: str = ""
    subscription_id: str = ""
    secrets: list[SecretMeta] = Field(default_factory=list)
    keys: list[KeyMeta] = Field(default_factory=list)
    certificates: list[CertMeta] = Field(default_factory=list)
    last_indexed: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_vault(cls, vault: VaultInfo) -> "VaultRecord":
        """Create an empty record for a discovered vault."""
        return cls(
            vault_identifier=vault.url,
            name=vault.name,
            location=vault.location,
            resource_group=vault.resource_group,
            subscription_id=vault.subscription_id,
        )

    def resources(self) -> list[tuple[ResourceType, Resource]]:
        """Every resource of the record tagged with its type."""
        items: list[tuple[ResourceType, Resource]] = []
        items.extend((ResourceType.SECRET, s) for s in self.secrets)
        items.extend((ResourceType.KEY, k) for k in self.keys)
        items.extend((ResourceType.CERTIFICATE, c) for c in self.certificates)
        return items

    @property
    def resource_count(self) -> int:
        return len(self.secrets) + len(self.keys) + len(self.certificates)

    def has_values(self) -> bool:
        """True if any secret or certificate still carries its value."""
        return any(s.value is not None for s in self.secrets) or any(
            c.value is not None for c in self.certificates
        )

    def metadata_only(self) -> "VaultRecord":
        """Return a deep copy with every secret and certificate value removed."""
        record = self.model_copy(deep=True)
        for secret in record.secrets:
            secret.value = None
        for cert in record.certificates:
            cert.value = None
        return record
