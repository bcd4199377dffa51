"""
Shared fixtures: an in-memory VaultDataSource and sample records.
"""
import asyncio
from typing import Optional
from datetime import datetime, timedelta, timezone

import pytest

from keyvault_index.conf import IndexConfig
from keyvault_index.datasource import VaultDataSource
from keyvault_index.models import (
    CertMeta,
    KeyMeta,
    SecretMeta,
    Subscription,
    VaultInfo,
    VaultRecord,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeDataSource(VaultDataSource):
    """In-memory provider with switches for failures, delays and gates."""

    def __init__(
        self,
        subscriptions: Optional[dict[str, list[str]]] = None,
        secrets: Optional[dict[str, list[SecretMeta]]] = None,
        keys: Optional[dict[str, list[KeyMeta]]] = None,
        certificates: Optional[dict[str, list[CertMeta]]] = None,
        values: Optional[dict[tuple[str, str], str]] = None,
    ):
        self.subscriptions = subscriptions or {"sub-1": ["alpha", "beta", "gamma"]}
        self.secrets = secrets or {}
        self.keys = keys or {}
        self.certificates = certificates or {}
        self.values = values or {}
        self.fail_discovery = False
        self.fail_subscriptions: set[str] = set()
        self.fail_vaults: set[str] = set()
        self.fail_values: set[str] = set()
        self.delays: dict[str, float] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.active = 0
        self.max_active = 0
        self.crawled: list[str] = []

    async def list_subscriptions(self) -> list[Subscription]:
        if self.fail_discovery:
            raise RuntimeError("not logged in")
        return [Subscription(id=sub, name=sub.upper()) for sub in self.subscriptions]

    async def list_vaults(self, subscription_id: str) -> list[VaultInfo]:
        if subscription_id in self.fail_subscriptions:
            raise RuntimeError("authorization failed")
        return [
            VaultInfo(name=name, location="westeurope", resource_group="rg")
            for name in self.subscriptions[subscription_id]
        ]

    async def list_secrets(self, vault: VaultInfo):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.crawled.append(vault.name)
            if vault.name in self.gates:
                await self.gates[vault.name].wait()
            await asyncio.sleep(self.delays.get(vault.name, 0.001))
            if vault.name in self.fail_vaults:
                raise RuntimeError("403 Forbidden")
        finally:
            self.active -= 1
        for secret in self.secrets.get(vault.name, []):
            yield secret.model_copy(deep=True)

    async def list_keys(self, vault: VaultInfo):
        for key in self.keys.get(vault.name, []):
            yield key.model_copy(deep=True)

    async def list_certificates(self, vault: VaultInfo):
        for cert in self.certificates.get(vault.name, []):
            yield cert.model_copy(deep=True)

    async def get_secret_value(self, vault: VaultInfo, name: str) -> Optional[str]:
        if name in self.fail_values:
            raise RuntimeError("secret disabled")
        return self.values.get((vault.name, name))

    async def get_certificate_value(self, vault: VaultInfo, name: str) -> Optional[str]:
        return self.values.get((vault.name, name))


def vault_url(name: str) -> str:
    return f"https://{name}.vault.azure.net/"


def make_record(name: str, secrets=(), keys=(), certificates=()) -> VaultRecord:
    return VaultRecord(
        vault_identifier=vault_url(name),
        name=name,
        secrets=[SecretMeta(name=s) if isinstance(s, str) else s for s in secrets],
        keys=[KeyMeta(name=k, key_type="RSA") if isinstance(k, str) else k for k in keys],
        certificates=[
            CertMeta(name=c) if isinstance(c, str) else c for c in certificates
        ],
        last_indexed=NOW,
    )


# --- Test Fixtures ---

@pytest.fixture
def config(tmp_path):
    """Config writing into a temporary directory with a cheap KDF."""
    return IndexConfig(cache_dir=tmp_path / "cache", kdf_iterations=1_000)


@pytest.fixture
def value_config(tmp_path):
    """Config that keeps secret values in the session index."""
    return IndexConfig(
        cache_dir=tmp_path / "cache",
        kdf_iterations=1_000,
        include_values=True,
    )


@pytest.fixture
def source():
    """Three vaults in one subscription with a few resources each."""
    return FakeDataSource(
        subscriptions={"sub-1": ["alpha", "beta", "gamma"]},
        secrets={
            "alpha": [SecretMeta(name="db-password"), SecretMeta(name="api-token")],
            "beta": [SecretMeta(name="db-conn", tags={"env": "prod"})],
            "gamma": [SecretMeta(name="storage-key")],
        },
        keys={"alpha": [KeyMeta(name="signing-key", key_type="RSA", key_size=2048)]},
        certificates={
            "beta": [
                CertMeta(
                    name="web-tls",
                    subject="CN=web",
                    issuer="CN=ca",
                    expires_on=datetime.now(timezone.utc) + timedelta(days=10),
                )
            ],
        },
        values={
            ("alpha", "db-password"): "hunter2",
            ("beta", "db-conn"): "Server=sql01;Password=s3cret",
            ("beta", "web-tls"): "MIIBcertificate",
        },
    )


@pytest.fixture
def record():
    """A record with one resource of each type, values included."""
    return make_record(
        "alpha",
        secrets=[SecretMeta(name="db-password", value="hunter2", tags={"team": "a"})],
        keys=[KeyMeta(name="signing-key", key_type="RSA", key_size=2048)],
        certificates=[
            CertMeta(
                name="web-tls",
                subject="CN=web",
                issuer="CN=ca",
                value="MIIBcertificate",
                expires_on=datetime(2024, 1, 20, tzinfo=timezone.utc),
            )
        ],
    )
