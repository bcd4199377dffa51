"""
Vault Indexing — Batched, concurrent crawl of every reachable vault.

Enumerates subscriptions and their vaults through a ``VaultDataSource``,
then crawls the vaults in fixed-size batches. Every vault of a batch is
crawled concurrently; the batch settles completely (partial failures
tolerated) before its records are written to the caches, progress is
advanced and the next batch starts.

State machine of the ``IndexingJob``::

    idle ──start──> running ──> completed | failed
                       └──cancel──> idle

Only one pass may be running; a second start is rejected with
``AlreadyRunningError`` and leaves the running pass untouched.

Security Note:
    Secret values fetched for the session index never reach the
    persistent cache: records are reduced with ``metadata_only()``
    before ``upsert``. Never log values.
"""
import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Optional, TypeVar
from collections.abc import AsyncIterator, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from .conf import IndexConfig
from .datasource import VaultDataSource
from .exceptions import (
    AlreadyRunningError,
    DiscoveryError,
    PerVaultIndexError,
    PersistenceError,
    SubscriptionEnumerationError,
)
from .models import CertMeta, SecretMeta, VaultInfo, VaultRecord, utcnow
from .store.ephemeral import EphemeralSessionIndex
from .store.persistent import PersistentVaultCache

logger = logging.getLogger("keyvault_index.indexer")

T = TypeVar("T")


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of ``items`` of at most ``size`` elements."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


# ---------------------------------------------------------------------------
# Pass results
# ---------------------------------------------------------------------------

@dataclass
class VaultOutcome:
    """Result of crawling one vault: either a record or an error reason."""
    vault: VaultInfo
    record: Optional[VaultRecord] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None


@dataclass
class IndexingReport:
    """Everything that happened during one indexing pass."""
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    total_vaults: int = 0
    batches: int = 0
    outcomes: list[VaultOutcome] = field(default_factory=list)
    subscription_errors: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False
    error: Optional[str] = None
    persistence_error: Optional[str] = None

    @property
    def indexed(self) -> list[str]:
        return [o.vault.url for o in self.outcomes if o.ok]

    @property
    def failed(self) -> dict[str, str]:
        return {o.vault.url: o.error for o in self.outcomes if not o.ok}

    def stats(self) -> dict:
        return {
            "total": self.total_vaults,
            "indexed": len(self.indexed),
            "errors": len(self.failed),
            "subscriptions_skipped": len(self.subscription_errors),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "batches": self.batches,
            "stats": self.stats(),
            "failed": self.failed,
            "subscription_errors": dict(self.subscription_errors),
            "cancelled": self.cancelled,
            "error": self.error,
            "persistence_error": self.persistence_error,
        }


class IndexingJob:
    """Status and progress of indexing, shared with status readers.

    Every mutation goes through one lock, so concurrent readers never see
    a torn update and progress updates are never lost.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._status = JobStatus.IDLE
        self._progress = 0.0
        self._last_indexed: dict[str, datetime] = {}
        self._last_report: Optional[IndexingReport] = None

    @property
    def status(self) -> JobStatus:
        with self._lock:
            return self._status

    @property
    def progress_percent(self) -> float:
        with self._lock:
            return self._progress

    @property
    def last_indexed_per_vault(self) -> dict[str, datetime]:
        with self._lock:
            return dict(self._last_indexed)

    @property
    def last_report(self) -> Optional[IndexingReport]:
        with self._lock:
            return self._last_report

    @property
    def running(self) -> bool:
        return self.status == JobStatus.RUNNING

    def begin(self) -> None:
        """Enter ``running`` with zero progress.

        Raises:
            AlreadyRunningError: If a pass is already running.
        """
        with self._lock:
            if self._status == JobStatus.RUNNING:
                raise AlreadyRunningError()
            self._status = JobStatus.RUNNING
            self._progress = 0.0

    def advance(self, processed: int, total: int) -> float:
        with self._lock:
            self._progress = min(100.0, 100.0 * processed / total) if total else 100.0
            return self._progress

    def mark_indexed(self, vault_identifier: str, when: datetime) -> None:
        with self._lock:
            self._last_indexed[vault_identifier] = when

    def finish(self, status: JobStatus, report: IndexingReport) -> None:
        report.finished_at = utcnow()
        with self._lock:
            self._status = status
            if status == JobStatus.COMPLETED:
                self._progress = 100.0
            self._last_report = report

    def reset(self) -> None:
        """Back to ``idle``, forgetting indexing times (index cleared)."""
        with self._lock:
            if self._status != JobStatus.RUNNING:
                self._status = JobStatus.IDLE
                self._progress = 0.0
            self._last_indexed.clear()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "status": self._status.value,
                "progress": round(self._progress, 1),
                "last_indexed": {
                    k: v.isoformat() for k, v in self._last_indexed.items()
                },
                "last_report": (
                    self._last_report.to_dict() if self._last_report else None
                ),
            }


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class IndexingCoordinator:
    """Drives indexing passes and writes their records into the caches.

    Args:
        source: Provider of subscriptions, vaults and resource metadata.
        persistent: Durable cache receiving metadata-only records.
        ephemeral: Session index receiving full records.
        config: Batch size, per-vault timeout and value fetching.
        password: When set, a completed pass saves the persistent cache.
        job: Shared job state, created when omitted.
    """

    def __init__(
        self,
        source: VaultDataSource,
        persistent: Optional[PersistentVaultCache] = None,
        ephemeral: Optional[EphemeralSessionIndex] = None,
        config: Optional[IndexConfig] = None,
        password: Optional[str] = None,
        job: Optional[IndexingJob] = None,
    ):
        self.source = source
        self.persistent = persistent
        self.ephemeral = ephemeral
        self.config = config or IndexConfig()
        self.password = password
        self.job = job or IndexingJob()
        self.include_values = self.config.include_values and ephemeral is not None
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.job.running

    def status(self) -> dict[str, Any]:
        return self.job.snapshot()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Start a pass in the background of the running event loop.

        Raises:
            AlreadyRunningError: If a pass is already running.
            RuntimeError: If no event loop is running; the job stays as it was.
        """
        loop = asyncio.get_running_loop()
        self._begin()
        self._task = loop.create_task(self._run_pass(), name="vault-indexing")
        return self._task

    async def run(self) -> IndexingReport:
        """Run a full pass and wait for it.

        Raises:
            AlreadyRunningError: If a pass is already running.
        """
        return await self.start()

    async def trigger(self) -> Optional[IndexingReport]:
        """Scheduled entry point: run a pass unless one is running."""
        if self.running:
            logger.info("Scheduled indexing skipped: a pass is already running")
            return None
        try:
            return await self.run()
        except AlreadyRunningError:
            logger.info("Scheduled indexing skipped: a pass is already running")
            return None

    def cancel(self) -> bool:
        """Ask the running pass to stop at the next batch boundary."""
        if not self.running:
            return False
        self._cancelled = True
        logger.info("Indexing cancellation requested")
        return True

    async def wait(self) -> Optional[IndexingReport]:
        """Wait for the current pass and return its report."""
        if self._task is None:
            return None
        return await self._task

    async def drain(self) -> None:
        """Wait until the current pass has settled, whatever its outcome."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    def _begin(self) -> None:
        self.job.begin()
        self._cancelled = False

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def _run_pass(self) -> IndexingReport:
        report = IndexingReport()
        logger.info("Starting full index of all vaults")
        try:
            vaults = await self._discover(report)
            report.total_vaults = len(vaults)
            logger.info(
                "Found %d vault(s) to index (batch_size=%d)",
                len(vaults), self.config.batch_size,
            )
            processed = 0
            for batch in batched(vaults, self.config.batch_size):
                if self._cancelled:
                    report.cancelled = True
                    logger.info(
                        "Indexing cancelled after %d/%d vault(s)",
                        processed, len(vaults),
                    )
                    self.job.finish(JobStatus.IDLE, report)
                    return report
                outcomes = await asyncio.gather(
                    *(self._index_vault(vault) for vault in batch)
                )
                for outcome in outcomes:
                    report.outcomes.append(outcome)
                    if outcome.ok:
                        self._store(outcome.record)
                processed += len(batch)
                report.batches += 1
                progress = self.job.advance(processed, len(vaults))
                logger.info("Indexing progress: %.1f%%", progress)
            await self._persist(report)
        except DiscoveryError as err:
            report.error = str(err)
            logger.error("Indexing failed: %s", err)
            self.job.finish(JobStatus.FAILED, report)
            return report
        except asyncio.CancelledError:
            report.cancelled = True
            self.job.finish(JobStatus.IDLE, report)
            raise
        except Exception as err:
            report.error = str(err) or type(err).__name__
            logger.exception("Indexing failed: %s", err)
            self.job.finish(JobStatus.FAILED, report)
            return report
        self.job.finish(JobStatus.COMPLETED, report)
        logger.info("Full indexing completed: %s", report.stats())
        return report

    async def _discover(self, report: IndexingReport) -> list[VaultInfo]:
        """Flatten subscriptions into the list of vaults to crawl.

        Raises:
            DiscoveryError: If subscriptions cannot be listed, or if every
                subscription failed to list its vaults.
        """
        try:
            subscriptions = await self.source.list_subscriptions()
        except Exception as err:
            raise DiscoveryError(f"Unable to list subscriptions: {err}") from err

        vaults: dict[str, VaultInfo] = {}
        for subscription in subscriptions:
            try:
                found = await self.source.list_vaults(subscription.id)
            except Exception as err:
                error = SubscriptionEnumerationError(subscription.id, str(err))
                logger.warning("%s", error)
                report.subscription_errors[subscription.id] = str(err)
                continue
            for vault in found:
                if not vault.subscription_id:
                    vault = vault.model_copy(update={"subscription_id": subscription.id})
                vaults.setdefault(vault.url, vault)

        if subscriptions and len(report.subscription_errors) == len(subscriptions):
            raise DiscoveryError("No subscription could be enumerated")
        return list(vaults.values())

    async def _index_vault(self, vault: VaultInfo) -> VaultOutcome:
        """Crawl one vault; any failure becomes an error outcome."""
        timeout = self.config.vault_timeout
        try:
            record = await asyncio.wait_for(self._crawl(vault), timeout=timeout)
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout:g}s"
        except Exception as err:
            reason = str(err) or type(err).__name__
        else:
            logger.info(
                "Indexed vault %s: %d secrets, %d keys, %d certificates",
                vault.name, len(record.secrets), len(record.keys),
                len(record.certificates),
            )
            return VaultOutcome(vault=vault, record=record)
        logger.error("%s", PerVaultIndexError(vault.name, reason))
        return VaultOutcome(vault=vault, error=reason)

    async def _crawl(self, vault: VaultInfo) -> VaultRecord:
        record = VaultRecord.for_vault(vault)
        secrets, keys, certificates = await asyncio.gather(
            _collect(self.source.list_secrets(vault)),
            _collect(self.source.list_keys(vault)),
            _collect(self.source.list_certificates(vault)),
        )
        if self.include_values:
            await self._fill_values(vault, secrets, certificates)
        record.secrets = secrets
        record.keys = keys
        record.certificates = certificates
        record.last_indexed = utcnow()
        return record

    async def _fill_values(
        self,
        vault: VaultInfo,
        secrets: list[SecretMeta],
        certificates: list[CertMeta],
    ) -> None:
        """Fetch values for the session index; failures keep the metadata."""
        for secret in secrets:
            try:
                secret.value = await self.source.get_secret_value(vault, secret.name)
            except Exception as err:
                logger.warning(
                    "Failed to get secret %s from %s: %s", secret.name, vault.name, err,
                )
        for cert in certificates:
            try:
                cert.value = await self.source.get_certificate_value(vault, cert.name)
            except Exception as err:
                logger.warning(
                    "Failed to get certificate %s from %s: %s", cert.name, vault.name, err,
                )

    def _store(self, record: VaultRecord) -> None:
        identifier = record.vault_identifier
        if self.persistent is not None:
            self.persistent.upsert(identifier, record.metadata_only())
        if self.ephemeral is not None:
            self.ephemeral.set(identifier, record)
        self.job.mark_indexed(identifier, record.last_indexed)

    async def _persist(self, report: IndexingReport) -> None:
        if self.persistent is None or self.password is None:
            return
        try:
            await self.persistent.save(self.password)
        except PersistenceError as err:
            report.persistence_error = str(err)
            logger.warning("Index kept in memory only: %s", err)


async def _collect(iterator: AsyncIterator[T]) -> list[T]:
    return [item async for item in iterator]
