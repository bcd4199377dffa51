"""
VaultIndexService — Owns both caches, the coordinator and the scheduler.

Lifecycle::

    service = VaultIndexService(source, config)     # new
    await service.open(password)                     # load persistent cache
    service.start_indexing() / await service.refresh()
    service.global_search("db") / service.search("db")
    await service.close()                            # save, drop session index

There is no process-wide state: every instance is independent.
"""
import logging
from typing import Any, Optional

from .conf import IndexConfig
from .datasource import VaultDataSource
from .exceptions import PersistenceError
from .indexer import IndexingCoordinator, IndexingJob, IndexingReport
from .models import ResourceType
from .scheduler import IndexScheduler
from .search import SearchEngine, SearchHit
from .store.ephemeral import EphemeralSessionIndex
from .store.persistent import PersistentVaultCache

logger = logging.getLogger("keyvault_index.service")


class VaultIndexService:
    """Query surface over the persistent cache and the session index."""

    def __init__(
        self,
        source: VaultDataSource,
        config: Optional[IndexConfig] = None,
    ):
        self.config = config or IndexConfig()
        self.engine = SearchEngine(self.config.fuzzy_threshold)
        self.cache = PersistentVaultCache(self.config, engine=self.engine)
        self.index = EphemeralSessionIndex(
            engine=self.engine,
            include_values=self.config.include_values,
            search_limit=self.config.search_limit,
        )
        self.job = IndexingJob()
        self.coordinator = IndexingCoordinator(
            source,
            persistent=self.cache,
            ephemeral=self.index,
            config=self.config,
            job=self.job,
        )
        self.scheduler = IndexScheduler(self.coordinator)

    async def open(self, password: str) -> int:
        """Load the persistent cache and remember the password for saves."""
        self.coordinator.password = password
        return await self.cache.load(password)

    async def close(self) -> None:
        """Stop scheduling, save the cache and drop the session index.

        A running pass is cancelled and its in-flight batch is allowed to
        settle first, so nothing lands in either layer after the save.
        """
        self.scheduler.stop()
        self.coordinator.cancel()
        await self.coordinator.drain()
        try:
            if self.coordinator.password is not None:
                await self.cache.save(self.coordinator.password)
        except PersistenceError as err:
            logger.warning("Cache not saved on close: %s", err)
        finally:
            self.index.clear()

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def start_indexing(self):
        """Start a background pass; raises AlreadyRunningError when running."""
        return self.coordinator.start()

    async def refresh(self) -> IndexingReport:
        """Run a pass and wait for it."""
        return await self.coordinator.run()

    def cancel_indexing(self) -> bool:
        return self.coordinator.cancel()

    def indexing_status(self) -> dict[str, Any]:
        status = self.job.snapshot()
        status["indexed_vaults"] = self.index.size()
        status["cached_vaults"] = self.cache.size()
        return status

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def global_search(
        self,
        term: str,
        resource_type: Optional[ResourceType] = None,
        limit: Optional[int] = None,
    ) -> list[SearchHit]:
        """Ranked metadata search over the persistent cache."""
        hits = self.cache.global_search(term, resource_type=resource_type)
        return self.engine.rank(hits, limit or self.config.search_limit)

    def search(
        self,
        query: str,
        resource_type: Optional[ResourceType] = None,
        vault: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[SearchHit]:
        """Ranked name/value search over the session index."""
        return self.index.search(
            query, resource_type=resource_type, vault=vault, limit=limit,
        )

    def expiring_certificates(self, days: int = 30) -> list[SearchHit]:
        return self.cache.expiring_certificates(days)

    def certificate_alerts(self) -> dict[str, list[SearchHit]]:
        return self.cache.certificate_alerts()

    async def clear_cache(self) -> None:
        """Drop both layers and the on-disk cache artifacts."""
        self.index.clear()
        self.job.reset()
        await self.cache.clear()
