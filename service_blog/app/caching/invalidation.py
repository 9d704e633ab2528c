"""
Cache invalidation after primary store writes.

Callers must only invalidate once their primary store write has been
confirmed. A failed deletion is logged and reported but never fails the
write: the stale entry then lives at most until its TTL runs out.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..store.connection import ResilientStoreConnection
from .keys import keys_after_create, keys_after_delete, keys_after_update


@dataclass
class InvalidationReport:
    """Which keys were deleted and which could not be."""

    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class InvalidationCoordinator:
    """Deletes cache keys made stale by a write."""

    def __init__(self, connection: ResilientStoreConnection, metrics: Optional[MetricsCollector] = None):
        self.connection = connection
        self.metrics = metrics
        self.logger = get_logger("blog.cache.invalidation")

    async def invalidate(self, *keys: str) -> InvalidationReport:
        """Delete each key independently; one failure does not stop the rest."""
        report = InvalidationReport()

        for key in keys:
            result = await self.connection.delete(key)
            if result.ok:
                report.deleted.append(key)
                self._record("deleted")
            else:
                report.failed.append(key)
                self._record("failed")
                self.logger.warning(
                    "Cache invalidation failed, entry may be stale until TTL",
                    key=key,
                    error=str(result.error),
                )

        if report.deleted:
            self.logger.debug("Invalidated cache keys", keys=report.deleted)
        return report

    async def after_create(self) -> InvalidationReport:
        return await self.invalidate(*keys_after_create())

    async def after_update(self, blog_id: str) -> InvalidationReport:
        """Invalidate after an update or a publish toggle."""
        return await self.invalidate(*keys_after_update(blog_id))

    async def after_delete(self, blog_id: str) -> InvalidationReport:
        return await self.invalidate(*keys_after_delete(blog_id))

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_invalidation(outcome)
