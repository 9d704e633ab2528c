"""
Cache-aside reads for blog records.
"""

import json
from typing import Any, Awaitable, Callable, NamedTuple, Optional

from fastapi.encoders import jsonable_encoder

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..store.connection import ResilientStoreConnection
from .keys import DEFAULT_TTL_SECONDS

Loader = Callable[[], Awaitable[Any]]


class CacheReadResult(NamedTuple):
    value: Any
    from_cache: bool


def serialize(value: Any) -> bytes:
    """Encode a value the way the API would render it to clients."""
    return json.dumps(jsonable_encoder(value), separators=(",", ":")).encode("utf-8")


def deserialize(raw: bytes) -> Any:
    return json.loads(raw)


class CacheAsideAccessor:
    """Read-through helper in front of the primary store.

    The cache only ever shields callers from shared store problems. Errors
    raised by the loader (the primary store read) propagate unchanged.
    """

    def __init__(
        self,
        connection: ResilientStoreConnection,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.connection = connection
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = get_logger("blog.cache")

    async def read_through(self, key: str, loader: Loader, ttl: Optional[int] = None) -> CacheReadResult:
        """Return the cached value for ``key``, or load, cache and return it.

        Args:
            key: Namespaced cache key (``blogs:all``, ``blog:<id>``)
            loader: Coroutine function reading from the primary store
            ttl: Seconds to keep a freshly loaded value (default TTL if None)

        Returns:
            CacheReadResult with the value and whether it came from cache
        """
        cache_type = key.split(":", 1)[0]

        if not self.connection.is_healthy():
            self._record(cache_type, "bypass")
            return CacheReadResult(await loader(), False)

        cached = await self.connection.get(key)
        if cached.ok and cached.value is not None:
            try:
                value = deserialize(cached.value)
            except ValueError as e:
                self.logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            else:
                self._record(cache_type, "hit")
                self.logger.debug("Cache hit", key=key)
                return CacheReadResult(value, True)

        self._record(cache_type, "miss")
        value = await loader()

        # Not-found results are never cached
        if value is not None:
            await self.store(key, value, ttl)

        return CacheReadResult(value, False)

    async def store(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Best-effort write of ``value`` under ``key``; failures are logged only."""
        ttl_seconds = ttl if ttl is not None else self.default_ttl
        try:
            payload = serialize(value)
        except (TypeError, ValueError) as e:
            self.logger.warning("Value not cacheable", key=key, error=str(e))
            return False

        result = await self.connection.set_ex(key, ttl_seconds, payload)
        if not result.ok:
            self.logger.warning("Failed to populate cache", key=key, error=str(result.error))
            return False

        self.logger.debug("Cached value", key=key, ttl=ttl_seconds)
        return True

    def _record(self, cache_type: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(cache_type, outcome)
