"""
Resilient connection to the shared key-value store (Redis).

One instance is created at service startup and injected into the cache
accessor, the invalidation coordinator and the rate limit gate. It owns the
connection lifecycle and the health flag those components consult before
touching the store.

Every store command goes through ``execute``, which bounds it with a timeout
and converts any failure into a failed ``StoreResult``. Nothing raised by
the store reaches a caller of this module.
"""

import asyncio
import contextlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.config import BaseConfig
from shared.errors import ConfigurationError, ReconnectExhaustedError, StoreUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception

from .endpoint import redact, resolve_endpoint

T = TypeVar("T")

# Failures that mean the link itself is broken, as opposed to a bad command
LINK_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError)
CONNECT_ERRORS = (RedisError,) + LINK_ERRORS


class ConnectionState(Enum):
    """Shared store connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"    # Reconnects exhausted, no cache until restart


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of a wrapped store command."""

    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "StoreResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> "StoreResult[T]":
        return cls(ok=False, error=error)


ErrorHandler = Callable[[Exception], None]
ClientFactory = Callable[[str], "redis.Redis"]


class ResilientStoreConnection:
    """Shared store connection with bounded reconnects and a health flag."""

    def __init__(
        self,
        url: Optional[str],
        *,
        max_attempts: int = 3,
        base_delay: float = 0.2,
        max_delay: float = 2.0,
        connect_timeout: float = 2.0,
        operation_timeout: float = 1.0,
        client_factory: Optional[ClientFactory] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.url = url
        self.retry_config = RetryConfig(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)
        self.connect_timeout = connect_timeout
        self.operation_timeout = operation_timeout
        self.client_factory = client_factory or self._default_client
        self.metrics = metrics
        self.logger = get_logger("blog.store.connection")

        self._client: Optional[redis.Redis] = None
        self._state = ConnectionState.DISCONNECTED
        self._error_handlers: List[ErrorHandler] = []
        self._reconnect_task: Optional[asyncio.Task] = None
        self._scripts: Dict[str, Any] = {}

        self._record_state()

    @classmethod
    def from_config(
        cls,
        config: BaseConfig,
        *,
        client_factory: Optional[ClientFactory] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "ResilientStoreConnection":
        """Build a connection from service configuration."""
        try:
            url = resolve_endpoint(config).url
        except ConfigurationError as e:
            get_logger("blog.store.connection").warning(
                "No shared store endpoint, running without cache",
                error=e.message,
            )
            url = None

        return cls(
            url,
            max_attempts=config.store_reconnect_max_attempts,
            base_delay=config.store_reconnect_base_delay_ms / 1000,
            max_delay=config.store_reconnect_max_delay_ms / 1000,
            connect_timeout=config.redis_connect_timeout,
            operation_timeout=config.redis_operation_timeout,
            client_factory=client_factory,
            metrics=metrics,
        )

    def _default_client(self, url: str) -> redis.Redis:
        return redis.Redis.from_url(
            url,
            socket_connect_timeout=self.connect_timeout,
            socket_timeout=self.operation_timeout,
            health_check_interval=30,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_task(self) -> Optional[asyncio.Task]:
        return self._reconnect_task

    def is_healthy(self) -> bool:
        """True only while connected. Never blocks."""
        return self._state is ConnectionState.CONNECTED

    def on_error(self, handler: ErrorHandler) -> None:
        """Register a passive observer for store errors."""
        self._error_handlers.append(handler)

    def describe(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "endpoint": redact(self.url) if self.url else None,
        }

    async def connect(self) -> ConnectionState:
        """Connect with bounded linear backoff.

        Never raises: exhausting the attempts, or an unusable endpoint, leaves
        the connection Degraded and the service keeps running without cache.
        """
        if self._state in (ConnectionState.CONNECTED, ConnectionState.DEGRADED):
            return self._state

        if self.url is None:
            self._degrade(ReconnectExhaustedError(0, "No shared store endpoint configured"))
            return self._state

        if self._client is None:
            try:
                self._client = self.client_factory(self.url)
            except ValueError as e:
                self._degrade(ReconnectExhaustedError(0, "Invalid shared store endpoint", {"error": str(e)}))
                return self._state

        self._transition(ConnectionState.CONNECTING)
        return await self._connect_with_retry()

    async def _connect_with_retry(self) -> ConnectionState:
        try:
            await retry_on_exception(CONNECT_ERRORS, self.retry_config)(self._ping_store)()
        except RetryError as e:
            self._degrade(ReconnectExhaustedError(e.attempts, details={"last_error": str(e.last_exception)}))
            return self._state

        self._transition(ConnectionState.CONNECTED)
        return self._state

    async def _ping_store(self) -> None:
        await asyncio.wait_for(self._client.ping(), timeout=self.connect_timeout)

    def _degrade(self, error: ReconnectExhaustedError) -> None:
        self._transition(ConnectionState.DEGRADED)
        self.logger.warning(
            "Shared store unavailable, continuing without cache until restart",
            attempts=error.attempts,
            reason=error.message,
            details=error.details,
        )
        self._notify(error)

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state is self._state:
            return
        self.logger.info(
            "Shared store state change",
            previous=self._state.value,
            state=new_state.value,
        )
        self._state = new_state
        self._record_state()

    def _record_state(self) -> None:
        if self.metrics:
            self.metrics.set_store_state(self._state.value, [s.value for s in ConnectionState])

    def _notify(self, error: Exception) -> None:
        for handler in self._error_handlers:
            try:
                handler(error)
            except Exception as e:
                self.logger.warning("Store error observer failed", error=str(e))

    def _schedule_reconnect(self) -> None:
        """Reconnect on a background task so request handlers never sleep on backoff."""
        if self._state is not ConnectionState.CONNECTED:
            return
        self._transition(ConnectionState.CONNECTING)
        self._reconnect_task = asyncio.get_running_loop().create_task(self._connect_with_retry())

    async def execute(
        self,
        operation: str,
        command: Callable[[redis.Redis], Awaitable[T]],
    ) -> StoreResult[T]:
        """Run ``command`` against the client, converting every failure to a result."""
        if not self.is_healthy():
            return StoreResult.failure(
                StoreUnavailableError(operation, f"store is {self._state.value}")
            )

        try:
            value = await asyncio.wait_for(command(self._client), timeout=self.operation_timeout)
        except Exception as e:
            return self._operation_failed(operation, e)

        return StoreResult.success(value)

    def _operation_failed(self, operation: str, cause: Exception) -> StoreResult:
        error = StoreUnavailableError(operation, str(cause) or type(cause).__name__)
        self.logger.warning(
            "Shared store operation failed",
            operation=operation,
            error=str(cause),
            error_type=type(cause).__name__,
        )
        if self.metrics:
            self.metrics.record_store_failure(operation)
        self._notify(error)

        if isinstance(cause, LINK_ERRORS):
            self._schedule_reconnect()

        return StoreResult.failure(error)

    async def get(self, key: str) -> StoreResult[Optional[bytes]]:
        return await self.execute("get", lambda client: client.get(key))

    async def set_ex(self, key: str, ttl_seconds: int, value: bytes) -> StoreResult[bool]:
        return await self.execute("setex", lambda client: client.setex(key, ttl_seconds, value))

    async def delete(self, key: str) -> StoreResult[int]:
        return await self.execute("delete", lambda client: client.delete(key))

    async def run_script(
        self,
        operation: str,
        source: str,
        keys: Sequence[str],
        args: Sequence[Any],
    ) -> StoreResult[Any]:
        """Run a Lua script, registering it on first use."""

        async def _run(client: redis.Redis) -> Any:
            script = self._scripts.get(source)
            if script is None:
                script = client.register_script(source)
                self._scripts[source] = script
            return await script(keys=list(keys), args=list(args))

        return await self.execute(operation, _run)

    async def close(self) -> None:
        """Stop any background reconnect and close the client."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
        self._reconnect_task = None

        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                self.logger.warning("Error closing shared store client", error=str(e))
            self._client = None

        self._scripts.clear()
        self._transition(ConnectionState.DISCONNECTED)
        self.logger.info("Shared store connection closed")
