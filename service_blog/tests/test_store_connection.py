"""
Unit tests for the resilient shared store connection.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from service_blog.app.store.connection import ConnectionState, ResilientStoreConnection
from shared.config import BaseConfig
from shared.errors import ReconnectExhaustedError, StoreUnavailableError
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeRedis


def make_connection(fake: FakeRedis, **kwargs) -> ResilientStoreConnection:
    kwargs.setdefault("base_delay", 0)
    kwargs.setdefault("max_delay", 0)
    return ResilientStoreConnection(
        "redis://localhost:6379/0",
        client_factory=lambda url: fake,
        **kwargs
    )


class TestConnect:
    """Connection lifecycle."""

    @pytest.mark.asyncio
    async def test_connect_success(self):
        fake = FakeRedis()
        connection = make_connection(fake)

        assert connection.state is ConnectionState.DISCONNECTED
        assert connection.is_healthy() is False

        state = await connection.connect()

        assert state is ConnectionState.CONNECTED
        assert connection.is_healthy() is True
        assert fake.ping_calls == 1

    @pytest.mark.asyncio
    async def test_connect_retries_then_succeeds(self):
        fake = FakeRedis()
        fake.ping_failures = 2
        connection = make_connection(fake, max_attempts=3)

        state = await connection.connect()

        assert state is ConnectionState.CONNECTED
        assert fake.ping_calls == 3

    @pytest.mark.asyncio
    async def test_connect_attempts_are_bounded(self):
        """More failures than attempts ends in Degraded after exactly max_attempts pings."""
        fake = FakeRedis()
        fake.ping_failures = 10
        connection = make_connection(fake, max_attempts=3)
        observed = []
        connection.on_error(observed.append)

        state = await connection.connect()

        assert state is ConnectionState.DEGRADED
        assert fake.ping_calls == 3
        assert connection.is_healthy() is False
        assert len(observed) == 1
        assert isinstance(observed[0], ReconnectExhaustedError)
        assert observed[0].attempts == 3

    @pytest.mark.asyncio
    async def test_degraded_never_retries(self):
        fake = FakeRedis()
        fake.ping_failures = 10
        connection = make_connection(fake, max_attempts=2)

        await connection.connect()
        state = await connection.connect()

        assert state is ConnectionState.DEGRADED
        assert fake.ping_calls == 2

    @pytest.mark.asyncio
    async def test_invalid_endpoint_degrades(self):
        def broken_factory(url):
            raise ValueError("Redis URL must specify one of the following schemes")

        connection = ResilientStoreConnection("http://nope", client_factory=broken_factory)

        state = await connection.connect()

        assert state is ConnectionState.DEGRADED

    @pytest.mark.asyncio
    async def test_missing_endpoint_degrades(self):
        connection = ResilientStoreConnection(None)

        assert await connection.connect() is ConnectionState.DEGRADED
        assert connection.describe() == {"state": "degraded", "endpoint": None}

    @pytest.mark.asyncio
    async def test_hung_ping_times_out(self):
        fake = FakeRedis()

        async def hang():
            await asyncio.sleep(10)

        fake.ping = hang
        connection = make_connection(fake, max_attempts=2, connect_timeout=0.01)

        assert await connection.connect() is ConnectionState.DEGRADED

    @pytest.mark.asyncio
    async def test_state_metric_follows_transitions(self):
        metrics = MetricsCollector("blog")
        connection = make_connection(FakeRedis(), metrics=metrics)

        await connection.connect()

        assert metrics.registry.get_sample_value("store_state", {"state": "connected"}) == 1
        assert metrics.registry.get_sample_value("store_state", {"state": "disconnected"}) == 0

    def test_from_config_uses_resolved_endpoint(self):
        config = BaseConfig(
            redis_url=None,
            redis_host="cache",
            redis_port="6380",
            store_reconnect_max_attempts=5,
            store_reconnect_base_delay_ms=100,
            store_reconnect_max_delay_ms=1500,
        )

        connection = ResilientStoreConnection.from_config(config)

        assert connection.url == "redis://cache:6380"
        assert connection.retry_config.max_attempts == 5
        assert connection.retry_config.base_delay == pytest.approx(0.1)
        assert connection.retry_config.max_delay == pytest.approx(1.5)


class TestOperations:
    """Wrapped store commands."""

    @pytest.mark.asyncio
    async def test_set_then_get(self):
        fake = FakeRedis()
        connection = make_connection(fake)
        await connection.connect()

        assert (await connection.set_ex("blog:1", 3600, b'{"title":"A"}')).ok
        result = await connection.get("blog:1")

        assert result.ok
        assert result.value == b'{"title":"A"}'

    @pytest.mark.asyncio
    async def test_delete_then_get_misses(self):
        fake = FakeRedis()
        connection = make_connection(fake)
        await connection.connect()
        await connection.set_ex("blog:1", 3600, b"{}")

        deleted = await connection.delete("blog:1")
        result = await connection.get("blog:1")

        assert deleted.value == 1
        assert result.ok
        assert result.value is None

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        fake = FakeRedis()
        connection = make_connection(fake)
        await connection.connect()
        await connection.set_ex("blog:42", 3600, b'{"_id":"42"}')

        fake.advance(3601)
        result = await connection.get("blog:42")

        assert result.ok
        assert result.value is None

    @pytest.mark.asyncio
    async def test_commands_skip_store_when_not_connected(self):
        fake = FakeRedis()
        connection = make_connection(fake)

        result = await connection.get("blogs:all")

        assert result.ok is False
        assert isinstance(result.error, StoreUnavailableError)
        assert fake.calls == []

    @pytest.mark.asyncio
    async def test_command_error_becomes_failed_result(self):
        fake = FakeRedis()
        connection = make_connection(fake)
        await connection.connect()
        observed = []
        connection.on_error(observed.append)

        fake.failure = ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value")
        result = await connection.get("blogs:all")

        assert result.ok is False
        assert isinstance(result.error, StoreUnavailableError)
        assert result.error.operation == "get"
        assert observed == [result.error]
        # Not a link failure: stays connected
        assert connection.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_failing_observer_is_contained(self):
        fake = FakeRedis()
        connection = make_connection(fake)
        await connection.connect()
        connection.on_error(MagicMock(side_effect=RuntimeError("observer bug")))

        fake.failure = ResponseError("boom")
        result = await connection.delete("blog:1")

        assert result.ok is False

    @pytest.mark.asyncio
    async def test_link_error_reconnects_in_background(self):
        fake = FakeRedis()
        connection = make_connection(fake)
        await connection.connect()

        fake.failure = RedisConnectionError("Connection reset by peer")
        result = await connection.get("blogs:all")

        assert result.ok is False
        assert connection.state is ConnectionState.CONNECTING
        assert connection.is_healthy() is False
        assert connection.reconnect_task is not None

        fake.failure = None
        await connection.reconnect_task

        assert connection.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_background_reconnect_exhaustion_degrades(self):
        fake = FakeRedis()
        connection = make_connection(fake, max_attempts=3)
        await connection.connect()
        pings_before = fake.ping_calls

        fake.failure = RedisConnectionError("Connection refused")
        await connection.get("blogs:all")
        await connection.reconnect_task

        assert connection.state is ConnectionState.DEGRADED
        assert fake.ping_calls - pings_before == 3

    @pytest.mark.asyncio
    async def test_slow_command_times_out(self):
        fake = FakeRedis()
        connection = make_connection(fake, operation_timeout=0.01)
        await connection.connect()

        async def slow_get(key):
            await asyncio.sleep(10)

        fake.get = slow_get
        result = await connection.get("blogs:all")

        assert result.ok is False
        assert connection.state is ConnectionState.CONNECTING
        await connection.reconnect_task
        assert connection.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_run_script_registers_once(self):
        fake = FakeRedis()
        fake.register_script = MagicMock(return_value=AsyncMock(return_value=[1, 1000]))
        connection = make_connection(fake)
        await connection.connect()

        first = await connection.run_script("incr", "return 1", keys=["rl:a"], args=[1000])
        second = await connection.run_script("incr", "return 1", keys=["rl:a"], args=[1000])

        assert first.value == [1, 1000]
        assert second.ok
        fake.register_script.assert_called_once_with("return 1")

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        fake = FakeRedis()
        connection = make_connection(fake)
        await connection.connect()

        await connection.close()

        assert fake.closed is True
        assert connection.state is ConnectionState.DISCONNECTED
        assert (await connection.get("blogs:all")).ok is False

    @pytest.mark.asyncio
    async def test_close_cancels_reconnect(self):
        fake = FakeRedis()
        connection = make_connection(fake, base_delay=10, max_delay=10, max_attempts=3)
        await connection.connect()

        fake.failure = RedisConnectionError("Connection refused")
        await connection.get("blogs:all")
        task = connection.reconnect_task
        await asyncio.sleep(0)

        await connection.close()

        assert task.cancelled()
        assert connection.state is ConnectionState.DISCONNECTED
