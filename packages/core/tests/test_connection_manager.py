"""ConnectionManager lifecycle tests.

Covers partial-failure initialization, lookup/default resolution,
health aggregation, idempotent disconnect and explicit reconnect.
Adapters are fakes from conftest registered in a private registry.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import FakeSQLAdapter, fake
from rheodb.adapters.connection_manager import ConnectionManager
from rheodb.types.core_types import Capability, ConnectionState
from rheodb.utils.errors import (
    AdapterConnectionError,
    CapabilityError,
    ConfigurationError,
    NoAdaptersAvailableError,
    UnknownAdapterError,
)
from rheodb.utils.retry import RetryConfig

# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class TestInitialize:
    @pytest.mark.asyncio
    async def test_invalid_provider_does_not_block_valid_one(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({
            "default": "a",
            "providers": {"a": fake(), "b": {"type": "fake-sql"}},
        })

        assert manager.providers() == ["a"]
        assert manager.get("a").name == "a"
        with pytest.raises(UnknownAdapterError) as excinfo:
            manager.get("b")
        assert str(excinfo.value) == "Unknown adapter 'b'. Available: a"

    @pytest.mark.asyncio
    async def test_non_mapping_settings_are_skipped(self, registry, caplog):
        manager = ConnectionManager(registry=registry)
        with caplog.at_level(logging.WARNING):
            await manager.initialize({
                "providers": {"a": fake(), "b": "not-a-mapping", "fake-sql": ["dsn"]},
            })

        assert manager.providers() == ["a"]
        assert "Unknown provider 'b'" in caplog.text
        assert "must be a mapping" in manager.failures()["fake-sql"]
        assert set(manager.failures()) == {"b", "fake-sql"}

    @pytest.mark.asyncio
    async def test_unknown_provider_is_skipped(self, registry, caplog):
        manager = ConnectionManager(registry=registry)
        with caplog.at_level(logging.WARNING):
            await manager.initialize({"providers": {"cassandra": {}, "ok": fake()}})

        assert manager.providers() == ["ok"]
        assert "Unknown provider 'cassandra'" in caplog.text
        assert "cassandra" in manager.failures()

    @pytest.mark.asyncio
    async def test_connect_failure_is_isolated(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({
            "providers": {
                "up": fake(),
                "down": fake(fail_connect=True),
                "doc": fake("fake-doc"),
            }
        })

        assert manager.providers() == ["up", "doc"]
        assert not manager.has("down")
        assert "connection refused" in manager.failures()["down"]

    @pytest.mark.asyncio
    async def test_adapters_connect_concurrently(self, registry):
        # "first" cannot finish until "second" has started connecting
        manager = ConnectionManager(registry=registry)
        await asyncio.wait_for(
            manager.initialize({
                "providers": {
                    "first": fake(wait_event="second-started"),
                    "second": fake(set_event="second-started"),
                }
            }),
            timeout=5,
        )
        assert manager.providers() == ["first", "second"]

    @pytest.mark.asyncio
    async def test_connect_timeout_excludes_hanging_adapter(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({
            "connect_timeout": 0.05,
            "providers": {"slow": fake(hang=True), "fast": fake()},
        })

        assert manager.providers() == ["fast"]
        assert "timed out" in manager.failures()["slow"]
        assert manager.describe()["slow"].state == ConnectionState.FAILED

    @pytest.mark.asyncio
    async def test_initialized_even_when_nothing_connects(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"x": fake(fail_connect=True)}})

        assert manager.initialized
        assert manager.providers() == []

    @pytest.mark.asyncio
    async def test_second_initialize_is_ignored(self, registry, caplog):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"a": fake()}})
        first = manager.get("a")

        with caplog.at_level(logging.WARNING):
            await manager.initialize({"providers": {"a": fake(), "b": fake()}})

        assert manager.get("a") is first
        assert manager.providers() == ["a"]
        assert "already initialized" in caplog.text

    @pytest.mark.asyncio
    async def test_default_must_be_configured(self, registry):
        manager = ConnectionManager(registry=registry)
        with pytest.raises(ConfigurationError, match="default provider 'missing'"):
            await manager.initialize({"default": "missing", "providers": {"a": fake()}})
        assert not manager.initialized


# ---------------------------------------------------------------------------
# Lookup and default resolution
# ---------------------------------------------------------------------------


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_unconfigured_lists_live_providers(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"a": fake(), "b": fake("fake-doc")}})

        with pytest.raises(UnknownAdapterError) as excinfo:
            manager.get("nope")
        assert excinfo.value.available == ["a", "b"]
        assert "Available: a, b" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_default_without_configured_default_returns_only_adapter(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"only": fake()}})

        assert manager.default().name == "only"

    @pytest.mark.asyncio
    async def test_default_falls_back_to_first_registered(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"one": fake(), "two": fake()}})

        assert manager.default() is manager.get("one")

    @pytest.mark.asyncio
    async def test_default_with_zero_live_adapters(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {}})

        with pytest.raises(NoAdaptersAvailableError):
            manager.default()

    @pytest.mark.asyncio
    async def test_failed_default_is_not_substituted(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({
            "default": "primary",
            "providers": {"primary": fake(fail_connect=True), "replica": fake()},
        })

        with pytest.raises(UnknownAdapterError) as excinfo:
            manager.default()
        assert excinfo.value.provider == "primary"
        assert excinfo.value.details["reason"] == "not connected"

    @pytest.mark.asyncio
    async def test_failed_default_reported_when_nothing_is_live(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({
            "default": "primary",
            "providers": {"primary": fake(fail_connect=True)},
        })

        with pytest.raises(UnknownAdapterError) as excinfo:
            manager.default()
        assert excinfo.value.provider == "primary"
        assert excinfo.value.details["reason"] == "not connected"
        assert "connection refused" in excinfo.value.details["error"]

    @pytest.mark.asyncio
    async def test_capability_downcast(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({
            "providers": {"sql": fake(), "doc": fake("fake-doc"), "cloud": fake("fake-opaque")},
        })

        assert manager.sql("sql").capability == Capability.SQL
        assert manager.document("doc").capability == Capability.DOCUMENT
        assert manager.get("cloud").as_opaque().native_handle() is not None
        with pytest.raises(CapabilityError, match="provides document capability, not sql"):
            manager.sql("doc")
        with pytest.raises(CapabilityError):
            manager.document("cloud")

    @pytest.mark.asyncio
    async def test_describe_reports_every_configured_provider(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({
            "providers": {"a": fake(), "b": fake(fail_connect=True), "c": {"type": "fake-sql"}},
        })

        info = manager.describe()
        assert list(info) == ["a", "b", "c"]
        assert info["a"].state == ConnectionState.CONNECTED
        assert info["b"].state == ConnectionState.FAILED
        assert info["c"].to_dict()["provider_type"] == "fake-sql"
        assert "dsn" in info["c"].error


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_one_entry_per_live_adapter(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({
            "providers": {
                "good": fake(),
                "sick": fake(healthy=False),
                "doc": fake("fake-doc"),
                "gone": fake(fail_connect=True),
            }
        })

        health = await manager.health_check()
        assert health == {"good": True, "sick": False, "doc": True}

    @pytest.mark.asyncio
    async def test_health_check_with_no_adapters(self, registry):
        manager = ConnectionManager(registry=registry)
        assert await manager.health_check() == {}


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"a": fake(), "b": fake("fake-doc")}})
        adapter = manager.get("a")

        await manager.disconnect()
        assert manager.providers() == []
        await manager.disconnect()
        assert manager.providers() == []

        assert adapter.state == ConnectionState.DISCONNECTED
        assert adapter.close_calls == 1

    @pytest.mark.asyncio
    async def test_disconnect_errors_are_isolated(self, registry, caplog):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"bad": fake(fail_disconnect=True), "good": fake()}})
        good = manager.get("good")

        with caplog.at_level(logging.ERROR):
            await manager.disconnect()

        assert good.state == ConnectionState.DISCONNECTED
        assert "close exploded" in caplog.text
        assert manager.providers() == []

    @pytest.mark.asyncio
    async def test_reinitialize_after_disconnect(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"a": fake()}})
        old = manager.get("a")
        await manager.disconnect()

        assert not manager.initialized
        await manager.initialize({"providers": {"a": fake()}})
        assert manager.get("a") is not old

    @pytest.mark.asyncio
    async def test_async_context_manager_disconnects(self, registry):
        async with ConnectionManager(registry=registry) as manager:
            await manager.initialize({"providers": {"a": fake()}})
            adapter = manager.get("a")

        assert adapter.state == ConnectionState.DISCONNECTED
        assert manager.providers() == []


# ---------------------------------------------------------------------------
# Explicit reconnect
# ---------------------------------------------------------------------------


class TestReconnect:
    @pytest.mark.asyncio
    async def test_reconnect_builds_fresh_adapter(self, registry):
        attempts = []

        class FlakyAdapter(FakeSQLAdapter):
            async def _open(self):
                attempts.append(self)
                if len(attempts) == 1:
                    raise ConnectionRefusedError("first attempt refused")

        registry.register("flaky", FlakyAdapter)
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"db": {"type": "flaky", "dsn": "x"}}})
        assert manager.providers() == []

        adapter = await manager.reconnect("db")

        assert manager.get("db") is adapter
        assert adapter is attempts[1]
        assert attempts[0].state == ConnectionState.FAILED
        assert manager.failures() == {}

    @pytest.mark.asyncio
    async def test_reconnect_with_retry(self, registry):
        attempts = []

        class FlakyAdapter(FakeSQLAdapter):
            async def _open(self):
                attempts.append(self)
                if len(attempts) < 3:
                    raise ConnectionRefusedError("still down")

        registry.register("flaky", FlakyAdapter)
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"db": {"type": "flaky", "dsn": "x"}}})

        retry = RetryConfig(max_attempts=3, base_delay=0.001, jitter=False,
                            retryable_exceptions=(AdapterConnectionError,))
        adapter = await manager.reconnect("db", retry=retry)

        assert adapter.is_connected()
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_reconnect_failure_keeps_provider_excluded(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"db": fake(fail_connect=True)}})

        with pytest.raises(AdapterConnectionError):
            await manager.reconnect("db")
        assert manager.providers() == []
        assert "db" in manager.failures()

    @pytest.mark.asyncio
    async def test_reconnect_live_provider_is_noop(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"db": fake()}})
        live = manager.get("db")

        assert await manager.reconnect("db") is live

    @pytest.mark.asyncio
    async def test_reconnect_unconfigured_provider(self, registry):
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"db": fake()}})

        with pytest.raises(UnknownAdapterError):
            await manager.reconnect("other")

    @pytest.mark.asyncio
    async def test_concurrent_reconnects_share_one_adapter(self, registry):
        attempts = []

        class SlowAdapter(FakeSQLAdapter):
            async def _open(self):
                attempts.append(self)
                if len(attempts) == 1:
                    raise ConnectionRefusedError("first attempt refused")
                await asyncio.sleep(0.01)

        registry.register("slow", SlowAdapter)
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"db": {"type": "slow", "dsn": "x"}}})

        first, second = await asyncio.gather(manager.reconnect("db"), manager.reconnect("db"))

        assert first is second
        assert manager.get("db") is first
        assert len(attempts) == 2

        await manager.disconnect()
        assert all(a.state != ConnectionState.CONNECTED for a in attempts)

    @pytest.mark.asyncio
    async def test_reconnect_abandoned_when_manager_disconnects(self, registry):
        started, gate = asyncio.Event(), asyncio.Event()
        attempts = []

        class GatedAdapter(FakeSQLAdapter):
            async def _open(self):
                attempts.append(self)
                if len(attempts) == 1:
                    raise ConnectionRefusedError("first attempt refused")
                started.set()
                await gate.wait()

        registry.register("gated", GatedAdapter)
        manager = ConnectionManager(registry=registry)
        await manager.initialize({"providers": {"db": {"type": "gated", "dsn": "x"}}})

        pending = asyncio.ensure_future(manager.reconnect("db"))
        await started.wait()
        await manager.disconnect()
        gate.set()

        with pytest.raises(UnknownAdapterError):
            await pending
        assert attempts[1].state == ConnectionState.DISCONNECTED
        assert manager.providers() == []
